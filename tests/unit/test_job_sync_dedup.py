from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from shared.job_sync.dedup import find_duplicate_groups, resolve_duplicates, survivor_sort_key, title_company_key
from shared.job_sync.store import InMemoryStore
from tests.helpers.job_sync import persisted_job

BASE = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _store(jobs) -> InMemoryStore:
    store = InMemoryStore()
    for job in jobs:
        store.add_job(job)
    return store


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
def test_direct_ats_row_survives_regardless_of_order(order) -> None:
    jobs = [
        persisted_job(1, title="Data Engineer", company="Acme", source_name="Greenhouse", created_at=BASE),
        persisted_job(2, title="Data Engineer ", company="acme", source_name="RemoteOK", created_at=BASE + timedelta(days=3)),
        persisted_job(3, title="data engineer", company="ACME", source_name="Jobicy", created_at=BASE + timedelta(days=5)),
    ]
    groups = find_duplicate_groups([jobs[i] for i in order], title_company_key, reason="title_company")

    assert len(groups) == 1
    assert groups[0].survivor.id == 1
    assert sorted(d.id for d in groups[0].duplicates) == [2, 3]


def test_newest_then_highest_id_wins_among_aggregators() -> None:
    older = persisted_job(1, source_name="RemoteOK", created_at=BASE)
    newer = persisted_job(2, source_name="Jobicy", created_at=BASE + timedelta(hours=1))
    twin = persisted_job(3, source_name="Himalayas", created_at=BASE + timedelta(hours=1))

    assert min([older, newer, twin], key=survivor_sort_key).id == 3


def test_resolve_duplicates_deletes_losers_in_both_passes() -> None:
    store = _store(
        [
            persisted_job(1, title="Designer", company="Globex", source_name="Lever", created_at=BASE),
            persisted_job(2, title="Designer", company="Globex", source_name="RemoteOK", created_at=BASE),
            persisted_job(
                3,
                title="Frontend Developer",
                company="Initech",
                source_name="RemoteOK",
                source_url="https://Jobs.example.com/fe/1/?utm_source=feed",
                created_at=BASE,
            ),
            persisted_job(
                4,
                title="Front-end Developer (Remote)",
                company="Initech Inc",
                source_name="Jobicy",
                source_url="https://jobs.example.com/fe/1",
                created_at=BASE + timedelta(days=1),
            ),
            persisted_job(5, title="Unique", company="Solo"),
        ]
    )

    report = resolve_duplicates(store)

    assert [job.id for job in store.list_jobs()] == [1, 4, 5]
    assert sorted(report.deleted_ids) == [2, 3]
    assert [g.reason for g in report.groups] == ["title_company", "source_url"]
    assert report.as_dict()["duplicates_found"] == 2


def test_resolve_duplicates_dry_run_keeps_rows() -> None:
    store = _store(
        [
            persisted_job(1, title="Designer", company="Globex", source_name="Workable"),
            persisted_job(2, title="Designer", company="Globex", source_name="RemoteOK"),
        ]
    )
    logs = []
    report = resolve_duplicates(store, dry_run=True, on_log=lambda msg, level: logs.append(msg))

    assert len(store.list_jobs()) == 2
    assert report.duplicates_found == 1
    assert report.deleted_ids == []
    assert any("keeping #1" in msg for msg in logs)
