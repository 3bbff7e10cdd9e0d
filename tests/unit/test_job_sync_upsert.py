from __future__ import annotations

from datetime import datetime, timezone

from shared.job_sync.categorize import DEFAULT_CATEGORY_ID
from shared.job_sync.models import Category, JobRecord, RawJobListing
from shared.job_sync.store import DuplicateJobError, InMemoryStore
from shared.job_sync.upsert import (
    JobUpserter,
    UpsertOptions,
    UpsertStats,
    build_record,
    ensure_default_categories,
)
from tests.helpers.job_sync import StepClock


def _listing(**overrides) -> RawJobListing:
    fields = dict(
        external_id="remoteok-1",
        title="Senior Backend Engineer",
        company="Globex",
        description="<p>Build APIs in Python. Salary $120k - $150k.</p>",
        location="Remote",
        source_url="https://remoteok.com/l/1",
        source_name="RemoteOK",
        posted_date=datetime(2024, 5, 2, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return RawJobListing(**fields)


def _store() -> InMemoryStore:
    store = InMemoryStore(now=StepClock())
    ensure_default_categories(store)
    return store


def test_ensure_default_categories_seeds_once() -> None:
    store = InMemoryStore()
    assert ensure_default_categories(store) is True
    assert ensure_default_categories(store) is False
    assert len(store.list_categories()) == 9


def test_build_record_normalizes_listing() -> None:
    record = build_record(_listing(), {1, 5})
    assert record.description == "Build APIs in Python. Salary $120k - $150k."
    assert record.description_raw == "<p>Build APIs in Python. Salary $120k - $150k.</p>"
    assert record.full_description == "<p>Build APIs in Python. Salary $120k - $150k.</p>"
    assert record.pay_range == "$120k - $150k"
    assert record.category_id == 1


def test_build_record_prefers_listing_salary_and_falls_back_on_unknown_category() -> None:
    listing = _listing(title="Customer Support Specialist", description="Answer tickets", salary="EUR 40,000+")
    record = build_record(listing, {1})
    assert record.pay_range == "EUR 40,000+"
    assert record.category_id == DEFAULT_CATEGORY_ID


def test_upsert_is_idempotent_on_source_url() -> None:
    store = _store()
    upserter = JobUpserter(store)

    assert upserter.upsert(_listing()) == "inserted"
    created = store.get_job_by_source_url("https://remoteok.com/l/1")
    assert upserter.upsert(_listing(title="Staff Backend Engineer")) == "updated"

    jobs = store.list_jobs()
    assert len(jobs) == 1
    assert jobs[0].title == "Staff Backend Engineer"
    assert created is not None
    assert jobs[0].created_at == created.created_at
    assert jobs[0].updated_at > created.updated_at


def test_update_keeps_existing_post_date_when_listing_has_none() -> None:
    store = _store()
    upserter = JobUpserter(store)
    upserter.upsert(_listing())
    upserter.upsert(_listing(posted_date=None))

    assert store.list_jobs()[0].post_date == datetime(2024, 5, 2, tzinfo=timezone.utc)


def test_options_skip_updates_and_inserts() -> None:
    store = _store()
    JobUpserter(store).upsert(_listing())

    no_update = JobUpserter(store, UpsertOptions(update_existing=False))
    assert no_update.upsert(_listing(title="Changed")) == "skipped"
    assert store.list_jobs()[0].title == "Senior Backend Engineer"

    no_add = JobUpserter(store, UpsertOptions(add_new=False))
    assert no_add.upsert(_listing(source_url="https://remoteok.com/l/2")) == "skipped"
    assert len(store.list_jobs()) == 1


class _RacingStore(InMemoryStore):
    """Another writer inserts the same URL between lookup and insert."""

    def insert_job(self, record: JobRecord):
        raise DuplicateJobError(record.source_url)


def test_unique_violation_on_insert_degrades_to_skip() -> None:
    store = _RacingStore()
    store.insert_categories([Category(1, "Programming & Development", "programming-development")])
    assert JobUpserter(store).upsert(_listing()) == "skipped"


class _FlakyStore(InMemoryStore):
    def insert_job(self, record: JobRecord):
        if record.source_url.endswith("/bad"):
            raise RuntimeError("constraint violated")
        return super().insert_job(record)


def test_upsert_batch_isolates_failures_and_counts() -> None:
    store = _FlakyStore()
    ensure_default_categories(store)
    messages = []
    upserter = JobUpserter(store, on_log=lambda msg, level: messages.append((level, msg)))

    stats = upserter.upsert_batch(
        [
            _listing(source_url="https://remoteok.com/l/1"),
            _listing(source_url="https://remoteok.com/l/bad", company="Initech"),
            _listing(source_url="https://remoteok.com/l/3", company="Hooli", source_name="Jobicy"),
        ]
    )

    assert (stats.fetched, stats.inserted, stats.updated, stats.skipped, stats.failed) == (3, 2, 0, 0, 1)
    assert stats.by_source == {"RemoteOK": 2, "Jobicy": 1}
    assert stats.new_companies == ["Globex", "Hooli"]
    assert any(level == "error" and "constraint violated" in msg for level, msg in messages)


def test_upsert_batch_respects_limit() -> None:
    store = _store()
    stats = JobUpserter(store).upsert_batch(
        [_listing(source_url=f"https://remoteok.com/l/{i}") for i in range(5)], limit=2
    )
    assert stats.fetched == 2
    assert len(store.list_jobs()) == 2


def test_upsert_stats_merge() -> None:
    a = UpsertStats(fetched=2, inserted=1, updated=1, by_source={"Lever": 2}, new_companies=["Acme"])
    b = UpsertStats(fetched=1, skipped=1, by_source={"Lever": 1, "Jobicy": 3}, new_companies=["Acme", "Hooli"])
    a.merge(b)
    assert a.as_dict() == {
        "fetched": 3,
        "inserted": 1,
        "updated": 1,
        "skipped": 1,
        "failed": 0,
        "by_source": {"Lever": 3, "Jobicy": 3},
    }
    assert a.new_companies == ["Acme", "Hooli"]
