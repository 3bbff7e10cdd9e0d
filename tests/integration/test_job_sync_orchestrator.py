from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from shared.job_sync.discovery import CompanyProber
from shared.job_sync.models import SyncRun
from shared.job_sync.orchestrator import (
    AGGREGATOR_CURSOR,
    ATS_CURSOR,
    SyncOrchestrator,
    TickPhase,
    fail_stale_runs,
    next_in_rotation,
)
from shared.job_sync.sources import (
    GreenhouseSource,
    HimalayasSource,
    JobicySource,
    LeverSource,
    RemoteOkSource,
    WorkableSource,
)
from shared.job_sync.store import InMemoryStore
from tests.helpers.job_sync import StepClock, himalayas_item, json_response, load_fixture, make_fetcher

pytestmark = pytest.mark.job_sync_e2e


def _ats_handler(request: httpx.Request) -> httpx.Response:
    host, path = request.url.host, request.url.path
    if host == "boards-api.greenhouse.io":
        if path == "/v1/boards/acme/jobs":
            return json_response(load_fixture("greenhouse_jobs.json"))
        if path == "/v1/boards/globex/jobs":
            return httpx.Response(500, text="upstream exploded")
        return httpx.Response(404)
    if host == "api.lever.co":
        if path == "/v0/postings/acme":
            return json_response(load_fixture("lever_postings.json"))
        return json_response([])
    return httpx.Response(404)


def _orchestrator(store, http, **kwargs) -> SyncOrchestrator:
    kwargs.setdefault("now", StepClock())
    sources = {
        "greenhouse": GreenhouseSource(http, ["acme", "globex"]),
        "lever": LeverSource(http, ["acme", "globex"]),
        "workable": WorkableSource(http, []),
        "remoteok": RemoteOkSource(http),
        "himalayas": HimalayasSource(http),
        "jobicy": JobicySource(http),
    }
    prober = CompanyProber([sources["greenhouse"], sources["lever"], sources["workable"]])
    return SyncOrchestrator(store, sources, prober=prober, **kwargs)


def test_next_in_rotation_wraps_and_restarts_on_unknown() -> None:
    rotation = ("remoteok", "himalayas", "jobicy")
    assert next_in_rotation(rotation, None) == "remoteok"
    assert next_in_rotation(rotation, "himalayas") == "jobicy"
    assert next_in_rotation(rotation, "jobicy") == "remoteok"
    assert next_in_rotation(rotation, "retired-source") == "remoteok"


def test_ats_ticks_alternate_sources_with_an_index_per_source() -> None:
    store = InMemoryStore(now=StepClock())
    http = make_fetcher(_ats_handler)
    try:
        orchestrator = _orchestrator(store, http)
        first = orchestrator.run_ats_tick()
        assert (first.source, first.unit, first.status) == ("greenhouse", "acme", "completed")
        assert first.stats["inserted"] == 2
        assert store.get_batch_state(ATS_CURSOR)["indices"] == {"greenhouse": 1}

        second = orchestrator.run_ats_tick()
        assert (second.source, second.unit) == ("lever", "acme")
        assert second.stats["inserted"] == 2

        third = orchestrator.run_ats_tick()
        fourth = orchestrator.run_ats_tick()
        fifth = orchestrator.run_ats_tick()
    finally:
        http.close()

    assert (third.source, third.unit, third.status) == ("greenhouse", "globex", "failed")
    assert (fourth.source, fourth.unit, fourth.status) == ("lever", "globex", "completed")
    assert (fifth.source, fifth.unit) == ("greenhouse", "acme")
    assert fifth.stats["updated"] == 2
    cursor = store.get_batch_state(ATS_CURSOR)
    assert cursor["indices"] == {"greenhouse": 1, "lever": 2}
    assert cursor["last_source"] == "greenhouse"
    assert "last_updated" in cursor
    assert len(store.list_jobs()) == 4
    assert TickPhase.ADVANCING_CURSOR in fifth.phases
    assert fifth.phases[-1] is TickPhase.DONE


def test_ats_ticks_reach_every_company_when_lists_differ_in_length() -> None:
    store = InMemoryStore(now=StepClock())

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "boards-api.greenhouse.io":
            return json_response({"jobs": []})
        return json_response([])

    http = make_fetcher(handler)
    try:
        sources = {
            "greenhouse": GreenhouseSource(http, [f"gh{i}" for i in range(10)]),
            "lever": LeverSource(http, [f"lv{i}" for i in range(3)]),
        }
        orchestrator = SyncOrchestrator(store, sources, now=StepClock())
        results = [orchestrator.run_ats_tick() for _ in range(20)]
    finally:
        http.close()

    greenhouse = [r.unit for r in results if r.source == "greenhouse"]
    lever = [r.unit for r in results if r.source == "lever"]
    assert greenhouse == [f"gh{i}" for i in range(10)]
    assert lever == ["lv0", "lv1", "lv2"] * 3 + ["lv0"]
    assert store.get_batch_state(ATS_CURSOR)["indices"] == {"greenhouse": 10, "lever": 1}


def test_ats_tick_failure_marks_run_failed_and_still_advances_cursor() -> None:
    store = InMemoryStore(now=StepClock())
    store.save_batch_state(ATS_CURSOR, {"indices": {"greenhouse": 1, "lever": 0}, "last_source": "lever"})
    http = make_fetcher(_ats_handler)
    try:
        result = _orchestrator(store, http).run_ats_tick()
    finally:
        http.close()

    assert result.status == "failed"
    assert result.unit == "globex"
    assert "HTTP 500" in (result.error or "")

    run = store.get_sync_run(result.run_id)
    assert run is not None
    assert run.status == "failed"
    assert run.completed_at is not None
    assert "HTTP 500" in run.stats["error"]
    assert any(entry.level == "error" for entry in run.logs)

    cursor = store.get_batch_state(ATS_CURSOR)
    assert cursor["indices"] == {"greenhouse": 2, "lever": 0}
    assert cursor["last_source"] == "greenhouse"


def test_ats_tick_pages_within_a_company_across_ticks() -> None:
    store = InMemoryStore(now=StepClock())
    http = make_fetcher(_ats_handler)
    try:
        orchestrator = _orchestrator(store, http, ats_jobs_per_company=1)
        first = orchestrator.run_ats_tick()
        progress = store.get_company_progress("acme")
        assert progress is not None and progress.last_job_offset == 1

        store.save_batch_state(ATS_CURSOR, {"indices": {"greenhouse": 0}, "last_source": "lever"})
        second = orchestrator.run_ats_tick()
    finally:
        http.close()

    assert first.stats["inserted"] == 1
    assert second.stats["inserted"] == 1
    assert store.get_company_progress("acme").last_job_offset == 2
    assert {j.source_url for j in store.list_jobs()} == {
        "https://boards.greenhouse.io/acme/jobs/4001",
        "https://boards.greenhouse.io/acme/jobs/4002",
    }


def test_ats_tick_paging_counts_malformed_postings_in_the_slice() -> None:
    store = InMemoryStore(now=StepClock())
    postings = [
        {"id": 1, "title": "No URL", "location": {"name": "Remote"}},
        {"id": 2, "title": "SRE", "location": {"name": "Remote"}, "absolute_url": "https://boards.greenhouse.io/acme/jobs/2"},
        {"id": 3, "title": "QA", "location": {"name": "Remote"}, "absolute_url": "https://boards.greenhouse.io/acme/jobs/3"},
    ]
    http = make_fetcher(lambda request: json_response({"jobs": postings}))
    try:
        sources = {"greenhouse": GreenhouseSource(http, ["acme"])}
        orchestrator = SyncOrchestrator(store, sources, ats_jobs_per_company=2, now=StepClock())
        first = orchestrator.run_ats_tick()
        assert store.get_company_progress("acme").last_job_offset == 2
        second = orchestrator.run_ats_tick()
    finally:
        http.close()

    assert first.stats["inserted"] == 1
    assert second.stats["inserted"] == 1
    assert store.get_company_progress("acme").last_job_offset == 0
    assert {j.source_url for j in store.list_jobs()} == {
        "https://boards.greenhouse.io/acme/jobs/2",
        "https://boards.greenhouse.io/acme/jobs/3",
    }


def test_aborted_tick_leaves_cursor_untouched() -> None:
    store = InMemoryStore(now=StepClock())
    abort = threading.Event()
    abort.set()
    http = make_fetcher(_ats_handler)
    try:
        result = _orchestrator(store, http).run_ats_tick(abort=abort)
    finally:
        http.close()

    assert result.aborted is True
    assert result.error is None
    assert store.get_batch_state(ATS_CURSOR) is None
    run = store.get_sync_run(result.run_id)
    assert run.status == "completed"
    assert run.stats["aborted"] is True
    assert store.list_jobs() == []


def _aggregator_handler(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        host = request.url.host
        if host == "remoteok.com":
            return json_response(load_fixture("remoteok_feed.json"))
        if host == "himalayas.app":
            return json_response({"jobs": [himalayas_item(i) for i in range(20)]})
        if host == "jobicy.com":
            return json_response(load_fixture("jobicy_feed.json"))
        return httpx.Response(404)

    return handler


def test_aggregator_ticks_round_robin_with_per_source_cursors() -> None:
    store = InMemoryStore(now=StepClock())
    requests = []
    http = make_fetcher(_aggregator_handler(requests))
    try:
        orchestrator = _orchestrator(store, http, aggregator_max_jobs=20)
        results = [orchestrator.run_aggregator_tick() for _ in range(4)]
    finally:
        http.close()

    assert [r.source for r in results] == ["remoteok", "himalayas", "jobicy", "remoteok"]
    assert [r.unit for r in results] == ["dev", "offset 0", "dev", "engineer"]
    assert all(r.ok for r in results)

    params = [dict(r.url.params) for r in requests]
    assert params[0] == {"tag": "dev"}
    assert params[1] == {"limit": "20", "offset": "0"}
    assert params[2] == {"count": "20", "industry": "dev"}
    assert params[3] == {"tag": "engineer"}

    cursor = store.get_batch_state(AGGREGATOR_CURSOR)
    assert cursor["last_source"] == "remoteok"
    assert cursor["remoteok_tag_index"] == 2
    assert cursor["jobicy_industry_index"] == 1
    assert cursor["himalayas_offset"] == 20
    # remoteok twice (same listing), 20 himalayas, 2 jobicy
    assert len(store.list_jobs()) == 23


def test_himalayas_cursor_advances_when_limit_is_below_a_page() -> None:
    store = InMemoryStore(now=StepClock())
    requests = []
    http = make_fetcher(_aggregator_handler(requests))
    try:
        orchestrator = _orchestrator(store, http, aggregator_rotation=("himalayas",), aggregator_max_jobs=10)
        results = [orchestrator.run_aggregator_tick() for _ in range(3)]
    finally:
        http.close()

    assert [r.unit for r in results] == ["offset 0", "offset 10", "offset 20"]
    assert [r.url.params["offset"] for r in requests] == ["0", "10", "20"]
    # the mock feed ignores the offset, so later ticks re-read the same items
    assert results[0].stats["inserted"] == 10
    assert results[1].stats["updated"] == 10
    assert store.get_batch_state(AGGREGATOR_CURSOR)["himalayas_offset"] == 30


def test_aggregator_source_outage_fails_the_run_and_moves_on() -> None:
    store = InMemoryStore(now=StepClock())

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "remoteok.com":
            return httpx.Response(503)
        return json_response(load_fixture("jobicy_feed.json"))

    http = make_fetcher(handler)
    try:
        orchestrator = _orchestrator(store, http, aggregator_rotation=("remoteok", "jobicy"))
        failed = orchestrator.run_aggregator_tick()
        recovered = orchestrator.run_aggregator_tick()
    finally:
        http.close()

    assert failed.status == "failed"
    assert "503" in (failed.error or "")
    assert recovered.source == "jobicy"
    assert recovered.ok
    assert store.get_batch_state(AGGREGATOR_CURSOR)["remoteok_tag_index"] == 1


def test_discovery_tick_finds_company_on_second_ats() -> None:
    store = InMemoryStore(now=StepClock())
    store.add_potential_company("acme")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.lever.co" and request.url.path == "/v0/postings/acme":
            return json_response(load_fixture("lever_postings.json"))
        return httpx.Response(404)

    http = make_fetcher(handler)
    try:
        result = _orchestrator(store, http).run_discovery_tick()
    finally:
        http.close()

    assert result.ok
    assert result.sync_type == "discovery"
    assert result.stats["companies_added"] == 1

    company = store.get_discovered_company("acme")
    assert company is not None
    assert company.source == "lever"
    assert company.remote_job_count == 2
    assert company.job_count == 3
    assert company.sample_jobs == ("Data Engineer", "Customer Support Specialist")
    assert company.suggested_category is not None

    candidate = store.get_potential_company("acme")
    assert candidate.status == "discovered"
    assert candidate.check_count == 1
    assert store.list_sync_runs("discovery")[0].status == "completed"


def test_discovery_tick_updates_already_known_company() -> None:
    store = InMemoryStore(now=StepClock())
    store.add_potential_company("acme")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.lever.co":
            return json_response(load_fixture("lever_postings.json"))
        return httpx.Response(404)

    http = make_fetcher(handler)
    try:
        orchestrator = _orchestrator(store, http)
        orchestrator.run_discovery_tick()
        store.add_potential_company("Acme")
        orchestrator.run_discovery_tick()
    finally:
        http.close()

    assert list(store.discovered) == ["acme"]


def test_fail_stale_runs_closes_only_old_running_rows() -> None:
    now = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    store = InMemoryStore(now=lambda: now)
    store.create_sync_run(SyncRun(id="old", sync_type="job_sync", status="running", started_at=now - timedelta(hours=2)))
    store.create_sync_run(SyncRun(id="fresh", sync_type="job_sync", status="running", started_at=now - timedelta(minutes=10)))
    store.create_sync_run(SyncRun(id="done", sync_type="discovery", status="completed", started_at=now - timedelta(hours=3)))

    assert fail_stale_runs(store, now=lambda: now) == ["old"]

    old = store.get_sync_run("old")
    assert old.status == "failed"
    assert old.completed_at == now
    assert "still running" in old.stats["error"]
    assert store.get_sync_run("fresh").status == "running"
    assert store.get_sync_run("done").status == "completed"
    assert fail_stale_runs(store, now=lambda: now) == []


def test_tick_fails_runs_left_running_by_a_killed_invocation() -> None:
    store = InMemoryStore(now=StepClock())
    killed = SyncRun(
        id="killed",
        sync_type="job_sync",
        status="running",
        started_at=datetime(2024, 4, 30, tzinfo=timezone.utc),
    )
    store.create_sync_run(killed)
    http = make_fetcher(lambda request: json_response(load_fixture("jobicy_feed.json")))
    try:
        result = _orchestrator(store, http, aggregator_rotation=("jobicy",)).run_aggregator_tick()
    finally:
        http.close()

    assert result.ok
    assert store.get_sync_run("killed").status == "failed"
    assert store.get_sync_run(result.run_id).status == "completed"
    assert store.list_sync_runs(status="running") == []
