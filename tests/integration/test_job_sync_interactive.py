from __future__ import annotations

import threading

import httpx
import pytest

from shared.job_sync.discovery import CompanyProber
from shared.job_sync.interactive import SyncEvent, SyncOptions, select_sources, sync_jobs
from shared.job_sync.sources import JobicySource, LeverSource, RemoteOkSource
from shared.job_sync.store import InMemoryStore
from tests.helpers.job_sync import StepClock, json_response, load_fixture, make_fetcher

pytestmark = pytest.mark.job_sync_e2e


def _handler(request: httpx.Request) -> httpx.Response:
    host = request.url.host
    if host == "remoteok.com":
        return json_response(load_fixture("remoteok_feed.json"))
    if host == "jobicy.com":
        return json_response(load_fixture("jobicy_feed.json"))
    if host == "api.lever.co":
        return json_response(load_fixture("lever_postings.json"))
    return httpx.Response(404)


def _run(store, sources, options, **kwargs):
    events = []
    report = sync_jobs(store, sources, options, events.append, now=StepClock(), **kwargs)
    return report, events


def test_stream_starts_reports_and_completes() -> None:
    store = InMemoryStore(now=StepClock())
    http = make_fetcher(_handler)
    try:
        report, events = _run(store, [RemoteOkSource(http), JobicySource(http)], SyncOptions())
    finally:
        http.close()

    types = [e.type for e in events]
    assert types[0] == "sync_started"
    assert types[-1] == "complete"
    assert types[-2] == "report"
    assert "log" in types and "error" not in types

    assert events[-1].data == {"success": True, "aborted": False, "sync_id": report["sync_id"]}
    assert report["jobs"]["inserted"] == 3
    assert report["jobs"]["by_source"] == {"RemoteOK": 1, "Jobicy": 2}
    assert sorted(report["new_companies"]) == ["Globex", "Hooli", "Pied Piper"]

    run = store.get_sync_run(report["sync_id"])
    assert run.sync_type == "manual"
    assert run.status == "completed"
    assert run.logs

    log_event = next(e for e in events if e.type == "log")
    assert set(log_event.as_dict()) >= {"type", "level", "message", "timestamp"}


def test_source_failure_is_logged_and_sync_continues() -> None:
    store = InMemoryStore(now=StepClock())

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "remoteok.com":
            return httpx.Response(503)
        return _handler(request)

    http = make_fetcher(handler)
    try:
        report, events = _run(store, [RemoteOkSource(http), JobicySource(http)], SyncOptions())
    finally:
        http.close()

    assert events[-1].data["success"] is True
    assert report["jobs"]["inserted"] == 2
    assert any(e.type == "log" and e.data["level"] == "error" and "RemoteOK" in e.data["message"] for e in events)


def test_source_filter_and_no_update_option() -> None:
    store = InMemoryStore(now=StepClock())
    http = make_fetcher(_handler)
    try:
        sources = [RemoteOkSource(http), JobicySource(http)]
        _run(store, sources, SyncOptions(sources=("jobicy",)))
        report, _ = _run(store, sources, SyncOptions(sources=("Jobicy",), update_existing=False))
    finally:
        http.close()

    assert {j.source_name for j in store.list_jobs()} == {"Jobicy"}
    assert report["jobs"]["skipped"] == 2
    assert report["jobs"]["updated"] == 0


def test_select_sources_matches_key_or_name() -> None:
    http = make_fetcher(_handler)
    try:
        sources = [RemoteOkSource(http), JobicySource(http)]
        assert select_sources(sources, []) == sources
        assert [s.key for s in select_sources(sources, ["REMOTEOK"])] == ["remoteok"]
        assert select_sources(sources, ["unknown"]) == []
    finally:
        http.close()


def test_discovery_and_cleanup_run_inside_the_sync() -> None:
    store = InMemoryStore(now=StepClock())
    store.add_potential_company("acme")
    http = make_fetcher(_handler)
    try:
        lever = LeverSource(http, ["acme"])
        report, _ = _run(
            store,
            [lever, RemoteOkSource(http)],
            SyncOptions(discovery=True, cleanup=True),
            prober=CompanyProber([lever]),
        )
    finally:
        http.close()

    assert report["discovery"]["companies_added"] == 1
    assert report["cleanup"]["duplicates_found"] == 0
    assert store.get_discovered_company("acme").source == "lever"
    assert len(store.list_jobs()) == 3


def test_abort_ends_stream_with_complete() -> None:
    store = InMemoryStore(now=StepClock())
    abort = threading.Event()
    abort.set()
    http = make_fetcher(_handler)
    try:
        report, events = _run(store, [RemoteOkSource(http)], SyncOptions(), abort=abort)
    finally:
        http.close()

    assert report["aborted"] is True
    assert events[-1].type == "complete"
    assert events[-1].data["aborted"] is True
    assert store.list_jobs() == []


class _BrokenStore(InMemoryStore):
    def list_categories(self):
        raise RuntimeError("database unavailable")


def test_fatal_error_emits_error_then_complete() -> None:
    store = _BrokenStore(now=StepClock())
    http = make_fetcher(_handler)
    try:
        report, events = _run(store, [RemoteOkSource(http)], SyncOptions())
    finally:
        http.close()

    assert [e.type for e in events[-2:]] == ["error", "complete"]
    assert events[-2].data == {"message": "database unavailable"}
    assert events[-1].data["success"] is False
    assert report["error"] == "database unavailable"
    assert store.get_sync_run(report["sync_id"]).status == "failed"


def test_sync_event_rejects_unknown_types() -> None:
    assert SyncEvent("report", {"sync_id": "s1"}).as_dict() == {"type": "report", "sync_id": "s1"}
    with pytest.raises(ValueError, match="unknown sync event type"):
        SyncEvent("progress")
