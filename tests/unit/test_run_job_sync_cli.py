from __future__ import annotations

import json
import sys
from datetime import timedelta

import httpx

import scripts.pipeline.run_job_sync as run_job_sync
from shared.job_sync.logging_utils import utcnow
from shared.job_sync.models import SyncRun
from shared.job_sync.store import InMemoryStore
from tests.helpers.job_sync import json_response, load_fixture


def _patch_http(monkeypatch, handler):
    real_build = run_job_sync.build_fetchers

    def fake_build(settings):
        return real_build(settings, transport=httpx.MockTransport(handler), sleep=lambda _s: None)

    monkeypatch.setattr(run_job_sync, "build_fetchers", fake_build)
    monkeypatch.setattr(run_job_sync.signal, "signal", lambda *_args: None)


def test_list_prints_sources(monkeypatch, capsys):
    _patch_http(monkeypatch, lambda request: httpx.Response(404))
    monkeypatch.setattr(sys, "argv", ["run_job_sync.py", "--list"])

    assert run_job_sync.main() == 0
    out = capsys.readouterr().out
    assert "greenhouse" in out and "remoteok" in out


def test_interactive_streams_json_events(monkeypatch, capsys):
    store = InMemoryStore()
    _patch_http(monkeypatch, lambda request: json_response(load_fixture("remoteok_feed.json")))
    monkeypatch.setattr(run_job_sync, "build_store", lambda kind: store)
    monkeypatch.setattr(sys, "argv", ["run_job_sync.py", "--interactive", "--sources", "remoteok", "--store", "memory"])

    assert run_job_sync.main() == 0

    events = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    assert events[0]["type"] == "sync_started"
    assert events[-1]["type"] == "complete"
    assert events[-1]["success"] is True
    assert len(store.list_jobs()) == 1


def test_tick_failure_returns_nonzero(monkeypatch, capsys):
    store = InMemoryStore()
    _patch_http(monkeypatch, lambda request: httpx.Response(503))
    monkeypatch.setattr(run_job_sync, "build_store", lambda kind: store)
    monkeypatch.setattr(sys, "argv", ["run_job_sync.py", "--tick", "aggregator"])

    assert run_job_sync.main() == 1
    assert "status=failed" in capsys.readouterr().out
    assert store.get_batch_state("aggregator")["last_source"] == "remoteok"


def test_fail_stale_marks_stuck_runs_failed(monkeypatch, capsys):
    store = InMemoryStore()
    started = utcnow() - timedelta(hours=2)
    store.create_sync_run(SyncRun(id="stuck", sync_type="job_sync", status="running", started_at=started))
    _patch_http(monkeypatch, lambda request: httpx.Response(404))
    monkeypatch.setattr(run_job_sync, "build_store", lambda kind: store)
    monkeypatch.setattr(sys, "argv", ["run_job_sync.py", "--fail-stale", "--stale-after-minutes", "30"])

    assert run_job_sync.main() == 0
    assert json.loads(capsys.readouterr().out.strip()) == {"failed_runs": ["stuck"]}
    assert store.get_sync_run("stuck").status == "failed"
