from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence

from shared.job_sync.dedup import resolve_duplicates
from shared.job_sync.discovery import CompanyProber, run_discovery
from shared.job_sync.http import AbortSignal, FetchAborted
from shared.job_sync.logging_utils import RunLogger, log_event, utcnow
from shared.job_sync.models import SyncLogEntry, SyncRun
from shared.job_sync.sources.base import JobSource, is_aborted
from shared.job_sync.store import JobStore
from shared.job_sync.upsert import JobUpserter, UpsertOptions, UpsertStats, ensure_default_categories

LOGGER = logging.getLogger("job_sync.interactive")

EVENT_TYPES = ("sync_started", "log", "report", "complete", "error")


@dataclass(frozen=True)
class SyncOptions:
    discovery: bool = False
    cleanup: bool = False
    update_existing: bool = True
    add_new: bool = True
    sources: Sequence[str] = ()


@dataclass(frozen=True)
class SyncEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.type not in EVENT_TYPES:
            raise ValueError(f"unknown sync event type: {self.type!r}")

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type, **self.data}
        if self.timestamp is not None:
            out["timestamp"] = self.timestamp.isoformat()
        return out


EventSink = Callable[[SyncEvent], None]


def select_sources(sources: Sequence[JobSource], wanted: Sequence[str]) -> list:
    """Keep sources whose key or display name is in ``wanted`` (case-insensitive); all when empty."""
    if not wanted:
        return list(sources)
    names = {w.strip().lower() for w in wanted if w.strip()}
    return [s for s in sources if s.key.lower() in names or s.name.lower() in names]


def sync_jobs(
    store: JobStore,
    sources: Sequence[JobSource],
    options: SyncOptions,
    emit: EventSink,
    *,
    abort: Optional[AbortSignal] = None,
    prober: Optional[CompanyProber] = None,
    now: Callable[[], datetime] = utcnow,
) -> Dict[str, Any]:
    """Run a full sync and stream its progress as events.

    The event stream always ends with ``complete`` (preceded by ``error`` on
    a fatal failure), so a client never waits on a run that already ended.
    Returns the report payload.
    """
    started = time.perf_counter()
    run = SyncRun(id=str(uuid.uuid4()), sync_type="manual", status="running", started_at=now())

    def forward(entry: SyncLogEntry) -> None:
        store.append_sync_log(run.id, entry)
        emit(SyncEvent("log", entry.as_dict(), entry.timestamp))

    log = RunLogger(LOGGER, sink=forward, now=now)
    emit(
        SyncEvent(
            "sync_started",
            {
                "sync_id": run.id,
                "options": {
                    "discovery": options.discovery,
                    "cleanup": options.cleanup,
                    "update_existing": options.update_existing,
                    "add_new": options.add_new,
                    "sources": list(options.sources),
                },
            },
            now(),
        )
    )

    report: Dict[str, Any] = {"sync_id": run.id}
    aborted = False
    try:
        store.create_sync_run(run)
        log.info("Starting job sync")
        ensure_default_categories(store, log)

        if options.discovery:
            if prober is None:
                log.warning("Discovery requested but no prober is configured")
            else:
                discovery = run_discovery(store, prober, on_log=log, abort=abort, now=now)
                report["discovery"] = discovery.as_dict()
                aborted = discovery.aborted

        selected = select_sources(sources, options.sources)
        if options.sources:
            log.info(f"Syncing sources: {', '.join(s.name for s in selected) or 'none'}")

        upserter = JobUpserter(
            store,
            UpsertOptions(add_new=options.add_new, update_existing=options.update_existing),
            on_log=log,
        )
        totals = UpsertStats()
        for source in selected:
            if aborted or is_aborted(abort):
                aborted = True
                break
            log.info(f"Fetching from {source.name}")
            try:
                for batch in source.fetch(on_log=log, abort=abort):
                    log.info(f"Processing batch of {len(batch)} jobs from {source.name}")
                    totals.merge(upserter.upsert_batch(batch))
                    if is_aborted(abort):
                        break
            except FetchAborted:
                aborted = True
                break
            except Exception as e:
                log.error(f"Error fetching from {source.name}: {type(e).__name__}: {e}")
                continue
            log.success(f"{source.name} complete")

        report["jobs"] = totals.as_dict()
        report["new_companies"] = list(totals.new_companies)

        if options.cleanup and not aborted:
            report["cleanup"] = resolve_duplicates(store, on_log=log).as_dict()

        if aborted or is_aborted(abort):
            aborted = True
            log.warning("Sync aborted by client")
        log.success(f"Sync complete: {totals.inserted} added, {totals.updated} updated, {totals.skipped} skipped")
        report["aborted"] = aborted
        report["duration_s"] = round(time.perf_counter() - started, 3)

        run.status = "completed"
        run.stats = {**totals.as_dict(), "aborted": aborted}
        emit(SyncEvent("report", report, now()))
    except Exception as e:
        message = str(e) or type(e).__name__
        log_event(LOGGER, logging.ERROR, "interactive_sync_failed", run_id=run.id, error_type=type(e).__name__, error=message)
        run.status = "failed"
        run.stats = {"error": message}
        report["error"] = message
        emit(SyncEvent("error", {"message": message}, now()))
    finally:
        run.completed_at = now()
        run.logs = list(log.entries)
        store.save_sync_run(run)
        emit(SyncEvent("complete", {"success": run.status == "completed", "aborted": aborted, "sync_id": run.id}, now()))

    return report
