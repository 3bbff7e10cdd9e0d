"""
Resumable sync ticks.

Each tick processes one bounded slice (one ATS company, one aggregator
page/tag, or one discovery batch), records a ``SyncRun`` and persists the
cursor for the next invocation. Cursors live in ``batch_state`` rows of the
store and are passed around explicitly; nothing here keeps state between
ticks.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from shared.job_sync.discovery import CompanyProber, DiscoveryReport, run_discovery
from shared.job_sync.http import AbortSignal, FetchAborted
from shared.job_sync.logging_utils import LogSink, RunLogger, log_event, utcnow
from shared.job_sync.models import CompanyJobProgress, SyncLogEntry, SyncRun
from shared.job_sync.sources.base import CompanyBoardSource, JobSource, SourceUnavailableError, is_aborted
from shared.job_sync.sources.himalayas import HimalayasSource
from shared.job_sync.store import JobStore
from shared.job_sync.upsert import JobUpserter, UpsertOptions, UpsertStats, ensure_default_categories

LOGGER = logging.getLogger("job_sync.orchestrator")

ATS_CURSOR = "ats"
AGGREGATOR_CURSOR = "aggregator"

DEFAULT_ATS_ROTATION = ("greenhouse", "lever")
DEFAULT_AGGREGATOR_ROTATION = ("remoteok", "himalayas", "jobicy")

REMOTEOK_TAGS = (
    "dev", "engineer", "devops", "design", "marketing",
    "developer", "frontend", "backend", "fullstack",
    "product", "project", "data", "support",
)

JOBICY_INDUSTRIES = (
    "dev", "marketing", "design-multimedia", "data-science",
    "technical-support", "seller", "admin", "hr",
    "copywriting", "accounting-finance", "business", "management",
)

ATS_JOBS_PER_COMPANY = 20
AGGREGATOR_MAX_JOBS = 100

# a run still `running` after this long was killed mid-tick
STALE_RUN_AFTER = timedelta(hours=1)


class TickPhase(str, Enum):
    IDLE = "idle"
    SELECTING_SOURCE = "selecting-source"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    ADVANCING_CURSOR = "advancing-cursor"
    DONE = "done"


class SyncAborted(RuntimeError):
    pass


@dataclass
class TickResult:
    sync_type: str
    run_id: str
    status: str = "running"
    source: Optional[str] = None
    unit: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    aborted: bool = False
    phases: List[TickPhase] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "completed" and self.error is None


def next_in_rotation(rotation: Sequence[str], last: Optional[str]) -> str:
    """Entry after ``last``; an unknown or missing ``last`` starts the rotation."""
    if last in rotation:
        return rotation[(list(rotation).index(last) + 1) % len(rotation)]
    return rotation[0]


def _int(value: Any, default: int = 0) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return default


def fail_stale_runs(
    store: JobStore,
    *,
    older_than: timedelta = STALE_RUN_AFTER,
    now: Callable[[], datetime] = utcnow,
) -> List[str]:
    """Mark runs left ``running`` past ``older_than`` as failed; returns their ids.

    An invocation killed by the platform time limit never reaches its own
    bookkeeping, so its row is closed here by a later one.
    """
    current = now()
    cutoff = current - older_than
    stale: List[str] = []
    for run in store.list_sync_runs(status="running"):
        if run.started_at >= cutoff:
            continue
        run.status = "failed"
        run.completed_at = current
        run.stats = {**run.stats, "error": f"still running after {older_than}; marked failed"}
        store.save_sync_run(run)
        stale.append(run.id)
    if stale:
        log_event(LOGGER, logging.WARNING, "stale_runs_failed", count=len(stale), run_ids=stale)
    return stale


class _Tick:
    """Bookkeeping for one tick: the SyncRun row, its logger and its phases."""

    def __init__(
        self,
        store: JobStore,
        sync_type: str,
        *,
        sink: Optional[LogSink],
        now: Callable[[], datetime],
    ) -> None:
        self.store = store
        self.now = now
        self.run = SyncRun(id=str(uuid.uuid4()), sync_type=sync_type, status="running", started_at=now())
        self.result = TickResult(sync_type=sync_type, run_id=self.run.id)
        self.next_cursor: Optional[Dict[str, Any]] = None
        self._external_sink = sink
        self._opened = False
        self.log = RunLogger(LOGGER, sink=self._sink, now=now)
        self.enter(TickPhase.IDLE)

    def _sink(self, entry: SyncLogEntry) -> None:
        if self._opened:
            self.store.append_sync_log(self.run.id, entry)
        if self._external_sink is not None:
            self._external_sink(entry)

    def enter(self, phase: TickPhase) -> None:
        self.result.phases.append(phase)

    def open(self, source: Optional[str]) -> None:
        self.run.source = source
        self.result.source = source
        self.store.create_sync_run(self.run)
        self._opened = True

    def check_abort(self, abort: Optional[AbortSignal]) -> None:
        if is_aborted(abort):
            raise SyncAborted("abort signal raised")

    def finish(self, *, error: Optional[BaseException] = None, aborted: bool = False) -> TickResult:
        self.run.completed_at = self.now()
        self.run.stats = dict(self.result.stats)
        if aborted:
            self.result.aborted = True
            self.run.stats["aborted"] = True
            self.run.status = "completed"
        elif error is not None:
            message = str(error) or type(error).__name__
            self.result.error = message
            self.run.stats["error"] = message
            self.run.status = "failed"
            self.log.error(f"Fatal error: {message}")
        else:
            self.run.status = "completed"
        self.result.status = self.run.status
        self.run.logs = list(self.log.entries)
        self.store.save_sync_run(self.run)
        self._opened = False
        self.enter(TickPhase.DONE)
        log_event(
            LOGGER,
            logging.INFO if self.run.status == "completed" else logging.ERROR,
            "tick_done",
            sync_type=self.run.sync_type,
            run_id=self.run.id,
            source=self.run.source,
            status=self.run.status,
            aborted=self.result.aborted,
            error=self.result.error,
        )
        return self.result


class SyncOrchestrator:
    """Entry point for scheduled ticks; depends only on the ``JobSource`` interface."""

    def __init__(
        self,
        store: JobStore,
        sources: Mapping[str, JobSource],
        *,
        prober: Optional[CompanyProber] = None,
        ats_rotation: Sequence[str] = DEFAULT_ATS_ROTATION,
        aggregator_rotation: Sequence[str] = DEFAULT_AGGREGATOR_ROTATION,
        remoteok_tags: Sequence[str] = REMOTEOK_TAGS,
        jobicy_industries: Sequence[str] = JOBICY_INDUSTRIES,
        ats_jobs_per_company: int = ATS_JOBS_PER_COMPANY,
        aggregator_max_jobs: int = AGGREGATOR_MAX_JOBS,
        discovery_batch_size: int = 5,
        stale_run_after: timedelta = STALE_RUN_AFTER,
        upsert_options: UpsertOptions = UpsertOptions(),
        log_sink: Optional[LogSink] = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.sources = dict(sources)
        self.prober = prober
        self.ats_rotation = tuple(k for k in ats_rotation if k in self.sources)
        self.aggregator_rotation = tuple(k for k in aggregator_rotation if k in self.sources)
        self.remoteok_tags = tuple(remoteok_tags)
        self.jobicy_industries = tuple(jobicy_industries)
        self.ats_jobs_per_company = ats_jobs_per_company
        self.aggregator_max_jobs = aggregator_max_jobs
        self.discovery_batch_size = discovery_batch_size
        self.stale_run_after = stale_run_after
        self.upsert_options = upsert_options
        self.log_sink = log_sink
        self._now = now

    def _tick(self, sync_type: str) -> _Tick:
        fail_stale_runs(self.store, older_than=self.stale_run_after, now=self._now)
        return _Tick(self.store, sync_type, sink=self.log_sink, now=self._now)

    def _ingest(
        self,
        tick: _Tick,
        source: JobSource,
        *,
        abort: Optional[AbortSignal],
        limit: int,
        **fetch_kwargs: Any,
    ) -> UpsertStats:
        upserter = JobUpserter(self.store, self.upsert_options, on_log=tick.log)
        stats = UpsertStats()
        tick.enter(TickPhase.FETCHING)
        batches = source.fetch(on_log=tick.log, limit=limit, abort=abort, **fetch_kwargs)
        try:
            for batch in batches:
                tick.check_abort(abort)
                if stats.fetched >= limit:
                    break
                tick.enter(TickPhase.NORMALIZING)
                tick.enter(TickPhase.PERSISTING)
                stats.merge(upserter.upsert_batch(batch, limit=limit - stats.fetched))
                tick.enter(TickPhase.FETCHING)
        finally:
            close = getattr(batches, "close", None)
            if close is not None:
                close()
        tick.check_abort(abort)
        return stats

    def _finish(self, tick: _Tick, cursor_name: Optional[str], work: Callable[[], None]) -> TickResult:
        try:
            work()
        except (SyncAborted, FetchAborted):
            tick.log.warning("Sync aborted; cursor left unchanged")
            return tick.finish(aborted=True)
        except Exception as e:
            self._advance(tick, cursor_name)
            return tick.finish(error=e)
        self._advance(tick, cursor_name)
        return tick.finish()

    def _advance(self, tick: _Tick, cursor_name: Optional[str]) -> None:
        if cursor_name is None or tick.next_cursor is None:
            return
        tick.enter(TickPhase.ADVANCING_CURSOR)
        state = dict(tick.next_cursor)
        state["last_updated"] = self._now().isoformat()
        self.store.save_batch_state(cursor_name, state)

    # ATS

    def run_ats_tick(self, *, abort: Optional[AbortSignal] = None) -> TickResult:
        tick = self._tick("job_sync")
        tick.enter(TickPhase.SELECTING_SOURCE)
        if not self.ats_rotation:
            tick.open(None)
            return tick.finish(error=RuntimeError("no ATS sources configured"))

        cursor = self.store.get_batch_state(ATS_CURSOR) or {}
        source_key = next_in_rotation(self.ats_rotation, cursor.get("last_source", self.ats_rotation[-1]))
        source = self.sources[source_key]
        companies = source.companies if isinstance(source, CompanyBoardSource) else ()
        # one company index per ATS family, each wrapping on its own list
        indices = {k: _int(v) for k, v in (cursor.get("indices") or {}).items()}
        index = indices.get(source_key, 0)
        if index >= len(companies):
            index = 0
        tick.next_cursor = {"indices": {**indices, source_key: index + 1}, "last_source": source_key}
        tick.open(source_key)

        def work() -> None:
            if not companies:
                tick.log.warning(f"{source.name}: company list is empty")
                return
            company = companies[index]
            tick.result.unit = company
            tick.result.stats.update({"company": company, "company_index": index, "total_companies": len(companies)})
            tick.log.info(f"Company index {index}/{len(companies)}, source {source_key}: {company}")
            tick.check_abort(abort)
            ensure_default_categories(self.store, tick.log)

            progress = self.store.get_company_progress(company)
            offset = progress.last_job_offset if progress is not None and progress.source == source_key else 0
            stats = self._ingest(
                tick,
                source,
                abort=abort,
                limit=self.ats_jobs_per_company,
                company_filter=[company],
                job_offset=offset,
            )
            tick.result.stats.update(stats.as_dict())

            board_stats = source.last_stats if isinstance(source, CompanyBoardSource) else None
            if board_stats is not None and board_stats.errors:
                raise SourceUnavailableError(source.name, board_stats.errors[0])

            # page on postings read, including ones skipped as malformed
            consumed = board_stats.consumed_items if board_stats is not None else stats.fetched
            next_offset = offset + consumed if consumed >= self.ats_jobs_per_company else 0
            total_seen = max(progress.total_jobs_discovered if progress else 0, offset + consumed)
            self.store.save_company_progress(
                CompanyJobProgress(
                    company_slug=company,
                    source=source_key,
                    last_job_offset=next_offset,
                    total_jobs_discovered=total_seen,
                    last_synced_at=self._now(),
                )
            )
            tick.result.stats["next_job_offset"] = next_offset
            tick.log.success(f"{company}: {stats.inserted} added, {stats.updated} updated, {stats.skipped} skipped")

        return self._finish(tick, ATS_CURSOR, work)

    # aggregators

    def run_aggregator_tick(self, *, abort: Optional[AbortSignal] = None) -> TickResult:
        tick = self._tick("job_sync")
        tick.enter(TickPhase.SELECTING_SOURCE)
        if not self.aggregator_rotation:
            tick.open(None)
            return tick.finish(error=RuntimeError("no aggregator sources configured"))

        cursor = self.store.get_batch_state(AGGREGATOR_CURSOR) or {}
        source_key = next_in_rotation(self.aggregator_rotation, cursor.get("last_source"))
        source = self.sources[source_key]
        tag_index = _int(cursor.get("remoteok_tag_index"))
        industry_index = _int(cursor.get("jobicy_industry_index"))
        himalayas_offset = _int(cursor.get("himalayas_offset"))

        next_cursor: Dict[str, Any] = {
            "last_source": source_key,
            "remoteok_tag_index": tag_index,
            "jobicy_industry_index": industry_index,
            "himalayas_offset": himalayas_offset,
        }
        fetch_kwargs: Dict[str, Any] = {}
        if source_key == "remoteok" and self.remoteok_tags:
            tag = self.remoteok_tags[tag_index % len(self.remoteok_tags)]
            fetch_kwargs["query"] = tag
            tick.result.unit = tag
            next_cursor["remoteok_tag_index"] = (tag_index + 1) % len(self.remoteok_tags)
        elif source_key == "jobicy" and self.jobicy_industries:
            industry = self.jobicy_industries[industry_index % len(self.jobicy_industries)]
            fetch_kwargs["query"] = industry
            tick.result.unit = industry
            next_cursor["jobicy_industry_index"] = (industry_index + 1) % len(self.jobicy_industries)
        elif source_key == "himalayas":
            fetch_kwargs["job_offset"] = himalayas_offset
            tick.result.unit = f"offset {himalayas_offset}"
        tick.next_cursor = next_cursor
        tick.open(source_key)

        def work() -> None:
            tick.log.info(f"Syncing {source.name}{f' ({tick.result.unit})' if tick.result.unit else ''}")
            tick.check_abort(abort)
            ensure_default_categories(self.store, tick.log)
            stats = self._ingest(tick, source, abort=abort, limit=self.aggregator_max_jobs, **fetch_kwargs)
            tick.result.stats.update(stats.as_dict())
            if tick.result.unit:
                tick.result.stats["unit"] = tick.result.unit
            if isinstance(source, HimalayasSource):
                next_cursor["himalayas_offset"] = 0 if source.exhausted else source.next_offset
            tick.log.success(f"{source.name}: {stats.inserted} added, {stats.updated} updated, {stats.skipped} skipped")

        return self._finish(tick, AGGREGATOR_CURSOR, work)

    # discovery

    def run_discovery_tick(self, *, abort: Optional[AbortSignal] = None) -> TickResult:
        tick = self._tick("discovery")
        tick.enter(TickPhase.SELECTING_SOURCE)
        tick.open(None)
        prober = self.prober
        if prober is None:
            return tick.finish(error=RuntimeError("no company prober configured"))

        def work() -> None:
            tick.enter(TickPhase.FETCHING)
            report: DiscoveryReport = run_discovery(
                self.store,
                prober,
                batch_size=self.discovery_batch_size,
                on_log=tick.log,
                abort=abort,
                now=self._now,
            )
            tick.enter(TickPhase.PERSISTING)
            tick.result.stats.update(report.as_dict())
            tick.result.stats["discovered"] = list(report.discovered)
            if report.aborted:
                raise SyncAborted("discovery aborted")

        return self._finish(tick, None, work)

