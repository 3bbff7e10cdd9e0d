#!/usr/bin/env python3
from __future__ import annotations

# ruff: noqa: E402
import argparse
import json
import logging
import os
import signal
import sys
import threading
from datetime import timedelta

# Ensure project root is in path for local execution.
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, project_root)

from shared.config.settings import get_settings, parse_csv
from shared.job_sync.dedup import resolve_duplicates
from shared.job_sync.discovery import CompanyProber
from shared.job_sync.interactive import SyncEvent, SyncOptions, sync_jobs
from shared.job_sync.orchestrator import SyncOrchestrator, fail_stale_runs
from shared.job_sync.registry import (
    ATS_KEYS,
    available_sources,
    build_enabled_sources,
    build_fetchers,
    close_fetchers,
)
from shared.job_sync.sources.base import CompanyBoardSource
from shared.job_sync.store import InMemoryStore, JobStore


def build_store(kind: str) -> JobStore:
    if kind == "postgres":
        from shared.job_sync.postgres import PostgresStore

        store = PostgresStore()
        store.ensure_schema()
        return store
    return InMemoryStore()


def print_event(event: SyncEvent) -> None:
    print(json.dumps(event.as_dict(), default=str), flush=True)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the remote job sync engine (scheduled ticks or a full sync).")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--tick", choices=["ats", "aggregator", "discovery"], help="Run one scheduled tick.")
    mode.add_argument("--interactive", action="store_true", help="Run a full sync and stream JSON events to stdout.")
    mode.add_argument("--dedup", action="store_true", help="Resolve duplicate jobs in the store.")
    mode.add_argument("--list", action="store_true", help="List available sources and exit.")
    mode.add_argument("--fail-stale", action="store_true", help="Mark runs stuck in running as failed.")
    parser.add_argument("--sources", help="Comma-separated source filter for --interactive (e.g. greenhouse,remoteok).")
    parser.add_argument("--discovery", action="store_true", help="With --interactive: check one discovery batch first.")
    parser.add_argument("--cleanup", action="store_true", help="With --interactive: resolve duplicates afterwards.")
    parser.add_argument("--no-update", action="store_true", help="Do not update jobs that already exist.")
    parser.add_argument("--no-add", action="store_true", help="Do not insert new jobs.")
    parser.add_argument("--store", choices=["memory", "postgres"], default="postgres", help="Persistence backend.")
    parser.add_argument("--dry-run", action="store_true", help="With --dedup: report duplicates without deleting.")
    parser.add_argument("--add-potential", help="Comma-separated company names to queue for discovery.")
    parser.add_argument(
        "--stale-after-minutes", type=int, default=60, help="With --fail-stale: age after which a running run is stuck."
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.log.log_level, format="%(asctime)s %(levelname)s %(message)s")

    fetchers = build_fetchers(settings.job_sync)
    try:
        registry = available_sources(fetchers)
        if args.list:
            print("Available sources:", ", ".join(sorted(registry.keys())))
            print("Enabled sources:", ", ".join(settings.job_sync.enabled_source_keys))
            return 0

        store = build_store(args.store)
        abort = threading.Event()
        signal.signal(signal.SIGINT, lambda _sig, _frame: abort.set())

        for name in parse_csv(args.add_potential):
            store.add_potential_company(name)

        boards = [s for s in (registry.get(k) for k in ATS_KEYS) if isinstance(s, CompanyBoardSource)]
        prober = CompanyProber(boards)

        try:
            if args.fail_stale:
                failed = fail_stale_runs(store, older_than=timedelta(minutes=args.stale_after_minutes))
                print(json.dumps({"failed_runs": failed}))
                return 0

            if args.dedup:
                report = resolve_duplicates(store, dry_run=args.dry_run)
                print(json.dumps(report.as_dict()))
                return 0

            if args.interactive:
                options = SyncOptions(
                    discovery=args.discovery,
                    cleanup=args.cleanup,
                    update_existing=not args.no_update,
                    add_new=not args.no_add,
                    sources=parse_csv(args.sources),
                )
                result = sync_jobs(
                    store,
                    build_enabled_sources(fetchers, settings=settings.job_sync),
                    options,
                    print_event,
                    abort=abort,
                    prober=prober,
                )
                return 1 if "error" in result else 0

            orchestrator = SyncOrchestrator(
                store,
                registry,
                prober=prober,
                ats_rotation=settings.job_sync.ats_rotation_keys,
                aggregator_rotation=settings.job_sync.aggregator_rotation_keys,
                ats_jobs_per_company=settings.job_sync.ats_jobs_per_company,
                aggregator_max_jobs=settings.job_sync.aggregator_max_jobs,
                discovery_batch_size=settings.job_sync.discovery_batch_size,
            )
            if args.tick == "ats":
                tick = orchestrator.run_ats_tick(abort=abort)
            elif args.tick == "aggregator":
                tick = orchestrator.run_aggregator_tick(abort=abort)
            else:
                tick = orchestrator.run_discovery_tick(abort=abort)

            print(
                f"Tick summary sync_type={tick.sync_type} run_id={tick.run_id} source={tick.source} "
                f"unit={tick.unit} status={tick.status} aborted={tick.aborted} error={tick.error}"
            )
            return 0 if tick.error is None else 1
        finally:
            store.close()
    finally:
        close_fetchers(fetchers)


if __name__ == "__main__":
    raise SystemExit(main())
