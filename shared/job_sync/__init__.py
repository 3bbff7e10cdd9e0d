"""Remote job ingestion and sync engine.

Source adapters fetch listings through throttled, rate-limited HTTP; the
upserter normalizes, categorizes and stores them; the orchestrator spreads
the crawl across short scheduled ticks with a persisted cursor.
"""

from shared.job_sync.http import FetchAborted, FetchError, FetchPolicy, ThrottledFetcher
from shared.job_sync.interactive import SyncEvent, SyncOptions, sync_jobs
from shared.job_sync.models import RawJobListing
from shared.job_sync.orchestrator import SyncOrchestrator, TickResult
from shared.job_sync.store import InMemoryStore, JobStore

__all__ = [
    "FetchAborted",
    "FetchError",
    "FetchPolicy",
    "InMemoryStore",
    "JobStore",
    "RawJobListing",
    "SyncEvent",
    "SyncOptions",
    "SyncOrchestrator",
    "ThrottledFetcher",
    "TickResult",
    "sync_jobs",
]
