from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from shared.job_sync.logging_utils import LogCallback, log_event
from shared.job_sync.models import LogLevel, PersistedJob
from shared.job_sync.normalize import canonical_job_url
from shared.job_sync.store import JobStore

LOGGER = logging.getLogger("job_sync.dedup")

DIRECT_SOURCES = frozenset({"greenhouse", "lever", "workable", "ashby"})


def is_direct_source(source_name: Optional[str]) -> bool:
    return (source_name or "").strip().lower() in DIRECT_SOURCES


def survivor_sort_key(job: PersistedJob) -> Tuple[int, float, int]:
    """Smallest key survives: direct ATS first, then newest, then highest id."""
    return (
        0 if is_direct_source(job.source_name) else 1,
        -job.created_at.timestamp(),
        -job.id,
    )


def title_company_key(job: PersistedJob) -> Tuple[str, str]:
    return ((job.title or "").strip().lower(), (job.company or "").strip().lower())


def url_key(job: PersistedJob) -> str:
    return canonical_job_url(job.source_url)


@dataclass(frozen=True)
class DuplicateGroup:
    reason: str
    key: str
    survivor: PersistedJob
    duplicates: Tuple[PersistedJob, ...]


@dataclass
class DedupReport:
    total_jobs: int = 0
    groups: List[DuplicateGroup] = field(default_factory=list)
    deleted_ids: List[int] = field(default_factory=list)
    dry_run: bool = False

    @property
    def duplicates_found(self) -> int:
        return sum(len(g.duplicates) for g in self.groups)

    def as_dict(self) -> Dict[str, object]:
        return {
            "total_jobs": self.total_jobs,
            "groups": len(self.groups),
            "duplicates_found": self.duplicates_found,
            "deleted": len(self.deleted_ids),
            "dry_run": self.dry_run,
        }


def find_duplicate_groups(
    jobs: Sequence[PersistedJob],
    key: Callable[[PersistedJob], Hashable],
    *,
    reason: str,
) -> List[DuplicateGroup]:
    buckets: Dict[Hashable, List[PersistedJob]] = {}
    for job in jobs:
        buckets.setdefault(key(job), []).append(job)

    groups: List[DuplicateGroup] = []
    for bucket_key, members in buckets.items():
        if len(members) < 2:
            continue
        ordered = sorted(members, key=survivor_sort_key)
        groups.append(
            DuplicateGroup(
                reason=reason,
                key=" | ".join(bucket_key) if isinstance(bucket_key, tuple) else str(bucket_key),
                survivor=ordered[0],
                duplicates=tuple(ordered[1:]),
            )
        )
    return groups


def resolve_duplicates(
    store: JobStore,
    *,
    dry_run: bool = False,
    on_log: Optional[LogCallback] = None,
) -> DedupReport:
    """Title/company pass, then canonical-URL pass over the survivors."""

    def log(message: str, level: LogLevel = "info") -> None:
        if on_log is not None:
            on_log(message, level)

    jobs = store.list_jobs()
    report = DedupReport(total_jobs=len(jobs), dry_run=dry_run)
    log(f"Loaded {len(jobs)} jobs for deduplication{' (dry run)' if dry_run else ''}")

    doomed: Dict[int, None] = {}
    for reason, key in (("title_company", title_company_key), ("source_url", url_key)):
        remaining = [j for j in jobs if j.id not in doomed]
        for group in find_duplicate_groups(remaining, key, reason=reason):
            report.groups.append(group)
            for dup in group.duplicates:
                doomed.setdefault(dup.id, None)
            log(
                f"Duplicate ({reason}): keeping #{group.survivor.id} ({group.survivor.source_name}), "
                f"dropping {', '.join(f'#{d.id}' for d in group.duplicates)}",
                "warning",
            )

    if doomed and not dry_run:
        store.delete_jobs(list(doomed))
    report.deleted_ids = list(doomed) if not dry_run else []

    log_event(LOGGER, logging.INFO, "dedup_done", **report.as_dict())
    log(
        f"Deduplication complete: {len(report.groups)} groups, {report.duplicates_found} duplicates, "
        f"{len(report.deleted_ids)} deleted",
        "success",
    )
    return report
