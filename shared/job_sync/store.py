from __future__ import annotations

import copy
import uuid
from dataclasses import asdict, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from shared.job_sync.logging_utils import utcnow
from shared.job_sync.models import (
    Category,
    CompanyJobProgress,
    DiscoveredCompany,
    JobRecord,
    PersistedJob,
    PotentialCompany,
    PotentialCompanyStatus,
    SyncLogEntry,
    SyncRun,
    UpsertAction,
)

BATCH_STATE_STATUS = "batch_state"


class DuplicateJobError(RuntimeError):
    def __init__(self, source_url: str) -> None:
        super().__init__(f"Job already exists for source_url={source_url}")
        self.source_url = source_url


class JobStore:
    """Persistence contract for the sync engine.

    Every write is a single-row insert or upsert; callers never hold a
    transaction open across network calls.
    """

    # categories
    def list_categories(self) -> List[Category]:
        raise NotImplementedError

    def insert_categories(self, categories: Iterable[Category]) -> None:
        raise NotImplementedError

    # jobs
    def get_job_by_source_url(self, source_url: str) -> Optional[PersistedJob]:
        raise NotImplementedError

    def insert_job(self, record: JobRecord) -> PersistedJob:
        raise NotImplementedError

    def update_job(self, job_id: int, record: JobRecord) -> PersistedJob:
        raise NotImplementedError

    def list_jobs(self) -> List[PersistedJob]:
        raise NotImplementedError

    def delete_jobs(self, job_ids: Sequence[int]) -> int:
        raise NotImplementedError

    # discovered_companies
    def get_discovered_company(self, slug: str) -> Optional[DiscoveredCompany]:
        raise NotImplementedError

    def upsert_discovered_company(self, company: DiscoveredCompany) -> UpsertAction:
        raise NotImplementedError

    # potential_companies
    def add_potential_company(self, slug: str) -> PotentialCompany:
        raise NotImplementedError

    def get_potential_company(self, slug: str) -> Optional[PotentialCompany]:
        raise NotImplementedError

    def list_potential_companies(
        self, statuses: Sequence[PotentialCompanyStatus], *, limit: Optional[int] = None
    ) -> List[PotentialCompany]:
        raise NotImplementedError

    def save_potential_company(self, company: PotentialCompany) -> None:
        raise NotImplementedError

    # sync_history
    def create_sync_run(self, run: SyncRun) -> None:
        raise NotImplementedError

    def save_sync_run(self, run: SyncRun) -> None:
        raise NotImplementedError

    def get_sync_run(self, run_id: str) -> Optional[SyncRun]:
        raise NotImplementedError

    def list_sync_runs(self, sync_type: Optional[str] = None, *, status: Optional[str] = None) -> List[SyncRun]:
        raise NotImplementedError

    def append_sync_log(self, run_id: str, entry: SyncLogEntry) -> None:
        raise NotImplementedError

    def get_batch_state(self, sync_type: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def save_batch_state(self, sync_type: str, state: Dict[str, Any]) -> None:
        raise NotImplementedError

    # company_job_progress
    def get_company_progress(self, company_slug: str) -> Optional[CompanyJobProgress]:
        raise NotImplementedError

    def save_company_progress(self, progress: CompanyJobProgress) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class InMemoryStore(JobStore):
    def __init__(self, *, now: Callable[[], datetime] = utcnow) -> None:
        self._now = now
        self.categories: Dict[int, Category] = {}
        self.jobs: Dict[int, PersistedJob] = {}
        self._job_ids_by_url: Dict[str, int] = {}
        self._next_job_id = 1
        self.discovered: Dict[str, DiscoveredCompany] = {}
        self.potential: Dict[str, PotentialCompany] = {}
        self._next_potential_id = 1
        self.sync_runs: Dict[str, SyncRun] = {}
        self.progress: Dict[str, CompanyJobProgress] = {}

    def list_categories(self) -> List[Category]:
        return sorted(self.categories.values(), key=lambda c: c.id)

    def insert_categories(self, categories: Iterable[Category]) -> None:
        for category in categories:
            self.categories.setdefault(category.id, category)

    def get_job_by_source_url(self, source_url: str) -> Optional[PersistedJob]:
        job_id = self._job_ids_by_url.get(source_url)
        return self.jobs.get(job_id) if job_id is not None else None

    def insert_job(self, record: JobRecord) -> PersistedJob:
        if record.source_url in self._job_ids_by_url:
            raise DuplicateJobError(record.source_url)
        now = self._now()
        job = PersistedJob(id=self._next_job_id, created_at=now, updated_at=now, **asdict(record))
        self._next_job_id += 1
        self.jobs[job.id] = job
        self._job_ids_by_url[job.source_url] = job.id
        return job

    def update_job(self, job_id: int, record: JobRecord) -> PersistedJob:
        existing = self.jobs[job_id]
        fields = asdict(record)
        if record.post_date is None:
            fields["post_date"] = existing.post_date
        updated = replace(existing, updated_at=self._now(), **fields)
        if updated.source_url != existing.source_url:
            self._job_ids_by_url.pop(existing.source_url, None)
            self._job_ids_by_url[updated.source_url] = job_id
        self.jobs[job_id] = updated
        return updated

    def add_job(self, job: PersistedJob) -> PersistedJob:
        """Place a fully-formed row (fixtures and imports)."""
        self.jobs[job.id] = job
        self._job_ids_by_url[job.source_url] = job.id
        self._next_job_id = max(self._next_job_id, job.id + 1)
        return job

    def list_jobs(self) -> List[PersistedJob]:
        return [self.jobs[k] for k in sorted(self.jobs)]

    def delete_jobs(self, job_ids: Sequence[int]) -> int:
        deleted = 0
        for job_id in job_ids:
            job = self.jobs.pop(job_id, None)
            if job is None:
                continue
            if self._job_ids_by_url.get(job.source_url) == job_id:
                del self._job_ids_by_url[job.source_url]
            deleted += 1
        return deleted

    def get_discovered_company(self, slug: str) -> Optional[DiscoveredCompany]:
        return self.discovered.get(slug)

    def upsert_discovered_company(self, company: DiscoveredCompany) -> UpsertAction:
        existing = self.discovered.get(company.slug)
        if existing is None:
            self.discovered[company.slug] = company
            return "inserted"
        self.discovered[company.slug] = replace(
            existing,
            name=company.name or existing.name,
            job_count=company.job_count,
            remote_job_count=company.remote_job_count,
            departments=company.departments or existing.departments,
            sample_jobs=company.sample_jobs or existing.sample_jobs,
            suggested_category=company.suggested_category or existing.suggested_category,
        )
        return "updated"

    def add_potential_company(self, slug: str) -> PotentialCompany:
        existing = self.potential.get(slug)
        if existing is not None:
            return existing
        company = PotentialCompany(id=self._next_potential_id, slug=slug, added_at=self._now())
        self._next_potential_id += 1
        self.potential[slug] = company
        return company

    def get_potential_company(self, slug: str) -> Optional[PotentialCompany]:
        return self.potential.get(slug)

    def list_potential_companies(
        self, statuses: Sequence[PotentialCompanyStatus], *, limit: Optional[int] = None
    ) -> List[PotentialCompany]:
        rows = sorted(
            (c for c in self.potential.values() if c.status in statuses),
            key=lambda c: (c.added_at, c.id),
        )
        return rows[:limit] if limit is not None else rows

    def save_potential_company(self, company: PotentialCompany) -> None:
        self.potential[company.slug] = company

    def create_sync_run(self, run: SyncRun) -> None:
        self.sync_runs[run.id] = copy.deepcopy(run)

    def save_sync_run(self, run: SyncRun) -> None:
        self.sync_runs[run.id] = copy.deepcopy(run)

    def get_sync_run(self, run_id: str) -> Optional[SyncRun]:
        run = self.sync_runs.get(run_id)
        return copy.deepcopy(run) if run is not None else None

    def list_sync_runs(self, sync_type: Optional[str] = None, *, status: Optional[str] = None) -> List[SyncRun]:
        runs = [
            r
            for r in self.sync_runs.values()
            if r.status != BATCH_STATE_STATUS
            and (sync_type is None or r.sync_type == sync_type)
            and (status is None or r.status == status)
        ]
        return [copy.deepcopy(r) for r in sorted(runs, key=lambda r: r.started_at)]

    def append_sync_log(self, run_id: str, entry: SyncLogEntry) -> None:
        run = self.sync_runs.get(run_id)
        if run is not None:
            run.logs.append(entry)

    def _batch_state_row(self, sync_type: str) -> Optional[SyncRun]:
        for run in self.sync_runs.values():
            if run.status == BATCH_STATE_STATUS and run.sync_type == sync_type:
                return run
        return None

    def get_batch_state(self, sync_type: str) -> Optional[Dict[str, Any]]:
        row = self._batch_state_row(sync_type)
        return dict(row.stats) if row is not None else None

    def save_batch_state(self, sync_type: str, state: Dict[str, Any]) -> None:
        now = self._now()
        row = self._batch_state_row(sync_type)
        if row is None:
            row = SyncRun(id=str(uuid.uuid4()), sync_type=sync_type, status=BATCH_STATE_STATUS, started_at=now)
            self.sync_runs[row.id] = row
        row.stats = dict(state)
        row.completed_at = now

    def get_company_progress(self, company_slug: str) -> Optional[CompanyJobProgress]:
        return self.progress.get(company_slug)

    def save_company_progress(self, progress: CompanyJobProgress) -> None:
        self.progress[progress.company_slug] = progress
