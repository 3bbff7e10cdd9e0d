from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

LogLevel = Literal["info", "success", "warning", "error"]
UpsertAction = Literal["inserted", "updated", "skipped"]
RemoteType = Literal["fully_remote", "hybrid", "onsite"]
SyncStatus = Literal["queued", "running", "processing", "completed", "failed", "batch_state"]
PotentialCompanyStatus = Literal["pending", "checking", "discovered", "not_found"]
SourceKind = Literal["ats", "aggregator"]


@dataclass(frozen=True)
class RawJobListing:
    """One listing as returned by a source, before persistence."""

    external_id: str
    title: str
    company: str
    description: str
    location: str
    source_url: str
    source_name: str
    posted_date: Optional[datetime] = None
    salary: Optional[str] = None
    full_description: Optional[str] = None
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PersistedJob:
    id: int
    title: str
    company: str
    description: Optional[str]
    description_raw: Optional[str]
    full_description: Optional[str]
    pay_range: Optional[str]
    post_date: Optional[datetime]
    source_url: str
    source_name: str
    category_id: int
    created_at: datetime
    updated_at: datetime
    remote_type: RemoteType = "fully_remote"
    is_cleansed: bool = False

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("post_date", "created_at", "updated_at"):
            value = data.get(key)
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    slug: str
    description: str = ""


@dataclass(frozen=True)
class DiscoveredCompany:
    slug: str
    name: str
    source: str
    job_count: int = 0
    remote_job_count: int = 0
    departments: Tuple[str, ...] = ()
    suggested_category: Optional[str] = None
    sample_jobs: Tuple[str, ...] = ()
    status: str = "new"


@dataclass(frozen=True)
class PotentialCompany:
    id: int
    slug: str
    added_at: datetime
    status: PotentialCompanyStatus = "pending"
    check_count: int = 0
    last_checked_at: Optional[datetime] = None


@dataclass(frozen=True)
class SyncLogEntry:
    timestamp: datetime
    level: LogLevel
    message: str
    source: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
            "source": self.source,
        }


@dataclass
class SyncRun:
    """Audit record of one invocation; ``batch_state`` rows double as cursors."""

    id: str
    sync_type: str
    status: SyncStatus
    started_at: datetime
    source: Optional[str] = None
    completed_at: Optional[datetime] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    logs: List[SyncLogEntry] = field(default_factory=list)


@dataclass(frozen=True)
class CompanyJobProgress:
    company_slug: str
    source: str
    last_job_offset: int = 0
    total_jobs_discovered: int = 0
    last_synced_at: Optional[datetime] = None


@dataclass(frozen=True)
class JobRecord:
    """Mutable column set written by the upserter on insert or update."""

    title: str
    company: str
    description: Optional[str]
    description_raw: Optional[str]
    full_description: Optional[str]
    pay_range: Optional[str]
    post_date: Optional[datetime]
    source_url: str
    source_name: str
    category_id: int
    remote_type: RemoteType = "fully_remote"
    is_cleansed: bool = False
