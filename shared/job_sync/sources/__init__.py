from shared.job_sync.sources.base import (
    BoardProbe,
    CompanyBoardSource,
    JobSource,
    SourceUnavailableError,
)
from shared.job_sync.sources.greenhouse import GreenhouseSource
from shared.job_sync.sources.himalayas import HimalayasSource
from shared.job_sync.sources.jobicy import JobicySource
from shared.job_sync.sources.lever import LeverSource
from shared.job_sync.sources.remoteok import RemoteOkSource
from shared.job_sync.sources.workable import WorkableSource

__all__ = [
    "BoardProbe",
    "CompanyBoardSource",
    "GreenhouseSource",
    "HimalayasSource",
    "JobSource",
    "JobicySource",
    "LeverSource",
    "RemoteOkSource",
    "SourceUnavailableError",
    "WorkableSource",
]
