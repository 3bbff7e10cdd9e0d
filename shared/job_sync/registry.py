from __future__ import annotations

from typing import Callable, Dict, List, Optional

import httpx

from shared.config.settings import JobSyncSettings, get_settings
from shared.job_sync.companies import CompanyDirectory, load_company_directory
from shared.job_sync.http import FetchPolicy, ThrottledFetcher
from shared.job_sync.sources import (
    GreenhouseSource,
    HimalayasSource,
    JobicySource,
    JobSource,
    LeverSource,
    RemoteOkSource,
    WorkableSource,
)

ATS_POLICY = FetchPolicy(wait_s=1.0, max_requests=120, window_s=60.0, retry_delay_s=1.0)
AGGREGATOR_POLICY = FetchPolicy(wait_s=2.0, max_requests=30, window_s=60.0, retry_delay_s=2.0)

SOURCE_POLICIES: Dict[str, FetchPolicy] = {
    "greenhouse": ATS_POLICY,
    "lever": ATS_POLICY,
    "workable": ATS_POLICY,
    "remoteok": AGGREGATOR_POLICY,
    "himalayas": AGGREGATOR_POLICY,
    "jobicy": FetchPolicy(wait_s=2.0, max_requests=20, window_s=60.0, retry_delay_s=2.0, trailing=True),
}

ATS_KEYS = ("greenhouse", "lever", "workable")


def build_fetchers(
    settings: Optional[JobSyncSettings] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    now: Optional[Callable[[], float]] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Dict[str, ThrottledFetcher]:
    """One fetcher per source; each source's quota is shared by everything that calls it."""
    settings = settings or get_settings().job_sync
    extra = {}
    if now is not None:
        extra["now"] = now
    if sleep is not None:
        extra["sleep"] = sleep
    return {
        key: ThrottledFetcher(
            policy,
            user_agent=settings.user_agent,
            timeout_s=settings.request_timeout_s,
            transport=transport,
            **extra,
        )
        for key, policy in SOURCE_POLICIES.items()
    }


def available_sources(
    fetchers: Dict[str, ThrottledFetcher],
    directory: Optional[CompanyDirectory] = None,
) -> Dict[str, JobSource]:
    directory = directory or load_company_directory(get_settings().job_sync.companies_path or None)
    return {
        "greenhouse": GreenhouseSource(fetchers["greenhouse"], directory.greenhouse),
        "lever": LeverSource(fetchers["lever"], directory.lever),
        "workable": WorkableSource(fetchers["workable"], directory.workable),
        "remoteok": RemoteOkSource(fetchers["remoteok"]),
        "himalayas": HimalayasSource(fetchers["himalayas"]),
        "jobicy": JobicySource(fetchers["jobicy"]),
    }


def build_enabled_sources(
    fetchers: Dict[str, ThrottledFetcher],
    *,
    directory: Optional[CompanyDirectory] = None,
    settings: Optional[JobSyncSettings] = None,
) -> List[JobSource]:
    settings = settings or get_settings().job_sync
    registry = available_sources(fetchers, directory)
    out: List[JobSource] = []
    for name in settings.enabled_source_keys:
        source = registry.get(name)
        if source is not None:
            out.append(source)
    return out


def close_fetchers(fetchers: Dict[str, ThrottledFetcher]) -> None:
    for fetcher in fetchers.values():
        fetcher.close()
