from __future__ import annotations

from typing import Any, Iterator, List, Optional, Sequence

from shared.job_sync.http import AbortSignal
from shared.job_sync.logging_utils import LogCallback
from shared.job_sync.models import RawJobListing, SourceKind
from shared.job_sync.normalize import (
    decode_html_entities,
    format_salary_range,
    html_to_text,
    parse_datetime,
    summarize,
)
from shared.job_sync.sanitize import sanitize_html
from shared.job_sync.sources.base import JobSource, SourceUnavailableError, is_aborted

API_URL = "https://jobicy.com/api/v2/remote-jobs"
MAX_COUNT = 100


class JobicySource(JobSource):
    key = "jobicy"
    name = "Jobicy"
    kind: SourceKind = "aggregator"

    def to_listing(self, item: dict) -> RawJobListing:
        salary = None
        if item.get("salaryCurrency"):
            salary = format_salary_range(
                item["salaryCurrency"], item.get("annualSalaryMin"), item.get("annualSalaryMax"), suffix="/year"
            )
        excerpt = decode_html_entities(item.get("jobExcerpt") or "")
        full = decode_html_entities(item.get("jobDescription") or "")
        tags = [str(t) for t in (item.get("jobIndustry") or [])] + [str(t) for t in (item.get("jobType") or [])]
        return RawJobListing(
            external_id=f"jobicy-{item['id']}",
            title=decode_html_entities(item.get("jobTitle") or ""),
            company=decode_html_entities(item.get("companyName") or "Unknown Company"),
            description=summarize(html_to_text(excerpt or full), 200),
            location=item.get("jobGeo") or "Remote",
            source_url=item["url"],
            source_name=self.name,
            posted_date=parse_datetime(item.get("pubDate")),
            salary=salary,
            full_description=sanitize_html(full) if full else None,
            tags=tuple(decode_html_entities(t) for t in tags),
        )

    def fetch(
        self,
        *,
        query: Optional[str] = None,
        on_log: Optional[LogCallback] = None,
        company_filter: Optional[Sequence[str]] = None,
        job_offset: int = 0,
        limit: Optional[int] = None,
        abort: Optional[AbortSignal] = None,
    ) -> Iterator[List[RawJobListing]]:
        if is_aborted(abort):
            return
        params = {"count": min(limit or MAX_COUNT, MAX_COUNT)}
        if query:
            params["industry"] = query
        self._log(on_log, f"Fetching Jobicy jobs{f' in {query!r}' if query else ''}")

        data: Any = self._get_json(API_URL, params=params, abort=abort)
        if not isinstance(data, dict):
            raise SourceUnavailableError(self.name, "expected a JSON object")

        batch: List[RawJobListing] = []
        for item in data.get("jobs") or []:
            if not isinstance(item, dict):
                continue
            try:
                batch.append(self.to_listing(item))
            except Exception as e:
                self._log(on_log, f"Skipping malformed Jobicy item ({type(e).__name__}: {e})", "warning")

        self._log(on_log, f"Jobicy: {len(batch)} remote jobs", "success" if batch else "info")
        if batch:
            yield batch
