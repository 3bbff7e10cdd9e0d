from __future__ import annotations

from typing import Any, Iterator, List, Optional, Sequence

from shared.job_sync.http import AbortSignal, ThrottledFetcher
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

API_URL = "https://himalayas.app/jobs/api"
PAGE_SIZE = 20


class HimalayasSource(JobSource):
    """Offset-paged feed; only listings without location restrictions are kept."""

    key = "himalayas"
    name = "Himalayas"
    kind: SourceKind = "aggregator"

    def __init__(self, fetcher: ThrottledFetcher) -> None:
        super().__init__(fetcher)
        # where the next call should resume; set by each fetch
        self.next_offset = 0
        self.exhausted = False

    def to_listing(self, item: dict) -> RawJobListing:
        raw = decode_html_entities(item.get("description") or item.get("excerpt") or "")
        salary = None
        if item.get("currency"):
            salary = format_salary_range(item["currency"], item.get("minSalary"), item.get("maxSalary"))
        source_url = item.get("applicationLink") or item.get("guid")
        if not source_url:
            raise ValueError("item has no applicationLink")
        return RawJobListing(
            external_id=f"himalayas-{item.get('guid') or source_url}",
            title=decode_html_entities(item.get("title") or ""),
            company=decode_html_entities(item.get("companyName") or "Unknown Company"),
            description=summarize(html_to_text(raw), 200),
            location="Remote",
            source_url=source_url,
            source_name=self.name,
            posted_date=parse_datetime(item.get("pubDate"), unit="s"),
            salary=salary,
            full_description=sanitize_html(raw) if raw else None,
            tags=tuple(str(c) for c in item.get("categories") or ()),
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
        offset = max(0, int(job_offset or 0))
        total = 0
        self.next_offset = offset
        self.exhausted = False
        self._log(on_log, f"Fetching Himalayas jobs from offset {offset}")

        while not is_aborted(abort):
            data: Any = self._get_json(API_URL, params={"limit": PAGE_SIZE, "offset": offset}, abort=abort)
            if not isinstance(data, dict):
                raise SourceUnavailableError(self.name, "expected a JSON object")
            items = data.get("jobs") or []
            if not items:
                self.exhausted = True
                break

            batch: List[RawJobListing] = []
            # feed offsets count items, so resume right after the last one read
            consumed = len(items)
            for position, item in enumerate(items):
                if limit is not None and total + len(batch) >= limit:
                    consumed = position
                    break
                if not isinstance(item, dict) or item.get("locationRestrictions"):
                    continue
                try:
                    batch.append(self.to_listing(item))
                except Exception as e:
                    self._log(on_log, f"Skipping malformed Himalayas item ({type(e).__name__}: {e})", "warning")

            cut_short = consumed < len(items)
            self.next_offset = offset + consumed
            if batch:
                total += len(batch)
                self._log(on_log, f"Himalayas offset {offset}: {len(batch)} jobs (total {total})")
                yield batch

            if cut_short:
                break
            if len(items) < PAGE_SIZE:
                self.exhausted = True
                break
            if limit is not None and total >= limit:
                break
            offset += PAGE_SIZE

        self._log(on_log, f"Himalayas: {total} remote jobs", "success" if total else "info")
