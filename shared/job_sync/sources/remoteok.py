from __future__ import annotations

from typing import Any, Iterator, List, Optional, Sequence

from shared.job_sync.http import AbortSignal
from shared.job_sync.logging_utils import LogCallback
from shared.job_sync.models import RawJobListing, SourceKind
from shared.job_sync.normalize import decode_html_entities, html_to_text, parse_datetime, summarize
from shared.job_sync.sanitize import sanitize_html
from shared.job_sync.sources.base import JobSource, SourceUnavailableError, is_aborted

API_URL = "https://remoteok.com/api"
LISTING_URL = "https://remoteok.com/l/{id}"
DEFAULT_LIMIT = 100


def _salary(item: dict) -> Optional[str]:
    high = item.get("salary_max")
    if not high:
        return None
    low = item.get("salary_min")
    low_text = f"{int(low):,}" if low else "?"
    return f"${low_text} - ${int(high):,}"


class RemoteOkSource(JobSource):
    key = "remoteok"
    name = "RemoteOK"
    kind: SourceKind = "aggregator"

    def to_listing(self, item: dict) -> RawJobListing:
        raw_description = decode_html_entities(item.get("description") or "")
        return RawJobListing(
            external_id=f"remoteok-{item['id']}",
            title=decode_html_entities(item.get("position") or ""),
            company=decode_html_entities(item.get("company") or "Unknown Company"),
            description=summarize(html_to_text(raw_description), 200),
            location=item.get("location") or "Remote",
            source_url=LISTING_URL.format(id=item["id"]),
            source_name=self.name,
            posted_date=parse_datetime(item.get("date")) or parse_datetime(item.get("epoch"), unit="s"),
            salary=_salary(item),
            full_description=sanitize_html(raw_description) if raw_description else None,
            tags=tuple(str(t) for t in item.get("tags") or ()),
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
        cap = limit if limit is not None else DEFAULT_LIMIT
        params = {"tag": query} if query else None
        self._log(on_log, f"Fetching RemoteOK jobs{f' tagged {query!r}' if query else ''}")

        data: Any = self._get_json(API_URL, params=params, abort=abort)
        if not isinstance(data, list):
            raise SourceUnavailableError(self.name, "expected a JSON array")

        batch: List[RawJobListing] = []
        skipped = 0
        # element 0 is the legal/metadata notice
        for item in data[1:]:
            if len(batch) >= cap:
                break
            if not isinstance(item, dict) or not item.get("position") or not item.get("url") or item.get("expired"):
                continue
            try:
                batch.append(self.to_listing(item))
            except Exception as e:
                skipped += 1
                self._log(on_log, f"Skipping malformed RemoteOK item ({type(e).__name__}: {e})", "warning")

        self._log(on_log, f"RemoteOK: {len(batch)} jobs ({skipped} skipped)", "success" if batch else "info")
        if batch:
            yield batch
