from __future__ import annotations

from typing import Any, Dict, List, Optional

from shared.job_sync.models import RawJobListing
from shared.job_sync.normalize import (
    capitalize_slug,
    decode_html_entities,
    extract_salary_from_description,
    html_to_text,
    parse_datetime,
    summarize,
)
from shared.job_sync.sanitize import sanitize_html
from shared.job_sync.sources.base import CompanyBoardSource

BOARD_URL = "https://boards-api.greenhouse.io/v1/boards/{slug}/jobs?content=true"

_REMOTE_MARKERS = ("remote", "anywhere")


def _metadata_salary(job: Dict[str, Any]) -> Optional[str]:
    for meta in job.get("metadata") or []:
        if not isinstance(meta, dict):
            continue
        name = str(meta.get("name") or "").lower()
        value = meta.get("value")
        if ("salary" in name or "compensation" in name) and value:
            if isinstance(value, dict):
                # currency-range fields come back as {"min_value", "max_value", "unit"}
                low, high = value.get("min_value"), value.get("max_value")
                unit = value.get("unit") or ""
                if low and high:
                    return f"{unit} {low} - {high}".strip()
                continue
            return str(value)
    return None


class GreenhouseSource(CompanyBoardSource):
    key = "greenhouse"
    name = "Greenhouse"

    def board_url(self, slug: str) -> str:
        return BOARD_URL.format(slug=slug)

    def extract_postings(self, payload: Any) -> List[Any]:
        jobs = payload.get("jobs") if isinstance(payload, dict) else None
        return jobs if isinstance(jobs, list) else []

    def is_remote(self, posting: Any) -> bool:
        location = str(((posting.get("location") or {}).get("name")) or "").lower()
        return any(marker in location for marker in _REMOTE_MARKERS)

    def posting_title(self, posting: Any) -> str:
        return decode_html_entities(posting.get("title") or "")

    def posting_departments(self, posting: Any) -> List[str]:
        return [d.get("name") for d in posting.get("departments") or [] if isinstance(d, dict) and d.get("name")]

    def company_name(self, slug: str, payload: Any) -> str:
        for job in self.extract_postings(payload):
            if job.get("company_name"):
                return str(job["company_name"])
        return capitalize_slug(slug)

    def to_listing(self, slug: str, posting: Any) -> RawJobListing:
        content = decode_html_entities(posting.get("content") or "")
        text = html_to_text(content)
        salary = _metadata_salary(posting) or extract_salary_from_description(text)
        return RawJobListing(
            external_id=f"greenhouse-{posting['id']}",
            title=self.posting_title(posting),
            company=posting.get("company_name") or capitalize_slug(slug),
            description=summarize(text, 200),
            location=(posting.get("location") or {}).get("name") or "Remote",
            source_url=posting["absolute_url"],
            source_name=self.name,
            posted_date=parse_datetime(posting.get("updated_at")),
            salary=salary,
            full_description=sanitize_html(content) if content else None,
            tags=tuple(self.posting_departments(posting)),
        )
