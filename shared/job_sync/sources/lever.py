from __future__ import annotations

from typing import Any, List

from shared.job_sync.models import RawJobListing
from shared.job_sync.normalize import (
    capitalize_slug,
    decode_html_entities,
    extract_salary_from_description,
    format_salary_range,
    html_to_text,
    parse_datetime,
    summarize,
)
from shared.job_sync.sanitize import sanitize_html
from shared.job_sync.sources.base import CompanyBoardSource

BOARD_URL = "https://api.lever.co/v0/postings/{slug}?mode=json"


def _full_html(posting: dict) -> str:
    """Description, then each titled list, then the closing section."""
    parts = [posting.get("description") or ""]
    for section in posting.get("lists") or []:
        if not isinstance(section, dict):
            continue
        heading = section.get("text") or ""
        parts.append(f"<h3>{heading}</h3><ul>{section.get('content') or ''}</ul>" if heading else section.get("content") or "")
    parts.append(posting.get("additional") or "")
    return decode_html_entities("".join(parts))


class LeverSource(CompanyBoardSource):
    key = "lever"
    name = "Lever"

    def board_url(self, slug: str) -> str:
        return BOARD_URL.format(slug=slug)

    def extract_postings(self, payload: Any) -> List[Any]:
        return payload if isinstance(payload, list) else []

    def is_remote(self, posting: Any) -> bool:
        categories = posting.get("categories") or {}
        haystack = " ".join(
            str(v or "")
            for v in (categories.get("location"), categories.get("commitment"), posting.get("descriptionPlain"))
        ).lower()
        return "remote" in haystack

    def posting_title(self, posting: Any) -> str:
        return decode_html_entities(posting.get("text") or "")

    def posting_departments(self, posting: Any) -> List[str]:
        categories = posting.get("categories") or {}
        return [v for v in (categories.get("department"), categories.get("team")) if v]

    def to_listing(self, slug: str, posting: Any) -> RawJobListing:
        categories = posting.get("categories") or {}
        raw_description = decode_html_entities(posting.get("description") or "")
        text = html_to_text(raw_description)

        salary = None
        salary_range = posting.get("salaryRange") or {}
        if salary_range.get("min") and salary_range.get("max"):
            salary = format_salary_range(salary_range.get("currency") or "USD", salary_range["min"], salary_range["max"])
        if not salary:
            plain = f"{posting.get('descriptionPlain') or ''}\n{posting.get('additionalPlain') or ''}"
            salary = extract_salary_from_description(plain) or extract_salary_from_description(text)

        full_html = _full_html(posting)
        source_url = posting.get("applyUrl") or posting.get("hostedUrl")
        if not source_url:
            raise ValueError("posting has no applyUrl or hostedUrl")

        return RawJobListing(
            external_id=f"lever-{posting['id']}",
            title=self.posting_title(posting),
            company=capitalize_slug(slug),
            description=summarize(text, 200),
            location=categories.get("location") or "Remote",
            source_url=source_url,
            source_name=self.name,
            posted_date=parse_datetime(posting.get("createdAt"), unit="ms"),
            salary=salary,
            full_description=sanitize_html(full_html) if full_html.strip() else None,
            tags=tuple(v for v in (categories.get("team"), categories.get("department"), categories.get("commitment")) if v),
        )
