from __future__ import annotations

from typing import Any, List

from shared.job_sync.models import RawJobListing
from shared.job_sync.normalize import decode_html_entities, parse_datetime
from shared.job_sync.sources.base import CompanyBoardSource

BOARD_URL = "https://apply.workable.com/api/v1/widget/accounts/{slug}"


def workable_company_name(slug: str) -> str:
    name = slug.replace("-", " ")
    return name[:1].upper() + name[1:]


def _location(job: dict) -> str:
    location = "Remote"
    if job.get("city") and job.get("country"):
        location = f"{job['city']}, {job['country']}"
    elif job.get("country"):
        location = job["country"]
    else:
        locations = job.get("locations") or []
        first = locations[0] if locations and isinstance(locations[0], dict) else {}
        if first.get("city") and first.get("country"):
            location = f"{first['city']}, {first['country']}"
        elif first.get("country"):
            location = first["country"]
    if job.get("telecommuting") and location != "Remote":
        location = f"{location} (Remote)"
    return location


class WorkableSource(CompanyBoardSource):
    """Widget API: listings carry no description or salary."""

    key = "workable"
    name = "Workable"

    def board_url(self, slug: str) -> str:
        return BOARD_URL.format(slug=slug)

    def extract_postings(self, payload: Any) -> List[Any]:
        jobs = payload.get("jobs") if isinstance(payload, dict) else None
        return jobs if isinstance(jobs, list) else []

    def is_remote(self, posting: Any) -> bool:
        return posting.get("telecommuting") is True or "remote" in str(posting.get("title") or "").lower()

    def posting_title(self, posting: Any) -> str:
        return decode_html_entities(posting.get("title") or "")

    def posting_departments(self, posting: Any) -> List[str]:
        tags: List[str] = []
        if posting.get("department"):
            tags.append(posting["department"])
        for dept in posting.get("department_hierarchy") or []:
            name = dept.get("name") if isinstance(dept, dict) else None
            if name and name not in tags:
                tags.append(name)
        return tags

    def company_name(self, slug: str, payload: Any) -> str:
        if isinstance(payload, dict) and payload.get("name"):
            return str(payload["name"])
        return workable_company_name(slug)

    def to_listing(self, slug: str, posting: Any) -> RawJobListing:
        shortcode = posting.get("shortcode") or posting.get("id")
        if not shortcode:
            raise ValueError("posting has no shortcode")
        source_url = (
            posting.get("url")
            or posting.get("application_url")
            or f"https://apply.workable.com/{slug}/j/{shortcode}/"
        )
        return RawJobListing(
            external_id=f"workable-{shortcode}",
            title=self.posting_title(posting),
            company=workable_company_name(slug),
            description="",
            location=_location(posting),
            source_url=source_url,
            source_name=self.name,
            posted_date=parse_datetime(posting.get("published_on") or posting.get("created_at")),
            tags=tuple(self.posting_departments(posting)),
        )
