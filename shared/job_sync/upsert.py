from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from shared.job_sync.categorize import DEFAULT_CATEGORIES, DEFAULT_CATEGORY_ID, categorize
from shared.job_sync.logging_utils import LogCallback, log_event
from shared.job_sync.models import JobRecord, LogLevel, RawJobListing, UpsertAction
from shared.job_sync.normalize import (
    extract_salary_from_description,
    html_to_text,
    sanitize_string,
    summarize,
)
from shared.job_sync.sanitize import sanitize_html
from shared.job_sync.store import DuplicateJobError, JobStore

LOGGER = logging.getLogger("job_sync.upsert")

SUMMARY_WORDS = 200


@dataclass(frozen=True)
class UpsertOptions:
    add_new: bool = True
    update_existing: bool = True


@dataclass
class UpsertStats:
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    by_source: Dict[str, int] = field(default_factory=dict)
    new_companies: List[str] = field(default_factory=list)

    def record(self, action: UpsertAction) -> None:
        setattr(self, action, getattr(self, action) + 1)

    def merge(self, other: "UpsertStats") -> None:
        self.fetched += other.fetched
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        for name, count in other.by_source.items():
            self.by_source[name] = self.by_source.get(name, 0) + count
        for company in other.new_companies:
            if company not in self.new_companies:
                self.new_companies.append(company)

    def as_dict(self) -> Dict[str, object]:
        return {
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "by_source": dict(self.by_source),
        }


def ensure_default_categories(store: JobStore, on_log: Optional[LogCallback] = None) -> bool:
    """Seed the category table when it is empty. Returns True if rows were inserted."""
    if store.list_categories():
        return False
    store.insert_categories(DEFAULT_CATEGORIES)
    if on_log is not None:
        on_log(f"Seeded {len(DEFAULT_CATEGORIES)} default categories", "success")
    log_event(LOGGER, logging.INFO, "categories_seeded", count=len(DEFAULT_CATEGORIES))
    return True


def build_record(listing: RawJobListing, known_category_ids: Optional[Set[int]] = None) -> JobRecord:
    raw_text = listing.description or ""
    plain = html_to_text(raw_text)
    full_html = listing.full_description or raw_text
    category_id = categorize(listing.title, plain, listing.tags)
    if known_category_ids is not None and category_id not in known_category_ids:
        category_id = DEFAULT_CATEGORY_ID

    return JobRecord(
        title=sanitize_string(listing.title) or "",
        company=sanitize_string(listing.company) or "",
        description=summarize(plain, SUMMARY_WORDS) or None,
        description_raw=raw_text or None,
        full_description=sanitize_html(full_html) or None,
        pay_range=sanitize_string(listing.salary) or extract_salary_from_description(plain),
        post_date=listing.posted_date,
        source_url=listing.source_url,
        source_name=listing.source_name,
        category_id=category_id,
    )


class JobUpserter:
    """Insert-or-update keyed on ``source_url``."""

    def __init__(
        self,
        store: JobStore,
        options: UpsertOptions = UpsertOptions(),
        *,
        on_log: Optional[LogCallback] = None,
    ) -> None:
        self.store = store
        self.options = options
        self._on_log = on_log
        self._category_ids: Optional[Set[int]] = None

    def _log(self, message: str, level: LogLevel = "info") -> None:
        if self._on_log is not None:
            self._on_log(message, level)

    def _known_category_ids(self) -> Set[int]:
        if self._category_ids is None:
            self._category_ids = {c.id for c in self.store.list_categories()}
        return self._category_ids

    def upsert(self, listing: RawJobListing) -> UpsertAction:
        existing = self.store.get_job_by_source_url(listing.source_url)
        if existing is not None and not self.options.update_existing:
            return "skipped"
        if existing is None and not self.options.add_new:
            return "skipped"

        record = build_record(listing, self._known_category_ids())
        if existing is not None:
            self.store.update_job(existing.id, record)
            return "updated"
        try:
            self.store.insert_job(record)
        except DuplicateJobError:
            # another writer inserted the same URL between lookup and insert
            return "skipped"
        return "inserted"

    def upsert_batch(self, listings: Iterable[RawJobListing], *, limit: Optional[int] = None) -> UpsertStats:
        stats = UpsertStats()
        for listing in listings:
            if limit is not None and stats.fetched >= limit:
                break
            stats.fetched += 1
            stats.by_source[listing.source_name] = stats.by_source.get(listing.source_name, 0) + 1
            try:
                action = self.upsert(listing)
            except Exception as e:
                stats.failed += 1
                self._log(f"Error processing job {listing.title!r}: {type(e).__name__}: {e}", "error")
                log_event(
                    LOGGER,
                    logging.WARNING,
                    "job_upsert_failed",
                    source_url=listing.source_url,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            stats.record(action)
            if action == "inserted" and listing.company not in stats.new_companies:
                stats.new_companies.append(listing.company)
        return stats
