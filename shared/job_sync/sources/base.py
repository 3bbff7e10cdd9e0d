from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from shared.job_sync.http import AbortSignal, FetchError, ThrottledFetcher, is_json_response
from shared.job_sync.logging_utils import LogCallback, log_event
from shared.job_sync.models import LogLevel, RawJobListing, SourceKind
from shared.job_sync.normalize import capitalize_slug

LOGGER = logging.getLogger("job_sync.sources")


class SourceUnavailableError(RuntimeError):
    """The aggregate feed itself is down (non-2xx or non-JSON)."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


@dataclass
class BoardRunStats:
    companies: int = 0
    with_jobs: int = 0
    no_board: int = 0
    failed: int = 0
    remote_jobs: int = 0
    skipped_items: int = 0
    # postings taken from the offset/limit slice, converted or not
    consumed_items: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class BoardProbe:
    slug: str
    name: str
    job_count: int
    remote_job_count: int
    departments: Tuple[str, ...] = ()
    sample_jobs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BoardResponse:
    status: str  # "ok" | "no_board" | "failed"
    postings: List[Any] = field(default_factory=list)
    raw: Any = None
    error: Optional[str] = None


def is_aborted(abort: Optional[AbortSignal]) -> bool:
    return abort is not None and abort.is_set()


class JobSource(abc.ABC):
    """A job board: ``fetch`` yields batches of RawJobListing in API order.

    The iterator is finite and not restartable. A new call starts from its
    own offset arguments.
    """

    key: str = ""
    name: str = ""
    kind: SourceKind = "aggregator"

    def __init__(self, fetcher: ThrottledFetcher) -> None:
        self.fetcher = fetcher

    @abc.abstractmethod
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
        raise NotImplementedError

    def _log(self, on_log: Optional[LogCallback], message: str, level: LogLevel = "info") -> None:
        if on_log is not None:
            on_log(message, level)
        else:
            LOGGER.log(logging.WARNING if level in {"warning", "error"} else logging.INFO, "%s: %s", self.name, message)

    def _get_json(self, url: str, *, params: Optional[dict] = None, abort: Optional[AbortSignal] = None) -> Any:
        """Fetch the aggregate feed; any failure here means the feed is unavailable."""
        try:
            resp = self.fetcher.get(url, params=params, abort=abort)
        except FetchError as e:
            raise SourceUnavailableError(self.name, str(e)) from e
        if not resp.is_success:
            raise SourceUnavailableError(self.name, f"HTTP {resp.status_code} for {url}", resp.status_code)
        if not is_json_response(resp):
            content_type = (resp.headers.get("Content-Type") or "")[:50]
            raise SourceUnavailableError(self.name, f"unexpected content-type {content_type!r}", resp.status_code)
        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise SourceUnavailableError(self.name, f"invalid JSON from {url}: {e}", resp.status_code) from e


class CompanyBoardSource(JobSource):
    """Per-company ATS board: one request per slug, one batch per company."""

    kind: SourceKind = "ats"

    def __init__(self, fetcher: ThrottledFetcher, companies: Sequence[str]) -> None:
        super().__init__(fetcher)
        self.companies: Tuple[str, ...] = tuple(companies)
        self.last_stats = BoardRunStats()

    @abc.abstractmethod
    def board_url(self, slug: str) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    def extract_postings(self, payload: Any) -> List[Any]:
        raise NotImplementedError

    @abc.abstractmethod
    def is_remote(self, posting: Any) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def to_listing(self, slug: str, posting: Any) -> RawJobListing:
        raise NotImplementedError

    @abc.abstractmethod
    def posting_title(self, posting: Any) -> str:
        raise NotImplementedError

    def posting_departments(self, posting: Any) -> List[str]:
        return []

    def company_name(self, slug: str, payload: Any) -> str:
        return capitalize_slug(slug)

    def get_board(self, slug: str, *, abort: Optional[AbortSignal] = None) -> BoardResponse:
        url = self.board_url(slug)
        try:
            resp = self.fetcher.get(url, abort=abort)
        except FetchError as e:
            return BoardResponse(status="failed", error=str(e))
        if resp.status_code == 404:
            return BoardResponse(status="no_board", error="HTTP 404")
        if not resp.is_success:
            return BoardResponse(status="failed", error=f"HTTP {resp.status_code}")
        if not is_json_response(resp):
            content_type = (resp.headers.get("Content-Type") or "")[:50]
            return BoardResponse(status="failed", error=f"invalid content-type {content_type!r}")
        try:
            payload = resp.json()
        except json.JSONDecodeError as e:
            return BoardResponse(status="failed", error=f"invalid JSON: {e}")
        postings = self.extract_postings(payload)
        return BoardResponse(status="ok", postings=postings, raw=payload)

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
        companies = list(self.companies)
        if company_filter:
            companies = [c.strip().lower() for c in company_filter if c.strip()]

        stats = BoardRunStats()
        self.last_stats = stats
        self._log(on_log, f"Fetching {self.name} jobs for {len(companies)} companies")

        for slug in companies:
            if is_aborted(abort):
                self._log(on_log, f"{self.name}: aborted before {slug}", "warning")
                return
            stats.companies += 1

            board = self.get_board(slug, abort=abort)
            if board.status == "no_board":
                stats.no_board += 1
                self._log(on_log, f"{slug}: no job board found (HTTP 404)", "warning")
                continue
            if board.status == "failed":
                stats.failed += 1
                stats.errors.append(f"{slug}: {board.error}")
                self._log(on_log, f"{slug}: {board.error}", "error")
                continue

            remote = [p for p in board.postings if self._safe_is_remote(p)]
            if job_offset:
                remote = remote[job_offset:]
            if limit is not None:
                remote = remote[:limit]
            stats.consumed_items += len(remote)

            batch: List[RawJobListing] = []
            for posting in remote:
                try:
                    batch.append(self.to_listing(slug, posting))
                except Exception as e:
                    stats.skipped_items += 1
                    self._log(on_log, f"{slug}: skipping malformed posting ({type(e).__name__}: {e})", "warning")

            if batch:
                stats.with_jobs += 1
                stats.remote_jobs += len(batch)
                self._log(on_log, f"{slug}: {len(batch)} remote jobs", "success")
                yield batch

        log_event(
            LOGGER,
            logging.INFO,
            "board_fetch_done",
            source=self.key,
            companies=stats.companies,
            with_jobs=stats.with_jobs,
            no_board=stats.no_board,
            failed=stats.failed,
            remote_jobs=stats.remote_jobs,
        )
        self._log(
            on_log,
            f"{self.name} summary: {stats.companies} companies, {stats.with_jobs} with remote jobs, "
            f"{stats.no_board} without a board, {stats.failed} failed, {stats.remote_jobs} remote jobs",
        )

    def _safe_is_remote(self, posting: Any) -> bool:
        try:
            return bool(self.is_remote(posting))
        except (AttributeError, TypeError):
            return False

    def probe(self, slug: str, *, abort: Optional[AbortSignal] = None) -> Optional[BoardProbe]:
        """Board summary for ``slug``, or None when the board does not exist or cannot be read."""
        board = self.get_board(slug, abort=abort)
        if board.status != "ok":
            return None

        remote = [p for p in board.postings if self._safe_is_remote(p)]
        departments: dict = {}
        for posting in remote:
            for dept in self.posting_departments(posting):
                if dept:
                    departments.setdefault(dept, None)
        return BoardProbe(
            slug=slug,
            name=self.company_name(slug, board.raw),
            job_count=len(board.postings),
            remote_job_count=len(remote),
            departments=tuple(departments),
            sample_jobs=tuple(self.posting_title(p) for p in remote[:5]),
        )

