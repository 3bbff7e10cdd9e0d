from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from shared.job_sync.categorize import suggest_category
from shared.job_sync.http import AbortSignal, FetchAborted
from shared.job_sync.logging_utils import LogCallback, log_event, utcnow
from shared.job_sync.models import DiscoveredCompany, LogLevel, PotentialCompany
from shared.job_sync.sources.base import BoardProbe, CompanyBoardSource, is_aborted
from shared.job_sync.store import JobStore

LOGGER = logging.getLogger("job_sync.discovery")

DEFAULT_BATCH_SIZE = 5

_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")
_STRIP_RE = re.compile(r"[^A-Za-z0-9\s_\-]")
_SPLIT_RE = re.compile(r"[\s_\-]+")
_SLUG_RE = re.compile(r"^[a-z0-9_\-]+$")


def generate_slug_variations(name: str) -> List[str]:
    """Candidate board slugs for a company name, most likely first.

    "Hugging Face" -> ["hugging-face", "huggingface"]; "HuggingFace" and
    "hugging_face" reach the same pair, plus the input itself when it is
    already slug-shaped.
    """
    split = _CAMEL_RE.sub(r"\1 \2", name.strip())
    parts = [p.lower() for p in _SPLIT_RE.split(_STRIP_RE.sub("", split)) if p]
    if not parts:
        return []

    variations: Dict[str, None] = {}
    variations.setdefault("-".join(parts), None)
    variations.setdefault("".join(parts), None)
    original = name.strip().lower()
    if _SLUG_RE.match(original):
        variations.setdefault(original, None)
    return list(variations)


@dataclass(frozen=True)
class ProbeMatch:
    source_key: str
    source_name: str
    probe: BoardProbe


class CompanyProber:
    """Tries each slug variation on each board in declared order; first hit wins."""

    def __init__(self, sources: Sequence[CompanyBoardSource], *, on_log: Optional[LogCallback] = None) -> None:
        self.sources = list(sources)
        self._on_log = on_log

    def _log(self, message: str, level: LogLevel = "info") -> None:
        if self._on_log is not None:
            self._on_log(message, level)

    def probe(self, name: str, *, abort: Optional[AbortSignal] = None) -> Optional[ProbeMatch]:
        variations = generate_slug_variations(name)
        for source in self.sources:
            for slug in variations:
                if is_aborted(abort):
                    raise FetchAborted(source.board_url(slug))
                result = source.probe(slug, abort=abort)
                if result is None:
                    self._log(f"{name}: no {source.name} board at {slug!r}")
                    continue
                self._log(
                    f"{name}: {source.name} board {slug!r} has {result.remote_job_count}/{result.job_count} remote jobs"
                )
                if result.remote_job_count > 0:
                    return ProbeMatch(source_key=source.key, source_name=source.name, probe=result)
        return None


@dataclass
class DiscoveryReport:
    checked: int = 0
    discovered: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    aborted: bool = False

    def as_dict(self) -> Dict[str, object]:
        return {
            "companies_checked": self.checked,
            "companies_added": len(self.discovered),
            "not_found": len(self.not_found),
            "errors": len(self.errors),
            "aborted": self.aborted,
        }


def to_discovered_company(match: ProbeMatch) -> DiscoveredCompany:
    probe = match.probe
    return DiscoveredCompany(
        slug=probe.slug,
        name=probe.name,
        source=match.source_key,
        job_count=probe.job_count,
        remote_job_count=probe.remote_job_count,
        departments=probe.departments,
        suggested_category=suggest_category(probe.sample_jobs, probe.departments),
        sample_jobs=probe.sample_jobs,
    )


def _check_candidate(
    store: JobStore,
    prober: CompanyProber,
    candidate: PotentialCompany,
    *,
    abort: Optional[AbortSignal],
) -> Tuple[PotentialCompany, Optional[ProbeMatch]]:
    match = prober.probe(candidate.slug, abort=abort)
    if match is None:
        return replace(candidate, status="not_found"), None
    store.upsert_discovered_company(to_discovered_company(match))
    return replace(candidate, status="discovered"), match


def run_discovery(
    store: JobStore,
    prober: CompanyProber,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_log: Optional[LogCallback] = None,
    abort: Optional[AbortSignal] = None,
    now: Callable[[], datetime] = utcnow,
) -> DiscoveryReport:
    """Check one bounded batch of pending candidates, oldest first."""

    def log(message: str, level: LogLevel = "info") -> None:
        if on_log is not None:
            on_log(message, level)

    report = DiscoveryReport()
    candidates = store.list_potential_companies(["pending"], limit=batch_size)
    log(f"Checking {len(candidates)} potential companies")

    for candidate in candidates:
        if is_aborted(abort):
            report.aborted = True
            break

        checking = replace(
            candidate,
            status="checking",
            check_count=candidate.check_count + 1,
            last_checked_at=now(),
        )
        store.save_potential_company(checking)
        report.checked += 1

        try:
            final, match = _check_candidate(store, prober, checking, abort=abort)
        except FetchAborted:
            store.save_potential_company(replace(checking, status="pending"))
            report.aborted = True
            break
        except Exception as e:
            # back in the queue for a later run
            store.save_potential_company(replace(checking, status="pending"))
            report.errors.append(candidate.slug)
            log(f"Error checking {candidate.slug}: {type(e).__name__}: {e}", "warning")
            log_event(
                LOGGER,
                logging.WARNING,
                "discovery_check_failed",
                slug=candidate.slug,
                error_type=type(e).__name__,
                error=str(e),
            )
            continue

        store.save_potential_company(final)
        if match is not None:
            report.discovered.append(candidate.slug)
            log(
                f"Discovered {candidate.slug} on {match.source_name} as {match.probe.slug!r} "
                f"({match.probe.remote_job_count} remote jobs)",
                "success",
            )
        else:
            report.not_found.append(candidate.slug)
            log(f"{candidate.slug}: no board found on any ATS")

    log_event(LOGGER, logging.INFO, "discovery_done", **report.as_dict())
    log(f"Checked {report.checked}, discovered {len(report.discovered)}", "success")
    return report
