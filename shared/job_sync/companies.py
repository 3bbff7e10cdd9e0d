from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

DEFAULT_COMPANIES_PATH = Path(__file__).resolve().parent / "data" / "companies.json"


@dataclass(frozen=True)
class CompanyDirectory:
    """Company board slugs per ATS, de-duplicated in file order."""

    greenhouse: Tuple[str, ...] = ()
    lever: Tuple[str, ...] = ()
    workable: Tuple[str, ...] = ()

    def for_source(self, key: str) -> Tuple[str, ...]:
        return getattr(self, key.lower(), ())


def _flatten(groups: Any) -> Tuple[str, ...]:
    slugs: Iterable[str]
    if isinstance(groups, dict):
        slugs = (slug for group in groups.values() for slug in group)
    else:
        slugs = groups or ()
    seen: Dict[str, None] = {}
    for slug in slugs:
        slug = str(slug).strip().lower()
        if slug:
            seen.setdefault(slug, None)
    return tuple(seen)


def parse_company_directory(data: Dict[str, Any]) -> CompanyDirectory:
    return CompanyDirectory(
        greenhouse=_flatten(data.get("greenhouse")),
        lever=_flatten(data.get("lever")),
        workable=_flatten(data.get("workable")),
    )


@lru_cache(maxsize=None)
def load_company_directory(path: Optional[str] = None) -> CompanyDirectory:
    """Read the slug lists once per process; the result is immutable."""
    target = Path(path) if path else DEFAULT_COMPANIES_PATH
    with open(target, "r", encoding="utf-8") as f:
        return parse_company_directory(json.load(f))
