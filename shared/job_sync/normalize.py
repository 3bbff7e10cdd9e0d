from __future__ import annotations

import html as html_lib
import re
from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple, Union
from urllib.parse import urlsplit, urlunsplit

from bs4 import BeautifulSoup

_DOUBLE_ENCODED: Sequence[Tuple[re.Pattern[str], str]] = (
    (re.compile(r"&amp;#(\d+);"), r"&#\1;"),
    (re.compile(r"&amp;#x([0-9a-fA-F]+);"), r"&#x\1;"),
    (re.compile(r"&amp;amp;"), "&amp;"),
    (re.compile(r"&amp;([a-zA-Z]+);"), r"&\1;"),
)

_NAMED_ENTITIES = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&apos;": "'",
    "&nbsp;": " ",
    "&copy;": "©",
    "&reg;": "®",
    "&trade;": "™",
    "&ndash;": "–",
    "&mdash;": "—",
    "&bull;": "•",
    "&middot;": "·",
    "&lsquo;": "'",
    "&rsquo;": "'",
    "&ldquo;": '"',
    "&rdquo;": '"',
    "&euro;": "€",
    "&pound;": "£",
    "&cent;": "¢",
    "&yen;": "¥",
}

_NAMED_RE = re.compile(r"&[a-zA-Z0-9]+;")
_DECIMAL_RE = re.compile(r"&#(\d+);")
_HEX_RE = re.compile(r"&#x([0-9a-fA-F]+);")

# UTF-8 bytes decoded as cp1252 or latin-1. Longer sequences must come first.
_MOJIBAKE: Sequence[Tuple[str, str]] = (
    ("â€™", "'"),
    ("â\u0080\u0099", "'"),
    ("â€˜", "'"),
    ("â\u0080\u0098", "'"),
    ("â€œ", '"'),
    ("â\u0080\u009c", '"'),
    ("â€\u009d", '"'),
    ("â\u0080\u009d", '"'),
    ("â€¦", "…"),
    ("â\u0080¦", "…"),
    ("â€\u201c", "–"),
    ("â\u0080\u0093", "–"),
    ("â€\u201d", "—"),
    ("â\u0080\u0094", "—"),
    ("â€¢", "•"),
    ("â\u0080¢", "•"),
    ("â€", '"'),
    ("â„¢", "™"),
    ("Â·", "·"),
    ("Â®", "®"),
    ("Â©", "©"),
    ("Â", ""),
    ("\u00a0", " "),
    ("Ã©", "é"),
    ("Ã¨", "è"),
    ("Ã ", "à"),
    ("Ã¡", "á"),
    ("Ã­", "í"),
    ("Ã³", "ó"),
    ("Ãº", "ú"),
    ("Ã±", "ñ"),
)

_SALARY_PATTERNS: Sequence[re.Pattern[str]] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\$(\d{2,3})k?\s*(?:-|to)\s*\$(\d{2,3})k",
        r"\$(\d{2,3})k?\s*(?:-|to)\s*(\d{2,3})k",
        r"\$(\d{1,3}(?:,\d{3})+)\s*(?:-|to|—|–)\s*\$(\d{1,3}(?:,\d{3})+)",
        r"\$(\d{1,3}(?:,\d{3})+)\s*[—–-]\s*\$(\d{1,3}(?:,\d{3})+)(?:\s*USD)?",
        r"USD\s*(\d{1,3}(?:,\d{3})*|\d{2,3})k?\s*(?:-|to)\s*(\d{1,3}(?:,\d{3})*|\d{2,3})k?",
        r"£(\d{2,3})k\s*(?:-|to)\s*£(\d{2,3})k",
        r"€(\d{2,3})k\s*(?:-|to)\s*€(\d{2,3})k",
        r"\b(\d{2,3})k\s*(?:-|to)\s*(\d{2,3})k\b",
        r"\$(\d{2,3})\s*(?:-|to)\s*\$(\d{2,3})\s*per\s*hour",
        r"\$(\d{1,3}(?:,\d{3})+)\+",
    )
)

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TAG_RE = re.compile(r"<[^>]*>")


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").strip())


def repair_mojibake(text: str) -> str:
    for bad, good in _MOJIBAKE:
        if bad in text:
            text = text.replace(bad, good)
    return text


def _codepoint(value: int, original: str) -> str:
    if 0 < value <= 0x10FFFF:
        return chr(value)
    return original


def _decode_once(text: str) -> str:
    for pattern, repl in _DOUBLE_ENCODED:
        text = pattern.sub(repl, text)
    text = _NAMED_RE.sub(lambda m: _NAMED_ENTITIES.get(m.group(0), m.group(0)), text)
    text = _DECIMAL_RE.sub(lambda m: _codepoint(int(m.group(1)), m.group(0)), text)
    text = _HEX_RE.sub(lambda m: _codepoint(int(m.group(1), 16), m.group(0)), text)
    return repair_mojibake(text)


def decode_html_entities(text: Optional[str]) -> str:
    """Decode HTML entities and repair UTF-8/Latin-1 mojibake.

    Some boards double- or triple-encode, so decoding repeats until the text
    stops changing. That also makes the function idempotent.
    """
    if not text:
        return ""
    current = text
    while True:
        decoded = _decode_once(current)
        if decoded == current:
            return decoded
        current = decoded


def extract_salary_from_description(text: Optional[str]) -> Optional[str]:
    """Return the first salary-looking substring, verbatim, or None."""
    if not text:
        return None
    for pattern in _SALARY_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def html_to_text(html: Optional[str]) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(" ", strip=True)
    return normalize_whitespace(html_lib.unescape(text))


def summarize(text: Optional[str], max_words: int = 200) -> str:
    words = (text or "").split()
    summary = " ".join(words[:max_words])
    if len(words) > max_words:
        summary += "..."
    return summary


def sanitize_string(value: Optional[str], max_len: int = 2000) -> Optional[str]:
    """Plain-text cleanup for short stored fields (title, company)."""
    if value is None:
        return None
    cleaned = _CONTROL_RE.sub("", value)
    cleaned = _TAG_RE.sub("", cleaned).strip()
    return cleaned[:max_len]


def capitalize_slug(slug: str) -> str:
    return " ".join(part[:1].upper() + part[1:] for part in re.split(r"[-_\s]+", slug.strip()) if part)


def format_salary_range(
    currency: Optional[str],
    minimum: Optional[float],
    maximum: Optional[float],
    *,
    suffix: str = "",
) -> Optional[str]:
    if not minimum:
        return None
    prefix = f"{currency} " if currency else ""
    if maximum:
        return f"{prefix}{int(minimum):,} - {int(maximum):,}{suffix}"
    return f"{prefix}{int(minimum):,}+{suffix}"


def canonical_job_url(url: str) -> str:
    """Origin plus path; query string and fragment are dropped."""
    parts = urlsplit((url or "").strip())
    path = parts.path.rstrip("/") or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


def parse_datetime(value: Union[str, int, float, None], *, unit: str = "iso") -> Optional[datetime]:
    """Parse ISO-8601 strings or epoch numbers (``unit`` of "s" or "ms")."""
    if value is None or value == "":
        return None
    if unit in {"s", "ms"}:
        try:
            seconds = float(value) / (1000.0 if unit == "ms" else 1.0)
        except (TypeError, ValueError):
            return None
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        try:
            dt = datetime.strptime(raw[:19], "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
