"""HTML sanitization for job descriptions.

Output keeps paragraphs, breaks, bold/italic/underline, headings and lists.
Every other tag is dropped or unwrapped and all attributes are stripped.
"""

from __future__ import annotations

import re
from typing import List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PageElement

from shared.job_sync.normalize import repair_mojibake

ALLOWED_TAGS = frozenset(
    {"p", "br", "b", "strong", "i", "em", "u", "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "li"}
)
BLOCK_TAGS = frozenset({"p", "ul", "ol", "li", "h1", "h2", "h3", "h4", "h5", "h6"})
_DROP_TAGS = ["script", "style", "iframe", "object", "embed", "form", "input", "noscript"]
_DIV_BLOCK_CHILDREN = ["p", "ul", "ol", "div", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre"]

_BULLET_CHARS = "•\\-•‣◦⁃∙●▪*·"
_BULLET_RE = re.compile(rf"^[\s\u200b]*[{_BULLET_CHARS}]\s*")
_BULLET_START_RE = re.compile(rf"^[{_BULLET_CHARS}]")
_HAS_TAG_RE = re.compile(r"<[a-z][\s\S]*>", re.IGNORECASE)
_CAPS_HEADING_RE = re.compile(r"^[A-Z][A-Z\s'&]{2,50}:")
_BLOCK_EDGE_RE = re.compile(r"\s*(</?(?:p|ul|ol|li|h[1-6])>)\s*")


def _plain_text_to_html(text: str) -> str:
    if _HAS_TAG_RE.search(text):
        return text

    parts: List[str] = []
    for para in re.split(r"\n\n+", text):
        for line in para.strip().split("\n"):
            line = line.strip()
            if not line:
                continue
            if (line.endswith(":") and len(line) < 80) or _CAPS_HEADING_RE.match(line):
                parts.append(f"<h3>{line}</h3>")
            else:
                parts.append(f"<p>{line}</p>")
    return "".join(parts) or f"<p>{text}</p>"


def _strip_leading_bullet(tag: Tag) -> None:
    for node in tag.descendants:
        if isinstance(node, NavigableString) and node.strip():
            node.replace_with(_BULLET_RE.sub("", str(node), count=1))
            return


def _convert_fake_bullets(soup: BeautifulSoup) -> List[Tag]:
    converted: List[Tag] = []
    for p in soup.find_all("p"):
        text = p.get_text().strip()
        span_text = "".join(span.get_text() for span in p.find_all("span")).strip()
        has_bullet_span = bool(_BULLET_START_RE.match(span_text))
        if not (_BULLET_RE.match(text) or has_bullet_span):
            continue

        if has_bullet_span:
            for span in p.find_all("span"):
                if span.decomposed:
                    continue
                span_value = span.get_text().strip()
                if _BULLET_START_RE.match(span_value):
                    remaining = _BULLET_RE.sub("", span.get_text(), count=1)
                    if remaining.strip():
                        span.string = remaining
                    else:
                        span.decompose()
                elif not span_value:
                    span.decompose()
        else:
            _strip_leading_bullet(p)

        p.name = "li"
        converted.append(p)
    return converted


def _previous_element(tag: Tag) -> Optional[Tag]:
    node = tag.previous_sibling
    while isinstance(node, NavigableString) and not node.strip():
        node = node.previous_sibling
    return node if isinstance(node, Tag) else None


def _group_list_items(soup: BeautifulSoup, items: List[Tag]) -> None:
    for li in items:
        prev = _previous_element(li)
        if prev is not None and prev.name == "ul":
            prev.append(li.extract())
        else:
            ul = soup.new_tag("ul")
            li.insert_before(ul)
            ul.append(li.extract())


def _is_empty(tag: Tag) -> bool:
    return not tag.get_text().strip().strip("•").strip()


def _wrap_loose_inline(soup: BeautifulSoup) -> None:
    run: List[PageElement] = []

    def flush() -> None:
        if any(not isinstance(node, NavigableString) or node.strip() for node in run):
            p = soup.new_tag("p")
            run[0].insert_before(p)
            for node in run:
                p.append(node.extract())
        run.clear()

    for node in list(soup.contents):
        if isinstance(node, Tag) and node.name in BLOCK_TAGS:
            flush()
        else:
            run.append(node)
    flush()


def _sanitize_once(html: str) -> str:
    cleaned = _plain_text_to_html(html)
    cleaned = repair_mojibake(cleaned.replace("&nbsp;", " ")).replace("\\n", "")

    soup = BeautifulSoup(cleaned, "html.parser")
    for tag in soup.find_all(_DROP_TAGS):
        if not tag.decomposed:
            tag.decompose()
    for tag in soup.find_all(True):
        tag.attrs = {}
    for a in soup.find_all("a"):
        a.replace_with(a.get_text())

    for div in soup.find_all("div"):
        if div.decomposed:
            continue
        if div.find(_DIV_BLOCK_CHILDREN) is not None:
            div.unwrap()
        elif div.get_text().strip():
            div.name = "p"
        else:
            div.decompose()

    _group_list_items(soup, _convert_fake_bullets(soup))

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()

    for tag in soup.find_all(["p", "li", "h1", "h2", "h3", "h4", "h5", "h6"]):
        if not tag.decomposed and _is_empty(tag):
            tag.decompose()
    for ul in soup.find_all(["ul", "ol"]):
        if not ul.decomposed and ul.find("li") is None:
            ul.decompose()
    for br in soup.find_all("br"):
        if br.decomposed:
            continue
        prev = br.previous_sibling
        while isinstance(prev, NavigableString) and not prev.strip():
            prev = prev.previous_sibling
        if isinstance(prev, Tag) and prev.name == "br":
            br.decompose()

    for text in soup.find_all(string=True):
        collapsed = re.sub(r"\s+", " ", str(text))
        if collapsed != str(text):
            text.replace_with(collapsed)

    _wrap_loose_inline(soup)
    out = soup.decode(formatter="minimal")
    out = _BLOCK_EDGE_RE.sub(r"\1", out)
    out = re.sub(r"<p>(?:\s|<br/>)*</p>", "", out)
    return re.sub(r"\s+", " ", out).strip()


def sanitize_html(html: Optional[str]) -> str:
    """Clean arbitrary board HTML (or plain text) into a small safe subset.

    Idempotent: sanitizing already-sanitized output returns it unchanged.
    """
    if not html or not html.strip():
        return ""
    current = html
    for _ in range(4):
        result = _sanitize_once(current)
        if result == current:
            break
        current = result
    return current
