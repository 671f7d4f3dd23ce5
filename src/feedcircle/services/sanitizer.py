"""HTML fragment cleaning for article previews.

Feed items carry arbitrary HTML. Previews keep only plain text, links and line
breaks, and are cut to a fixed number of characters. The repair applied after
cutting is a best-effort safety layer (it closes at most one anchor and drops a
half-written tag), not a general HTML fixer.
"""

import html
import re
import warnings

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning, NavigableString, Tag
from bs4.element import CData, Comment, Declaration, Doctype, ProcessingInstruction

from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)

MAX_CONTENT_CHARS = 250

ANCHOR_OPEN = "<a"
ANCHOR_CLOSE = "</a>"
LINE_BREAK = "<br/>"

UNSAFE_SCHEMES = ("javascript:", "data:")

SHTML_URL_PATTERN = re.compile(r"https?://\S*?\.shtml")

SURROGATE_PATTERN = re.compile(r"[\ud800-\udfff]")

_SKIPPED_STRINGS = (Comment, CData, Declaration, Doctype, ProcessingInstruction)


def is_safe_href(href: str) -> bool:
    """Return False for script-capable link schemes."""
    return not href.strip().lower().startswith(UNSAFE_SCHEMES)


def extract_clean_html(raw_html: str) -> str:
    """Reduce an HTML fragment to text, ``<a href>`` and ``<br/>``.

    Returns an empty string when the fragment cannot be parsed.
    """
    try:
        # Feed bodies that are just a URL or a file name are still content.
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
            soup = BeautifulSoup(raw_html, "html.parser")
    except Exception as e:
        logger.debug("HTML fragment could not be parsed", error=str(e))
        return ""

    parts: list[str] = []
    # Work stack of nodes still to visit and literal closing tags to emit.
    stack: list[Tag | NavigableString | str] = [soup]
    while stack:
        node = stack.pop()
        if isinstance(node, str) and not isinstance(node, NavigableString):
            parts.append(node)
        elif isinstance(node, NavigableString):
            if not isinstance(node, _SKIPPED_STRINGS):
                parts.append(html.escape(str(node), quote=False))
        elif node.name == "br":
            parts.append(LINE_BREAK)
        else:
            if node.name == "a":
                parts.append(_open_anchor(node))
                stack.append(ANCHOR_CLOSE)
            stack.extend(reversed(node.contents))

    return "".join(parts).strip()


def _open_anchor(tag: Tag) -> str:
    href = tag.get("href")
    if isinstance(href, list):
        href = " ".join(href)
    if href is not None and is_safe_href(href):
        return f'<a href="{html.escape(href, quote=True)}">'
    return "<a>"


def space_after_shtml_urls(text: str) -> str:
    """Insert a space after ``.shtml`` URLs that run straight into more text."""
    pieces: list[str] = []
    last = 0
    for match in SHTML_URL_PATTERN.finditer(text):
        end = match.end()
        pieces.append(text[last:end])
        if end < len(text) and not text[end].isspace():
            pieces.append(" ")
        last = end
    pieces.append(text[last:])
    return "".join(pieces)


def _drop_dangling_tag(text: str) -> str:
    last_open = text.rfind("<")
    if last_open != -1 and text.rfind(">") < last_open:
        return text[:last_open]
    return text


def _has_unclosed_anchor(text: str) -> bool:
    return text.count(ANCHOR_OPEN) > text.count(ANCHOR_CLOSE)


def safe_truncate(text: str, limit: int = MAX_CONTENT_CHARS) -> str:
    """Cut ``text`` to ``limit`` code points without leaving broken markup.

    A trailing unterminated tag is removed. If an anchor was left open, the
    text is shortened further so that the appended ``</a>`` still fits.
    """
    text = SURROGATE_PATTERN.sub("", text)
    if len(text) <= limit:
        return text

    cut = _drop_dangling_tag(text[:limit])
    if _has_unclosed_anchor(cut):
        cut = _drop_dangling_tag(cut[: limit - len(ANCHOR_CLOSE)])
        if _has_unclosed_anchor(cut):
            cut += ANCHOR_CLOSE
    return cut


def sanitize(raw_html: str, limit: int = MAX_CONTENT_CHARS) -> str:
    """Turn a feed item's HTML into a short, safe preview."""
    cleaned = extract_clean_html(raw_html)
    if not cleaned:
        return ""
    return safe_truncate(space_after_shtml_urls(cleaned), limit)
