"""Shared text and date normalization utilities.

Centralizes the clean-up applied to free text coming off the remote source so
the parser and the full-text fetcher agree on one behaviour.

**Entity normalization:**
    Bill history documents are XML, so the XML parser already decodes one
    level of escaping.  The source regularly double-encodes, though
    (``Health &amp;amp; Safety`` arrives as ``Health &amp; Safety``), so
    :func:`normalize_entities` keeps decoding the supported entity set until
    nothing changes.  Applying it twice is therefore a no-op.

**Date normalization:**
    Dates on the remote source are ``M/D/YYYY`` (``1/22/2025``); a few older
    documents carry ``YYYY-MM-DD`` or a trailing time.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime

from bs4 import BeautifulSoup

LOGGER = logging.getLogger(__name__)

# ── Entities ─────────────────────────────────────────────────────────────────

_NAMED_ENTITIES: dict[str, str] = {
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "apos": "'",
    "nbsp": " ",
}

_RE_ENTITY = re.compile(r"&(?:(amp|lt|gt|quot|apos|nbsp)|#(\d{1,7})|#[xX]([0-9a-fA-F]{1,6}));")


def _decode_entity(match: re.Match) -> str:
    name, dec, hexa = match.groups()
    if name:
        return _NAMED_ENTITIES[name]
    codepoint = int(dec) if dec else int(hexa, 16)
    if codepoint == 0 or codepoint > 0x10FFFF:
        return match.group(0)
    return chr(codepoint)


def normalize_entities(text: str | None) -> str:
    """Decode escaped ampersands, quotes, angle brackets and numeric references.

    Decodes repeatedly until a fixed point, so double-encoded input is fully
    repaired and ``normalize_entities(normalize_entities(s)) == normalize_entities(s)``.

    Examples::

        >>> normalize_entities("Health &amp; Safety")
        'Health & Safety'
        >>> normalize_entities("Health &amp;amp; Safety")
        'Health & Safety'
        >>> normalize_entities("O&#39;Brien")
        "O'Brien"
    """
    if not text:
        return ""
    # Each decode shortens the string, so this terminates.
    while True:
        decoded = _RE_ENTITY.sub(_decode_entity, text)
        if decoded == text:
            return decoded
        text = decoded


# ── Whitespace / lists ───────────────────────────────────────────────────────

_RE_WS = re.compile(r"\s+")
_RE_SUBJECT_CODE = re.compile(r"\s*\([^)]+\)\s*$")


def normalize_whitespace(text: str | None) -> str:
    """Collapse runs of whitespace to a single space and strip."""
    if not text:
        return ""
    return _RE_WS.sub(" ", text).strip()


def clean_text(text: str | None) -> str:
    """Entity-normalize then whitespace-normalize a free-text field."""
    return normalize_whitespace(normalize_entities(text))


def parse_name_list(text: str | None) -> list[str]:
    """Split a pipe-separated name list: ``"Kitzman | Lopez, Janie"``.

    Empty segments are dropped; order is preserved.
    """
    if not text:
        return []
    names = (clean_text(part) for part in text.split("|"))
    return [name for name in names if name]


def strip_subject_code(subject: str) -> str:
    """``"State Finances--Appropriations (I0746)"`` → ``"State Finances--Appropriations"``."""
    return _RE_SUBJECT_CODE.sub("", subject).strip()


# ── Dates ────────────────────────────────────────────────────────────────────

_DATE_FORMATS = [
    "%m/%d/%Y",  # 1/22/2025 (bill history documents)
    "%Y-%m-%d",  # ISO
    "%m/%d/%Y %I:%M:%S %p",  # 3/20/2025 12:00:00 AM (occasional)
    "%Y-%m-%dT%H:%M:%S",  # action timestamps in newer documents
    "%Y-%m-%d %H:%M:%S",
]

_RE_LEADING_DATE = re.compile(r"^\s*(\d{1,2}/\d{1,2}/\d{4})")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a remote date/time string; ``None`` if empty or unparseable."""
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    LOGGER.debug("parse_timestamp: unparseable date %r", value)
    return None


def parse_us_date(value: str | None) -> date | None:
    """Parse ``M/D/YYYY`` (and the other known formats) into a ``date``."""
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def leading_date(text: str | None) -> date | None:
    """Date at the start of a last-action line: ``"02/25/2025 H Referred to ..."``."""
    if not text:
        return None
    m = _RE_LEADING_DATE.match(text)
    return parse_us_date(m.group(1)) if m else None


# ── HTML ─────────────────────────────────────────────────────────────────────

_RE_INLINE_WS = re.compile(r"[ \t\u00a0]+")
_RE_MULTI_BLANK = re.compile(r"\n{3,}")
_BLOCK_TAGS = ["p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "tr"]


def html_to_text(html: str) -> str:
    """Reduce a bill text HTML page to plain text.

    - Drops ``<script>`` / ``<style>``
    - Puts block elements and ``<br>`` on their own lines
    - Normalizes leftover entities (double-encoded ones survive BeautifulSoup)
    - Collapses whitespace, keeping at most one blank line
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")

    text = soup.get_text()
    text = normalize_entities(text)
    text = text.replace("\r\n", "\n")
    text = _RE_INLINE_WS.sub(" ", text)
    lines = [line.strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = _RE_MULTI_BLANK.sub("\n\n", text)
    return text.strip()
