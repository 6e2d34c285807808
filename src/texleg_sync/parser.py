"""Bill history document parser.

Turns the raw bytes of one remote bill history XML document into a
:class:`~texleg_sync.models.CandidateRecord`.  A current document looks like::

    <billhistory bill="89(R) HB 1" lastUpdate="3/20/2025">
      <caption>General Appropriations Bill.</caption>
      <authors>Bonnen</authors>
      <coauthors>Kitzman | Lopez, Janie</coauthors>
      <sponsors/>
      <cosponsors/>
      <subjects>
        <subject>State Finances--Appropriations (I0746)</subject>
      </subjects>
      <lastaction>02/25/2025 H Referred to Appropriations</lastaction>
      <committees>
        <house name="Appropriations" status="In committee"/>
      </committees>
      <actions>
        <action>
          <actionNumber>H010</actionNumber>
          <date>1/22/2025</date>
          <description>Filed</description>
        </action>
      </actions>
      <billtext>
        <WebHTMLURL>http://capitol.texas.gov/tlodocs/89R/billtext/html/HB00001I.HTM</WebHTMLURL>
      </billtext>
    </billhistory>

Older sessions publish the same content under ``<BillHistory>`` with
capitalised element names (``<Caption>``, ``<Authors>``, ``<Action>`` ...)
and no action numbers.  Each shape is a :class:`ParseStrategy` in
``STRATEGIES``; the strategy is chosen by sniffing the root element.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from xml.etree import ElementTree as ET

from .errors import ParseError
from .models import ActionEntry, CandidateRecord, CommitteeReferral, format_bill_id
from .normalize import (
    clean_text,
    leading_date,
    parse_name_list,
    parse_timestamp,
    strip_subject_code,
)
from .status_rules import derive_status

LOGGER = logging.getLogger(__name__)

VALID_BILL_TYPES = frozenset({"HB", "SB", "HJR", "SJR", "HCR", "SCR"})

MAX_DESCRIPTION_CHARS = 2000
MAX_LAST_ACTION_CHARS = 500

# bill="89(R) HB 1" -> ("HB", "1")
_RE_BILL_ATTR = re.compile(r"([A-Z]{2,3})\s*(\d+)", re.IGNORECASE)


# ── Strategies ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ParseStrategy:
    """Element vocabulary for one historical document shape."""

    tag: str  # registry key, e.g. "current"
    root: str
    caption: str
    authors: str
    coauthors: str
    sponsors: str
    cosponsors: str
    subjects: str
    subject: str
    last_action: str
    committees: str
    house: str
    senate: str
    actions: str
    action: str
    action_date: str
    action_description: str
    action_number: str | None
    bill_text: str


CURRENT = ParseStrategy(
    tag="current",
    root="billhistory",
    caption="caption",
    authors="authors",
    coauthors="coauthors",
    sponsors="sponsors",
    cosponsors="cosponsors",
    subjects="subjects",
    subject="subject",
    last_action="lastaction",
    committees="committees",
    house="house",
    senate="senate",
    actions="actions",
    action="action",
    action_date="date",
    action_description="description",
    action_number="actionNumber",
    bill_text="billtext",
)

LEGACY = ParseStrategy(
    tag="legacy",
    root="BillHistory",
    caption="Caption",
    authors="Authors",
    coauthors="Coauthors",
    sponsors="Sponsors",
    cosponsors="Cosponsors",
    subjects="Subjects",
    subject="Subject",
    last_action="LastAction",
    committees="Committees",
    house="House",
    senate="Senate",
    actions="Actions",
    action="Action",
    action_date="Date",
    action_description="Description",
    action_number=None,
    bill_text="BillText",
)

STRATEGIES: dict[str, ParseStrategy] = {s.root: s for s in (CURRENT, LEGACY)}


def select_strategy(root: ET.Element) -> ParseStrategy:
    """Pick the strategy whose root element matches the document."""
    strategy = STRATEGIES.get(root.tag)
    if strategy is None:
        raise ParseError(f"Not a bill history document (root element <{root.tag}>)")
    return strategy


# ── Element helpers ──────────────────────────────────────────────────────────


def _text(element: ET.Element | None) -> str:
    if element is None:
        return ""
    return "".join(element.itertext())


def _child_text(parent: ET.Element, name: str) -> str:
    return clean_text(_text(parent.find(name)))


def _parse_subjects(root: ET.Element, s: ParseStrategy) -> list[str]:
    container = root.find(s.subjects)
    if container is None:
        return []
    subjects: list[str] = []
    for el in container.findall(s.subject):
        subject = strip_subject_code(clean_text(_text(el)))
        if subject:
            subjects.append(subject)
    return subjects


def _parse_committees(root: ET.Element, s: ParseStrategy) -> list[CommitteeReferral]:
    container = root.find(s.committees)
    if container is None:
        return []
    committees: list[CommitteeReferral] = []
    # House referrals first, then Senate, regardless of document order.
    for chamber, tag in (("house", s.house), ("senate", s.senate)):
        for el in container.findall(tag):
            committees.append(
                CommitteeReferral(
                    chamber=chamber,
                    name=clean_text(el.get("name", "")),
                    status=clean_text(el.get("status", "")),
                )
            )
    return committees


def _parse_actions(root: ET.Element, s: ParseStrategy) -> list[ActionEntry]:
    container = root.find(s.actions)
    if container is None:
        return []
    actions: list[ActionEntry] = []
    for el in container.findall(s.action):
        date = _child_text(el, s.action_date)
        description = _child_text(el, s.action_description)
        if not date or not description:
            continue
        number = _child_text(el, s.action_number) if s.action_number else ""
        actions.append(ActionEntry(date=date, description=description, action_number=number))
    return actions


def _parse_text_url(root: ET.Element, s: ParseStrategy) -> str | None:
    container = root.find(s.bill_text)
    if container is None:
        return None
    # WebHTMLURL preferred, WebURL as fallback; first match in document order.
    for tag in ("WebHTMLURL", "WebURL"):
        for el in container.iter(tag):
            url = _text(el).strip()
            if url.startswith("http"):
                return url
    return None


def _parse_bill_attr(root: ET.Element) -> tuple[str, int]:
    bill_attr = root.get("bill")
    if not bill_attr:
        raise ParseError("Missing bill attribute on root element")
    m = _RE_BILL_ATTR.search(bill_attr)
    if not m:
        raise ParseError(f"Unrecognised bill attribute {bill_attr!r}")
    bill_type = m.group(1).upper()
    if bill_type not in VALID_BILL_TYPES:
        raise ParseError(f"Unsupported bill type {bill_type!r}")
    return bill_type, int(m.group(2))


# ── Entry point ──────────────────────────────────────────────────────────────


def parse_document(raw: bytes | str, bill_type: str, bill_number: int) -> CandidateRecord:
    """Parse one bill history document.

    *bill_type* / *bill_number* are the identifier the document was fetched
    for; a document describing a different bill is rejected.

    Raises
    ------
    ParseError
        On empty or malformed XML, an unknown document shape, a missing or
        mismatched bill identifier, or a missing caption.
    """
    if not raw:
        raise ParseError("Empty document")

    try:
        root = ET.fromstring(raw)
    except (ET.ParseError, LookupError, ValueError) as exc:
        # LookupError: the XML declaration names an unknown encoding.
        raise ParseError(f"Malformed XML: {exc}") from exc

    strategy = select_strategy(root)
    doc_type, doc_number = _parse_bill_attr(root)
    if (doc_type, doc_number) != (bill_type.upper(), bill_number):
        raise ParseError(
            f"Document describes {format_bill_id(doc_type, doc_number)}, "
            f"expected {format_bill_id(bill_type, bill_number)}"
        )

    description = _child_text(root, strategy.caption)
    if not description:
        raise ParseError("Missing caption")

    actions = _parse_actions(root, strategy)
    committees = _parse_committees(root, strategy)
    last_action = _child_text(root, strategy.last_action)

    record = CandidateRecord(
        bill_id=format_bill_id(doc_type, doc_number),
        bill_type=doc_type,
        bill_number=doc_number,
        description=description[:MAX_DESCRIPTION_CHARS],
        status=derive_status(actions, committees),
        last_action=last_action[:MAX_LAST_ACTION_CHARS],
        last_action_date=leading_date(last_action),
        last_update=parse_timestamp(root.get("lastUpdate")),
        text_url=_parse_text_url(root, strategy),
        authors=parse_name_list(_text(root.find(strategy.authors))),
        coauthors=parse_name_list(_text(root.find(strategy.coauthors))),
        sponsors=parse_name_list(_text(root.find(strategy.sponsors))),
        cosponsors=parse_name_list(_text(root.find(strategy.cosponsors))),
        subjects=_parse_subjects(root, strategy),
        committees=committees,
        actions=actions,
    )
    LOGGER.debug(
        "Parsed %s (%s strategy): %d actions, status=%s",
        record.bill_id,
        strategy.tag,
        len(actions),
        record.status,
    )
    return record
