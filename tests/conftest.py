from __future__ import annotations

from collections.abc import Callable

import pytest

from texleg_sync.config import SyncSettings, load_settings
from texleg_sync.database import get_session_factory, init_database
from texleg_sync.errors import RemoteFetchError, RemoteNotFound
from texleg_sync.jobs import SyncJobController

# ── Bill history documents ────────────────────────────────────────────────────

SAMPLE_HISTORY_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<billhistory bill="89(R) HB 1" lastUpdate="3/20/2025">
  <caption>General Appropriations Bill; Health &amp;amp; Safety.</caption>
  <authors>Bonnen</authors>
  <coauthors>Kitzman | Lopez, Janie | </coauthors>
  <sponsors>Huffman</sponsors>
  <cosponsors></cosponsors>
  <subjects>
    <subject>State Finances--Appropriations (I0746)</subject>
    <subject>Education--Primary &amp; Secondary (S0070)</subject>
  </subjects>
  <lastaction>02/25/2025 H Referred to Appropriations</lastaction>
  <committees>
    <senate name="Finance" status="Pending"/>
    <house name="Appropriations" status="In committee"/>
  </committees>
  <actions>
    <action>
      <actionNumber>H001</actionNumber>
      <date>1/22/2025</date>
      <description>Filed</description>
    </action>
    <action>
      <actionNumber>H010</actionNumber>
      <date>2/25/2025</date>
      <description>Referred to Appropriations</description>
    </action>
    <action>
      <actionNumber>H011</actionNumber>
      <date></date>
      <description>Orphan action without a date</description>
    </action>
  </actions>
  <billtext>
    <docTypes>
      <bill>
        <versions>
          <version>
            <WebURL>http://capitol.texas.gov/tlodocs/89R/billtext/doc/HB00001I.doc</WebURL>
            <WebHTMLURL>http://capitol.texas.gov/tlodocs/89R/billtext/html/HB00001I.HTM</WebHTMLURL>
          </version>
        </versions>
      </bill>
    </docTypes>
  </billtext>
</billhistory>
"""

LEGACY_HISTORY_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<BillHistory bill="84(R) SB 7" lastUpdate="2015-06-01">
  <Caption>Relating to the Texas Windstorm Insurance Association.</Caption>
  <Authors>Fraser | Creighton</Authors>
  <Coauthors/>
  <Sponsors>Hunter</Sponsors>
  <Cosponsors/>
  <Subjects>
    <Subject>Insurance--Property &amp; Casualty (I0455)</Subject>
  </Subjects>
  <LastAction>06/19/2015 E Effective immediately</LastAction>
  <Committees>
    <House name="Insurance" status="Reported"/>
  </Committees>
  <Actions>
    <Action>
      <Date>3/2/2015</Date>
      <Description>Filed</Description>
    </Action>
    <Action>
      <Date>6/19/2015</Date>
      <Description>Signed by the Governor</Description>
    </Action>
  </Actions>
</BillHistory>
"""


def make_history_xml(
    bill_type: str = "HB",
    number: int = 1,
    caption: str = "Relating to public school finance.",
    actions: list[tuple[str, str]] | None = None,
    committees: list[tuple[str, str, str]] | None = None,
    authors: str = "Bonnen",
    text_url: str | None = None,
) -> bytes:
    """Minimal current-format document for one bill."""
    if actions is None:
        actions = [("1/22/2025", "Filed")]
    action_xml = "".join(
        f"<action><date>{d}</date><description>{desc}</description></action>"
        for d, desc in actions
    )
    committee_xml = "".join(
        f'<{chamber} name="{name}" status="{status}"/>'
        for chamber, name, status in (committees or [])
    )
    text_xml = f"<billtext><WebHTMLURL>{text_url}</WebHTMLURL></billtext>" if text_url else ""
    last_action = f"{actions[-1][0]} {actions[-1][1]}" if actions else ""
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<billhistory bill="89(R) {bill_type} {number}" lastUpdate="3/20/2025">'
        f"<caption>{caption}</caption>"
        f"<authors>{authors}</authors><coauthors/><sponsors/><cosponsors/>"
        f"<subjects/><lastaction>{last_action}</lastaction>"
        f"<committees>{committee_xml}</committees>"
        f"<actions>{action_xml}</actions>{text_xml}"
        "</billhistory>"
    ).encode("utf-8")


@pytest.fixture
def history_xml() -> Callable[..., bytes]:
    return make_history_xml


# ── Fake remote source ────────────────────────────────────────────────────────


class FakeRemoteSource:
    """In-memory stand-in for ``RemoteSource``.

    Every identifier has a valid document unless listed in ``missing``
    (550 not found), ``broken`` (unparseable payload) or ``unreachable``
    (transport failure).  ``on_fetch`` runs before each document fetch.
    """

    def __init__(self, bounds: dict[str, int] | None = None) -> None:
        self.bounds = dict(bounds or {})
        self.missing: set[tuple[str, int]] = set()
        self.broken: set[tuple[str, int]] = set()
        self.unreachable: set[tuple[str, int]] = set()
        self.documents: dict[tuple[str, int], bytes] = {}
        self.full_texts: dict[str, str] = {}
        self.fetched: list[tuple[str, int]] = []
        self.full_text_requests: list[str] = []
        self.bound_requests: list[str] = []
        self.on_fetch: Callable[[str, int], None] | None = None
        self.closed = 0

    def fetch_history_document(self, bill_type: str, bill_number: int) -> bytes:
        key = (bill_type, bill_number)
        if self.on_fetch is not None:
            self.on_fetch(bill_type, bill_number)
        self.fetched.append(key)
        if key in self.missing:
            raise RemoteNotFound(f"{bill_type} {bill_number}")
        if key in self.unreachable:
            raise RemoteFetchError(f"connection reset fetching {bill_type} {bill_number}")
        if key in self.broken:
            return b"<billhistory bill="
        return self.documents.get(key) or make_history_xml(bill_type, bill_number)

    def fetch_full_text(self, url: str) -> str | None:
        self.full_text_requests.append(url)
        return self.full_texts.get(url)

    def find_last_bill_number(self, bill_type: str) -> int:
        self.bound_requests.append(bill_type)
        if bill_type not in self.bounds:
            raise RemoteFetchError(f"listing of {bill_type} failed")
        return self.bounds[bill_type]

    def close(self) -> None:
        self.closed += 1


@pytest.fixture
def fake_source() -> FakeRemoteSource:
    return FakeRemoteSource(bounds={"HB": 50, "SB": 20})


# ── Database / controller ─────────────────────────────────────────────────────


@pytest.fixture
def session_factory(tmp_path):
    engine = init_database(f"sqlite:///{tmp_path / 'sync.db'}")
    yield get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def settings() -> SyncSettings:
    return load_settings(
        session_code="89R",
        session_name="89th Regular Session",
        bill_types=("HB",),
        batch_size=5,
        item_delay=0.0,
        time_budget=1000.0,
        fetch_full_text=False,
        max_bill_numbers={},
        sync_enabled=True,
    )


@pytest.fixture
def controller(session_factory, settings, fake_source) -> SyncJobController:
    return SyncJobController(
        session_factory,
        settings=settings,
        source_factory=lambda: fake_source,
        sleep=lambda _s: None,
    )


@pytest.fixture
def running_job(controller):
    """A freshly created and started HB job."""
    job = controller.create()
    return controller.start(job.id)
