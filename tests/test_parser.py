"""Tests for the bill history document parser."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from conftest import LEGACY_HISTORY_XML, SAMPLE_HISTORY_XML, make_history_xml
from texleg_sync.errors import ParseError
from texleg_sync.parser import (
    CURRENT,
    LEGACY,
    MAX_DESCRIPTION_CHARS,
    parse_document,
    select_strategy,
)


class TestCurrentFormat:
    @pytest.fixture
    def record(self):
        return parse_document(SAMPLE_HISTORY_XML, "HB", 1)

    def test_identity(self, record) -> None:
        assert record.bill_id == "HB 1"
        assert record.bill_type == "HB"
        assert record.bill_number == 1
        assert record.filename == "hb1.txt"

    def test_caption_entities_normalized(self, record) -> None:
        assert record.description == "General Appropriations Bill; Health & Safety."

    def test_role_lists_kept_separate(self, record) -> None:
        assert record.authors == ["Bonnen"]
        assert record.coauthors == ["Kitzman", "Lopez, Janie"]
        assert record.sponsors == ["Huffman"]
        assert record.cosponsors == []

    def test_subject_codes_stripped(self, record) -> None:
        assert record.subjects == [
            "State Finances--Appropriations",
            "Education--Primary & Secondary",
        ]

    def test_house_committees_listed_first(self, record) -> None:
        assert [(c.chamber, c.name, c.status) for c in record.committees] == [
            ("house", "Appropriations", "In committee"),
            ("senate", "Finance", "Pending"),
        ]
        assert record.primary_committee().name == "Appropriations"

    def test_actions_without_date_dropped(self, record) -> None:
        assert [(a.date, a.description, a.action_number) for a in record.actions] == [
            ("1/22/2025", "Filed", "H001"),
            ("2/25/2025", "Referred to Appropriations", "H010"),
        ]

    def test_status_from_committee(self, record) -> None:
        assert record.status == "In Committee"

    def test_last_action_and_dates(self, record) -> None:
        assert record.last_action == "02/25/2025 H Referred to Appropriations"
        assert record.last_action_date == date(2025, 2, 25)
        assert record.last_update == datetime(2025, 3, 20)

    def test_html_text_url_preferred(self, record) -> None:
        assert record.text_url == (
            "http://capitol.texas.gov/tlodocs/89R/billtext/html/HB00001I.HTM"
        )


class TestLegacyFormat:
    def test_parses_capitalised_shape(self) -> None:
        record = parse_document(LEGACY_HISTORY_XML, "SB", 7)
        assert record.bill_id == "SB 7"
        assert record.description == "Relating to the Texas Windstorm Insurance Association."
        assert record.authors == ["Fraser", "Creighton"]
        assert record.coauthors == []
        assert record.sponsors == ["Hunter"]
        assert record.subjects == ["Insurance--Property & Casualty"]
        assert record.committees[0].status == "Reported"
        assert [a.action_number for a in record.actions] == ["", ""]
        assert record.status == "Signed"
        assert record.last_action_date == date(2015, 6, 19)
        assert record.last_update == datetime(2015, 6, 1)
        assert record.text_url is None

    def test_strategy_selected_by_root(self) -> None:
        import xml.etree.ElementTree as ET

        assert select_strategy(ET.fromstring(SAMPLE_HISTORY_XML)) is CURRENT
        assert select_strategy(ET.fromstring(LEGACY_HISTORY_XML)) is LEGACY


class TestTextUrl:
    def test_web_url_fallback(self) -> None:
        raw = SAMPLE_HISTORY_XML.replace(b"WebHTMLURL", b"Ignored")
        record = parse_document(raw, "HB", 1)
        assert record.text_url.endswith("HB00001I.doc")

    def test_non_http_urls_ignored(self) -> None:
        raw = make_history_xml(text_url="ftp://example/HB1.htm")
        assert parse_document(raw, "HB", 1).text_url is None


class TestTruncation:
    def test_description_capped(self) -> None:
        raw = make_history_xml(caption="x" * (MAX_DESCRIPTION_CHARS + 500))
        assert len(parse_document(raw, "HB", 1).description) == MAX_DESCRIPTION_CHARS


class TestParseErrors:
    @pytest.mark.parametrize(
        "raw",
        [
            b"",
            b"<billhistory bill=",
            b"<html><body>Website Error</body></html>",
            b'<billhistory lastUpdate="3/20/2025"><caption>x</caption></billhistory>',
            b'<billhistory bill="nonsense"><caption>x</caption></billhistory>',
            b'<billhistory bill="89(R) XX 1"><caption>x</caption></billhistory>',
            b'<billhistory bill="89(R) HB 1"><caption>  </caption></billhistory>',
        ],
        ids=[
            "empty",
            "malformed",
            "wrong-root",
            "no-bill-attr",
            "bad-bill-attr",
            "unsupported-type",
            "blank-caption",
        ],
    )
    def test_rejects(self, raw: bytes) -> None:
        with pytest.raises(ParseError):
            parse_document(raw, "HB", 1)

    def test_unknown_encoding_is_a_parse_error(self) -> None:
        raw = b'<?xml version="1.0" encoding="x-bogus"?><billhistory bill="89(R) HB 1"/>'
        with pytest.raises(ParseError, match="Malformed XML"):
            parse_document(raw, "HB", 1)

    def test_rejects_document_for_another_bill(self) -> None:
        with pytest.raises(ParseError, match="expected HB 2"):
            parse_document(make_history_xml("HB", 1), "HB", 2)

    def test_missing_lists_are_empty(self) -> None:
        raw = b'<billhistory bill="89(R) HB 9"><caption>Relating to bees.</caption></billhistory>'
        record = parse_document(raw, "HB", 9)
        assert record.authors == []
        assert record.subjects == []
        assert record.committees == []
        assert record.actions == []
        assert record.status == "Filed"
        assert record.last_action_date is None
        assert record.last_update is None
