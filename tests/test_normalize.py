"""Tests for text, entity and date normalization."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from texleg_sync.normalize import (
    clean_text,
    html_to_text,
    leading_date,
    normalize_entities,
    normalize_whitespace,
    parse_name_list,
    parse_timestamp,
    parse_us_date,
    strip_subject_code,
)

# "&" first so the other escapes are not re-escaped.
_ESCAPES = (("&", "&amp;"), ("<", "&lt;"), (">", "&gt;"), ('"', "&quot;"), ("'", "&#39;"))


def _escape(text: str) -> str:
    for raw, escaped in _ESCAPES:
        text = text.replace(raw, escaped)
    return text


ENTITY_SAMPLES = [
    "Health &amp; Safety",
    "Health &amp;amp; Safety",
    "O&#39;Brien &quot;quoted&quot;",
    "&lt;b&gt;bold&lt;/b&gt;",
    "caf&#xE9; &#233;",
    "plain text",
    "&amp;amp;amp;lt;",
    "stray & ampersand; &unknown;",
    "",
]


class TestNormalizeEntities:
    def test_decodes_supported_set(self) -> None:
        assert normalize_entities("Health &amp; Safety") == "Health & Safety"
        assert normalize_entities("&lt;tag&gt;") == "<tag>"
        assert normalize_entities("&quot;x&quot; &apos;y&apos;") == "\"x\" 'y'"
        assert normalize_entities("O&#39;Brien") == "O'Brien"
        assert normalize_entities("caf&#xE9;") == "café"
        assert normalize_entities("a&nbsp;b") == "a b"

    def test_repairs_double_encoding(self) -> None:
        assert normalize_entities("Health &amp;amp; Safety") == "Health & Safety"

    @pytest.mark.parametrize("text", ENTITY_SAMPLES)
    def test_idempotent(self, text: str) -> None:
        once = normalize_entities(text)
        assert normalize_entities(once) == once

    def test_leaves_unknown_entities_alone(self) -> None:
        assert normalize_entities("&copy; &unknown;") == "&copy; &unknown;"

    def test_invalid_codepoints_left_alone(self) -> None:
        assert normalize_entities("&#0;") == "&#0;"
        assert normalize_entities("&#9999999;") == "&#9999999;"

    def test_none_is_empty(self) -> None:
        assert normalize_entities(None) == ""

    @pytest.mark.parametrize(
        "text",
        ["Fish & Game", '<a href="x">', "it's \"quoted\"", "plain", "5 > 3 < 7"],
    )
    def test_round_trip(self, text: str) -> None:
        assert normalize_entities(_escape(text)) == text

    def test_double_escaped_round_trip(self) -> None:
        assert normalize_entities(_escape(_escape('Fish & "Game"'))) == 'Fish & "Game"'


class TestTextHelpers:
    def test_normalize_whitespace(self) -> None:
        assert normalize_whitespace("  a \n\t b  ") == "a b"
        assert normalize_whitespace(None) == ""

    def test_clean_text(self) -> None:
        assert clean_text("  Health  &amp;amp;\n Safety ") == "Health & Safety"

    def test_parse_name_list(self) -> None:
        assert parse_name_list("Kitzman | Lopez, Janie | ") == ["Kitzman", "Lopez, Janie"]
        assert parse_name_list("") == []
        assert parse_name_list(None) == []

    def test_parse_name_list_keeps_order(self) -> None:
        assert parse_name_list("C|A|B") == ["C", "A", "B"]

    def test_strip_subject_code(self) -> None:
        assert strip_subject_code("Education (E0001)") == "Education"
        assert strip_subject_code("No code here") == "No code here"


class TestDates:
    def test_us_date(self) -> None:
        assert parse_us_date("1/22/2025") == date(2025, 1, 22)
        assert parse_us_date("02/05/2025") == date(2025, 2, 5)

    def test_iso_date(self) -> None:
        assert parse_timestamp("2015-06-01") == datetime(2015, 6, 1)

    def test_timestamp_with_time(self) -> None:
        assert parse_timestamp("3/20/2025 1:30:00 PM") == datetime(2025, 3, 20, 13, 30)

    @pytest.mark.parametrize("value", [None, "", "   ", "not a date", "13/45/2025"])
    def test_unparseable_is_none(self, value) -> None:
        assert parse_timestamp(value) is None

    def test_leading_date(self) -> None:
        assert leading_date("02/25/2025 H Referred to Appropriations") == date(2025, 2, 25)
        assert leading_date("Referred to Appropriations") is None
        assert leading_date(None) is None


class TestHtmlToText:
    def test_blocks_and_breaks_become_lines(self) -> None:
        html = (
            "<html><head><style>p { color: red }</style>"
            "<script>alert(1)</script></head><body>"
            "<p>AN ACT</p><p>relating to   school&nbsp;finance.</p>"
            "<div>SECTION 1.<br>Text</div></body></html>"
        )
        assert html_to_text(html) == "AN ACT\nrelating to school finance.\nSECTION 1.\nText"

    def test_double_encoded_entities_are_repaired(self) -> None:
        assert html_to_text("<p>Health &amp;amp; Safety Code</p>") == "Health & Safety Code"

    def test_collapses_blank_lines(self) -> None:
        text = html_to_text("<p>A</p><p></p><p></p><p></p><p>B</p>")
        assert "\n\n\n" not in text
        assert text.startswith("A") and text.endswith("B")
