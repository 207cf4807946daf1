"""
Tests for the Marker Parser module.
"""

import pytest
from citeledger.marker_parser import (
    MarkerParser,
    MarkerKind,
    CitationMarker,
    extract_numbers,
    format_numbers,
    format_marker,
    normalize_marker,
    detect_numeric_kind,
    to_superscript,
    from_superscript,
    is_plausible_year,
)


class TestExtractNumbers:
    """Range and list expansion."""

    def test_hyphen_range(self):
        assert extract_numbers("[3-5]") == [3, 4, 5]

    def test_en_dash_range_with_list(self):
        assert extract_numbers("[3–5,7]") == [3, 4, 5, 7]

    def test_em_dash_and_spaces(self):
        assert extract_numbers("(1, 4 — 6)") == [1, 4, 5, 6]

    def test_superscript(self):
        assert extract_numbers("¹⁻³") == [1, 2, 3]
        assert extract_numbers("²,⁵") == [2, 5]

    def test_duplicates_collapse_and_sort(self):
        assert extract_numbers("[5,2,2,1]") == [1, 2, 5]

    def test_reversed_range(self):
        assert extract_numbers("[5-3]") == [3, 4, 5]


class TestFormatting:
    """Compact number formatting."""

    def test_three_run_uses_dash(self):
        assert format_numbers([3, 4, 5]) == "3-5"

    def test_two_run_uses_comma(self):
        assert format_numbers([3, 4]) == "3,4"

    def test_mixed(self):
        assert format_numbers([1, 3, 4, 5, 7, 8]) == "1,3-5,7,8"

    def test_empty(self):
        assert format_numbers([]) == ""

    def test_format_marker_kinds(self):
        assert format_marker([1, 2, 3], MarkerKind.NUMERIC_BRACKET) == "[1-3]"
        assert format_marker([2], MarkerKind.NUMERIC_PAREN) == "(2)"
        assert format_marker([1, 2], MarkerKind.NUMERIC_SUPERSCRIPT) == "¹,²"

    def test_format_marker_rejects_author_year(self):
        with pytest.raises(ValueError):
            format_marker([1], MarkerKind.AUTHOR_YEAR)

    @pytest.mark.parametrize("text", ["[1, 2, 3]", "(2,4)", "[3–5,7]", "¹⁻³", "(1,2)"])
    def test_format_of_extract_is_normalize(self, text):
        kind = detect_numeric_kind(text)
        assert format_marker(extract_numbers(text), kind) == normalize_marker(text)

    def test_normalize_is_idempotent(self):
        once = normalize_marker("[1, 2, 3, 5]")
        assert once == "[1-3,5]"
        assert normalize_marker(once) == once

    def test_superscript_round_trip(self):
        assert to_superscript("12,3-4") == "¹²,³-⁴"
        assert from_superscript("¹²") == "12"

    def test_plausible_year(self):
        assert is_plausible_year(2020)
        assert is_plausible_year(1800)
        assert not is_plausible_year(1799)
        assert not is_plausible_year(12)


class TestMarkerParser:
    """Marker detection in paragraphs."""

    def setup_method(self):
        """Set up test fixtures."""
        self.parser = MarkerParser()

    def _assert_offsets(self, line, markers):
        for marker in markers:
            assert line[marker.start:marker.end] == marker.raw_text

    def test_bracket_and_paren(self):
        line = "See prior work [1] and (2, 3)."
        markers = self.parser.parse_paragraph(line, 0)

        assert [m.kind for m in markers] == [MarkerKind.NUMERIC_BRACKET, MarkerKind.NUMERIC_PAREN]
        assert markers[0].numbers == [1]
        assert markers[1].numbers == [2, 3]
        self._assert_offsets(line, markers)

    def test_volume_issue_rejected(self):
        markers = self.parser.parse_paragraph("Published in Nature 28(1):45.", 0)
        assert markers == []

    def test_year_in_paren_not_numeric(self):
        markers = self.parser.parse_paragraph("This happened in (2020) for sure.", 0)
        assert markers == []

    def test_superscript_run(self):
        line = "Shown before¹⁻³ in trials."
        markers = self.parser.parse_paragraph(line, 0)

        assert len(markers) == 1
        assert markers[0].kind == MarkerKind.NUMERIC_SUPERSCRIPT
        assert markers[0].numbers == [1, 2, 3]
        self._assert_offsets(line, markers)

    def test_author_year_parenthesized(self):
        line = "As shown (Smith, 2020) and (Jones et al., 2019)."
        markers = self.parser.parse_paragraph(line, 0)

        assert [m.raw_text for m in markers] == ["(Smith, 2020)", "(Jones et al., 2019)"]
        assert all(m.kind == MarkerKind.AUTHOR_YEAR for m in markers)
        assert all(m.numbers == [] for m in markers)
        self._assert_offsets(line, markers)

    def test_author_year_two_authors(self):
        markers = self.parser.parse_paragraph("Known (Smith & Jones, 2018).", 0)
        assert [m.raw_text for m in markers] == ["(Smith & Jones, 2018)"]

    def test_semicolon_group_split(self):
        line = "Many agree (Smith, 2020; Jones & Lee, 2019)."
        markers = self.parser.parse_paragraph(line, 0)

        assert [m.raw_text for m in markers] == ["Smith, 2020", "Jones & Lee, 2019"]
        assert markers[0].group_id is not None
        assert markers[0].group_id == markers[1].group_id
        self._assert_offsets(line, markers)

    def test_narrative(self):
        line = "Smith (2020) showed this."
        markers = self.parser.parse_paragraph(line, 0)

        assert [m.raw_text for m in markers] == ["Smith (2020)"]
        assert markers[0].group_id is None

    def test_bare_author_year(self):
        markers = self.parser.parse_paragraph("As noted by Smith et al., 2021 in detail.", 0)
        assert [m.raw_text for m in markers] == ["Smith et al., 2021"]

    def test_plain_year_is_not_a_citation(self):
        assert self.parser.parse_paragraph("In 2020, the trial ended.", 0) == []

    def test_no_duplicates(self):
        markers = self.parser.parse_paragraph("Claim (Smith, 2020).", 0)
        keys = [(m.start, m.end, m.kind) for m in markers]
        assert len(keys) == len(set(keys)) == 1

    def test_parse_paragraph_indexes(self):
        text = "First [1].\n\nSecond [2]."
        markers = self.parser.parse(text)

        assert [m.paragraph_index for m in markers] == [0, 2]
        assert markers[0].position < markers[1].position

    def test_marker_ids_unique_and_original_text(self):
        markers = self.parser.parse("A [1]. B [1].")
        assert markers[0].id != markers[1].id
        assert markers[0].original_text == "[1]"

    def test_author_year_parts(self):
        assert MarkerParser.author_year_parts("(Smith et al., 2020)") == ("Smith", "2020")
        assert MarkerParser.author_year_parts("Jones (2019)") == ("Jones", "2019")


class TestCitationMarker:
    """Marker serialization."""

    def test_dict_round_trip(self):
        marker = CitationMarker(
            raw_text="(1)", kind=MarkerKind.NUMERIC_PAREN,
            paragraph_index=2, start=5, end=8, numbers=[1],
        )
        restored = CitationMarker.from_dict(marker.to_dict())
        assert restored == marker
