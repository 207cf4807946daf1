"""
Tests for the Style Converter module.
"""

import pytest
from citeledger.style_converter import (
    StyleCatalogue,
    RuleBasedStyleConverter,
    format_reference,
    format_in_text,
    in_text_authors,
    split_name,
)
from citeledger.marker_parser import CitationMarker, MarkerKind
from citeledger.reference_ledger import ReferenceEntry, make_position_key
from citeledger.errors import InvalidOperationError


def make_entry(number, authors, year, title="A study", **fields):
    return ReferenceEntry(
        position_key=make_position_key(number),
        display_text=f"Raw line {number}",
        authors=authors,
        year=year,
        title=title,
        **fields,
    )


def make_marker(text, kind, numbers=(), group_id=None):
    return CitationMarker(raw_text=text, kind=kind, paragraph_index=0, start=0,
                          end=len(text), numbers=list(numbers), group_id=group_id)


class TestStyleCatalogue:
    """YAML style catalogue."""

    def setup_method(self):
        """Set up test fixtures."""
        self.catalogue = StyleCatalogue()

    def test_all_styles_loaded(self):
        assert set(self.catalogue.names()) == {"APA", "MLA", "Chicago", "Vancouver", "IEEE", "Harvard", "AMA"}

    def test_lookup_by_alias_and_case(self):
        assert self.catalogue.get("apa7").name == "APA"
        assert self.catalogue.get("vancouver").name == "Vancouver"
        assert "icmje" in self.catalogue

    def test_unknown_style(self):
        with pytest.raises(InvalidOperationError):
            self.catalogue.get("Klingon")

    def test_marker_kinds(self):
        assert self.catalogue.get("IEEE").marker_kind == MarkerKind.NUMERIC_BRACKET
        assert self.catalogue.get("Vancouver").marker_kind == MarkerKind.NUMERIC_PAREN
        assert self.catalogue.get("Chicago").marker_kind == MarkerKind.NUMERIC_SUPERSCRIPT
        assert self.catalogue.get("APA").marker_kind == MarkerKind.AUTHOR_YEAR
        assert self.catalogue.get("Chicago").is_numeric
        assert not self.catalogue.get("Harvard").is_numeric


class TestAuthorHelpers:
    """Name handling."""

    def test_split_name(self):
        assert split_name("Smith, J. A.") == ("Smith", "JA")
        assert split_name("Smith JA") == ("Smith", "JA")
        assert split_name("Smith, John") == ("Smith", "J")
        assert split_name("") == ("", "")

    def test_in_text_authors(self):
        assert in_text_authors(["Smith, J."]) == "Smith"
        assert in_text_authors(["Smith, J.", "Jones, K."]) == "Smith & Jones"
        assert in_text_authors(["Smith, J.", "Jones, K."], joiner="and") == "Smith and Jones"
        assert in_text_authors(["Smith, J.", "Jones, K.", "Lee, M."]) == "Smith et al."
        assert in_text_authors([]) == "Anon."


class TestReferenceFormatting:
    """Reference line rendering."""

    def setup_method(self):
        """Set up test fixtures."""
        self.catalogue = StyleCatalogue()
        self.entry = make_entry(1, ["Smith, J."], "2020", journal="J Test", volume="5", issue="2", pages="10-20")

    def test_vancouver(self):
        text = format_reference(self.entry, self.catalogue.get("Vancouver"))
        assert text == "Smith J. A study. J Test. 2020;5(2):10-20."

    def test_apa(self):
        text = format_reference(self.entry, self.catalogue.get("APA"))
        assert text == "Smith, J. (2020). A study. J Test, 5(2), 10-20."

    def test_ieee(self):
        text = format_reference(self.entry, self.catalogue.get("IEEE"))
        assert text == 'J. Smith, "A study," J Test, vol. 5, no. 2, pp. 10-20, 2020.'

    def test_no_title_keeps_display_text(self):
        entry = make_entry(1, ["Smith, J."], "2020", title=None)
        assert format_reference(entry, self.catalogue.get("APA")) == "Raw line 1"

    def test_in_text_group(self):
        entries = [make_entry(1, ["Smith, J."], "2020"), make_entry(2, ["Jones, K."], "2019")]
        assert format_in_text(entries, self.catalogue.get("APA")) == "(Smith, 2020; Jones, 2019)"
        assert format_in_text(entries, self.catalogue.get("MLA")) == "(Smith; Jones)"


class TestRuleBasedStyleConverter:
    """Marker conversion between conventions."""

    def setup_method(self):
        """Set up test fixtures."""
        self.converter = RuleBasedStyleConverter(StyleCatalogue())
        self.smith = make_entry(1, ["Smith, J."], "2020")
        self.jones = make_entry(2, ["Jones, K."], "2019")
        self.references = [self.smith, self.jones]

    def link(self, marker, *entries):
        for entry in entries:
            entry.citation_ids.add(marker.id)
        return marker

    def test_numeric_to_author_year(self):
        marker = self.link(make_marker("(1)", MarkerKind.NUMERIC_PAREN, [1]), self.smith)
        result = self.converter.convert_style(self.references, [marker], "APA")

        assert result.target_style == "APA"
        assert result.converted_markers[marker.id] == "(Smith, 2020)"
        assert result.marker_kinds[marker.id] == MarkerKind.AUTHOR_YEAR

    def test_numeric_to_bracket(self):
        marker = self.link(make_marker("(1,2)", MarkerKind.NUMERIC_PAREN, [1, 2]), self.smith, self.jones)
        result = self.converter.convert_style(self.references, [marker], "IEEE")
        assert result.converted_markers[marker.id] == "[1,2]"

    def test_numeric_to_superscript(self):
        marker = self.link(make_marker("[1]", MarkerKind.NUMERIC_BRACKET, [1]), self.smith)
        result = self.converter.convert_style(self.references, [marker], "Chicago")
        assert result.converted_markers[marker.id] == "¹"

    def test_author_year_to_numeric(self):
        marker = self.link(make_marker("(Jones, 2019)", MarkerKind.AUTHOR_YEAR), self.jones)
        result = self.converter.convert_style(self.references, [marker], "Vancouver")

        assert result.converted_markers[marker.id] == "(2)"
        assert result.marker_kinds[marker.id] == MarkerKind.NUMERIC_PAREN

    def test_narrative_keeps_names(self):
        marker = self.link(make_marker("Smith (2020)", MarkerKind.AUTHOR_YEAR), self.smith)
        result = self.converter.convert_style(self.references, [marker], "IEEE")
        assert result.converted_markers[marker.id] == "Smith [1]"

    def test_grouped_marker_stays_bare(self):
        marker = self.link(make_marker("Jones, 2019", MarkerKind.AUTHOR_YEAR, group_id="g1"), self.jones)
        result = self.converter.convert_style(self.references, [marker], "Vancouver")
        assert result.converted_markers[marker.id] == "2"

    def test_unlinked_marker_skipped(self):
        marker = make_marker("(Nobody, 2001)", MarkerKind.AUTHOR_YEAR)
        result = self.converter.convert_style(self.references, [marker], "Vancouver")
        assert marker.id not in result.converted_markers

    def test_orphaned_marker_skipped(self):
        marker = self.link(make_marker("(1)", MarkerKind.NUMERIC_PAREN, [1]), self.smith)
        marker.orphaned = True
        result = self.converter.convert_style(self.references, [marker], "IEEE")
        assert result.converted_markers == {}

    def test_references_converted(self):
        result = self.converter.convert_style(self.references, [], "Vancouver")
        assert result.converted_references[self.smith.id] == "Smith J. A study. 2020."
