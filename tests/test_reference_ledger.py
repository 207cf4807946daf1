"""
Tests for the Reference Ledger module.
"""

import pytest
from citeledger.reference_ledger import ReferenceLedger, ReferenceEntry, make_position_key
from citeledger.marker_parser import CitationMarker, MarkerKind
from citeledger.errors import InvalidOperationError, ReferenceNotFoundError


def make_entry(number, surname, year, title="A study"):
    return ReferenceEntry(
        position_key=make_position_key(number),
        display_text=f"{surname} X. {title}. J Test. {year}.",
        authors=[f"{surname}, X."],
        year=str(year),
        title=title,
    )


class TestPositionKeys:
    """Fixed-width position keys."""

    def test_default_width(self):
        assert make_position_key(3) == "0003"

    def test_custom_width(self):
        assert make_position_key(12, width=6) == "000012"

    def test_keys_sort_like_numbers(self):
        keys = [make_position_key(n) for n in (10, 2, 1)]
        assert sorted(keys) == ["0001", "0002", "0010"]


class TestReferenceLedger:
    """Ordering and mutation of the reference list."""

    def setup_method(self):
        """Set up test fixtures."""
        self.alpha = make_entry(1, "Zeta", 2021)
        self.beta = make_entry(2, "Alpha", 2019)
        self.gamma = make_entry(3, "Mu", 2020)
        self.ledger = ReferenceLedger([self.gamma, self.alpha, self.beta])

    def test_entries_sorted_by_key(self):
        assert self.ledger.order == [self.alpha.id, self.beta.id, self.gamma.id]
        assert [e.number for e in self.ledger] == [1, 2, 3]

    def test_keys_wider_than_width_sort_numerically(self):
        late = make_entry(10000, "Late", 2020)
        early = make_entry(9999, "Early", 2020)
        assert late.position_key == "10000"

        ledger = ReferenceLedger([late, early])

        assert ledger.order == [early.id, late.id]
        assert early.position_key == "0001"

    def test_reorder_returns_previous_numbers(self):
        previous = self.ledger.reorder([self.gamma.id, self.alpha.id, self.beta.id])

        assert previous == {self.alpha.id: 1, self.beta.id: 2, self.gamma.id: 3}
        assert self.gamma.position_key == "0001"
        assert self.beta.number == 3

    def test_reorder_rejects_non_permutation(self):
        with pytest.raises(InvalidOperationError):
            self.ledger.reorder([self.alpha.id, self.alpha.id, self.beta.id])
        with pytest.raises(InvalidOperationError):
            self.ledger.reorder([self.alpha.id, self.beta.id])
        assert self.ledger.order == [self.alpha.id, self.beta.id, self.gamma.id]

    def test_remove_keeps_keys_dense(self):
        removed = self.ledger.remove(self.alpha.id)

        assert removed is self.alpha
        assert [e.position_key for e in self.ledger] == ["0001", "0002"]
        assert self.ledger.by_number(1) is self.beta

    def test_get_missing_raises(self):
        with pytest.raises(ReferenceNotFoundError):
            self.ledger.get("missing")

    def test_by_number_out_of_range(self):
        assert self.ledger.by_number(0) is None
        assert self.ledger.by_number(4) is None

    def test_moved_order(self):
        order = self.ledger.moved_order(self.gamma.id, 1)
        assert order == [self.gamma.id, self.alpha.id, self.beta.id]
        # Order builders do not mutate
        assert self.ledger.order == [self.alpha.id, self.beta.id, self.gamma.id]

    def test_moved_order_out_of_range(self):
        with pytest.raises(InvalidOperationError):
            self.ledger.moved_order(self.gamma.id, 4)

    def test_sorted_alphabetical(self):
        order = self.ledger.sorted_order('alphabetical')
        assert order == [self.beta.id, self.gamma.id, self.alpha.id]

    def test_sorted_year(self):
        order = self.ledger.sorted_order('year')
        assert order == [self.beta.id, self.gamma.id, self.alpha.id]

    def test_sorted_unknown_key(self):
        with pytest.raises(InvalidOperationError):
            self.ledger.sorted_order('color')

    def test_appearance_order(self):
        first = CitationMarker(raw_text="(3)", kind=MarkerKind.NUMERIC_PAREN,
                               paragraph_index=0, start=4, end=7, numbers=[3])
        second = CitationMarker(raw_text="(1)", kind=MarkerKind.NUMERIC_PAREN,
                                paragraph_index=1, start=0, end=3, numbers=[1])
        self.ledger.link(self.gamma.id, first.id)
        self.ledger.link(self.alpha.id, second.id)

        order = self.ledger.appearance_order([second, first])
        assert order == [self.gamma.id, self.alpha.id, self.beta.id]

    def test_link_and_unlink(self):
        self.ledger.link(self.beta.id, "m1")
        self.ledger.link(self.gamma.id, "m1")
        assert self.ledger.entries_citing("m1") == [self.beta, self.gamma]

        self.ledger.unlink_marker("m1")
        assert self.ledger.entries_citing("m1") == []

    def test_first_author_surname(self):
        assert self.alpha.first_author_surname == "Zeta"
        assert ReferenceEntry(position_key="0001").first_author_surname is None

    def test_dict_round_trip(self):
        self.ledger.link(self.alpha.id, "m1")
        restored = ReferenceLedger.from_dict(self.ledger.to_dict())

        assert restored.order == self.ledger.order
        assert restored.get(self.alpha.id).citation_ids == {"m1"}
