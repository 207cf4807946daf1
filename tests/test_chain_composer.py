"""
Tests for the Change-Chain Composer module.
"""

from citeledger.chain_composer import (
    ChainComposer,
    KIND_RENUMBER,
    KIND_STYLE_CONVERSION,
    KIND_REFERENCE_EDIT,
)
from citeledger.change_log import ChangeRecord, ChangeType
from citeledger.marker_parser import CitationMarker, MarkerKind


def record(change_type, before, after, marker_id=None, reference_id=None, operation=None, **metadata):
    if operation:
        metadata['operation'] = operation
    return ChangeRecord(change_type, before, after, reference_id=reference_id,
                        marker_id=marker_id, metadata=metadata)


def orphaning(before, marker_id=None, operation=None):
    return record(ChangeType.REFERENCE_DELETE, before, "", marker_id=marker_id,
                  operation=operation, orphaned=True)


class TestIdentityChains:
    """Records folded per marker id."""

    def setup_method(self):
        """Set up test fixtures."""
        self.composer = ChainComposer()
        self.marker = CitationMarker(raw_text="(3)", kind=MarkerKind.NUMERIC_PAREN,
                                     paragraph_index=2, start=10, end=13,
                                     numbers=[3], original_text="(2)")
        self.markers = {self.marker.id: self.marker}

    def test_two_step_chain(self):
        records = [
            record(ChangeType.RESEQUENCE, "(2)", "(1)", self.marker.id),
            record(ChangeType.RENUMBER, "(1)", "(3)", self.marker.id),
        ]
        diff = self.composer.compose(records, self.markers)

        assert len(diff.changed) == 1
        entry = diff.changed[0]
        assert (entry.original_text, entry.current_text) == ("(2)", "(3)")
        assert entry.kind == KIND_RENUMBER
        assert (entry.paragraph_index, entry.start, entry.end) == (2, 10, 13)
        assert diff.unchanged == 0

    def test_style_conversion_kind(self):
        records = [
            record(ChangeType.RESEQUENCE, "(2)", "(1)", self.marker.id),
            record(ChangeType.STYLE_CONVERSION, "(1)", "[1]", self.marker.id),
        ]
        diff = self.composer.compose(records, self.markers)
        assert diff.changed[0].kind == KIND_STYLE_CONVERSION

    def test_reference_edit_kind(self):
        records = [record(ChangeType.REFERENCE_EDIT, "(Smith, 2020)", "(Smith, 2021)", "m9")]
        diff = self.composer.compose(records)
        assert diff.changed[0].kind == KIND_REFERENCE_EDIT

    def test_orphan_excludes_change(self):
        records = [
            record(ChangeType.RESEQUENCE, "(2)", "(1)", self.marker.id),
            orphaning("(1)", self.marker.id),
        ]
        diff = self.composer.compose(records, self.markers)

        assert diff.changed == []
        assert len(diff.orphaned) == 1
        assert diff.orphaned[0].original_text == "(2)"
        assert diff.is_orphaned(self.marker.id)

    def test_no_op_dropped(self):
        records = [
            record(ChangeType.RENUMBER, "(1)", "(2)", "m1"),
            record(ChangeType.RENUMBER, "(2)", "(1)", "m1"),
        ]
        diff = self.composer.compose(records)

        assert diff.changed == []
        assert diff.unchanged == 1

    def test_identical_texts_do_not_interfere(self):
        records = [
            record(ChangeType.RENUMBER, "(1)", "(2)", "m1", operation="op-1"),
            record(ChangeType.RENUMBER, "(1)", "(3)", "m2", operation="op-1"),
        ]
        diff = self.composer.compose(records)
        assert {(c.marker_id, c.current_text) for c in diff.changed} == {("m1", "(2)"), ("m2", "(3)")}

    def test_partial_deletion_flag(self):
        records = [record(ChangeType.RENUMBER, "(2,3)", "(2)", "m1", partial_deletion=True)]
        diff = self.composer.compose(records)
        assert diff.changed[0].partial_deletion

    def test_unchanged_counts_untouched_markers(self):
        other = CitationMarker(raw_text="(5)", kind=MarkerKind.NUMERIC_PAREN,
                               paragraph_index=0, start=0, end=3, numbers=[5])
        markers = {self.marker.id: self.marker, other.id: other}
        records = [record(ChangeType.RESEQUENCE, "(2)", "(3)", self.marker.id)]

        diff = self.composer.compose(records, markers)
        assert diff.unchanged == 1

    def test_revoked_records_ignored(self):
        active = record(ChangeType.RESEQUENCE, "(2)", "(1)", self.marker.id)
        revoked = ChangeRecord(ChangeType.RENUMBER, "(1)", "(4)", marker_id=self.marker.id, revoked=True)

        diff = self.composer.compose([active, revoked], self.markers)
        assert diff.changed[0].current_text == "(1)"


class TestValueChains:
    """Records without ids chained by text."""

    def setup_method(self):
        """Set up test fixtures."""
        self.composer = ChainComposer()

    def test_resequence_then_renumber(self):
        records = [
            record(ChangeType.RESEQUENCE, "(3)", "(1)", operation="ingest"),
            record(ChangeType.RENUMBER, "(1)", "(2)", operation="move-1"),
        ]
        diff = self.composer.compose(records)

        assert [(c.original_text, c.current_text) for c in diff.changed] == [("(3)", "(2)")]

    def test_swap_within_one_operation(self):
        records = [
            record(ChangeType.RENUMBER, "(1)", "(2)", operation="swap"),
            record(ChangeType.RENUMBER, "(2)", "(1)", operation="swap"),
        ]
        diff = self.composer.compose(records)

        pairs = {(c.original_text, c.current_text) for c in diff.changed}
        assert pairs == {("(1)", "(2)"), ("(2)", "(1)")}

    def test_style_conversion_matches_original(self):
        records = [
            record(ChangeType.RESEQUENCE, "(2)", "(1)", operation="ingest"),
            record(ChangeType.STYLE_CONVERSION, "(2)", "[1]", operation="convert"),
        ]
        diff = self.composer.compose(records)

        assert [(c.original_text, c.current_text, c.kind) for c in diff.changed] == [
            ("(2)", "[1]", KIND_STYLE_CONVERSION)
        ]

    def test_orphan_resolves_to_chain_original(self):
        records = [
            record(ChangeType.RESEQUENCE, "(3)", "(1)", operation="ingest"),
            orphaning("(1)", operation="delete"),
        ]
        diff = self.composer.compose(records)

        assert diff.changed == []
        assert [o.original_text for o in diff.orphaned] == ["(3)"]

    def test_orphan_guard_keeps_valid_chain(self):
        records = [
            record(ChangeType.RESEQUENCE, "(2)", "(1)", operation="ingest"),
            orphaning("(1)", operation="delete"),
        ]
        diff = self.composer.compose(records, current_texts=["(1)"])

        assert ("(2)", "(1)") in {(c.original_text, c.current_text) for c in diff.changed}
        assert "(2)" not in {o.original_text for o in diff.orphaned}

    def test_orphan_guard_later_renumber(self):
        records = [
            record(ChangeType.RESEQUENCE, "(2)", "(1)", operation="ingest"),
            orphaning("(1)", operation="delete"),
            record(ChangeType.RENUMBER, "(3)", "(1)", operation="delete"),
        ]
        diff = self.composer.compose(records)

        assert "(2)" in {c.original_text for c in diff.changed}
        assert "(2)" not in {o.original_text for o in diff.orphaned}

    def test_unchained_orphan(self):
        diff = self.composer.compose([orphaning("(4)", operation="delete")])
        assert [o.original_text for o in diff.orphaned] == ["(4)"]
        assert not diff.orphaned[0].has_position

    def test_collision_keeps_first(self):
        records = [
            record(ChangeType.RENUMBER, "(1)", "(2)", operation="a"),
            record(ChangeType.RENUMBER, "(1)", "(3)", operation="a"),
        ]
        diff = self.composer.compose(records)

        assert [(c.original_text, c.current_text) for c in diff.changed] == [("(1)", "(2)")]


class TestReferenceChains:
    """Reference-level records."""

    def setup_method(self):
        """Set up test fixtures."""
        self.composer = ChainComposer()

    def test_renumbered_reference(self):
        records = [
            record(ChangeType.RESEQUENCE, "2. Beta", "1. Beta", reference_id="r2"),
            record(ChangeType.REFERENCE_STYLE_CONVERSION, "1. Beta", "[1] Beta", reference_id="r2"),
        ]
        diff = self.composer.compose(records)

        assert len(diff.reference_changes) == 1
        change = diff.reference_changes[0]
        assert (change.original_text, change.current_text) == ("2. Beta", "[1] Beta")
        assert not change.deleted

    def test_deleted_reference(self):
        records = [
            record(ChangeType.RENUMBER, "2. Beta", "1. Beta", reference_id="r2"),
            record(ChangeType.REFERENCE_DELETE, "1. Beta", "", reference_id="r2"),
        ]
        diff = self.composer.compose(records)

        assert diff.reference_changes == []
        assert [r.original_text for r in diff.deleted_references] == ["2. Beta"]
        assert diff.deleted_references[0].deleted

    def test_summary_counts(self):
        records = [
            record(ChangeType.RENUMBER, "(2)", "(1)", "m1"),
            orphaning("(1)", "m2"),
            record(ChangeType.REFERENCE_DELETE, "1. A", "", reference_id="r1"),
        ]
        summary = self.composer.compose(records).summary()

        assert summary == {
            'changed': 1,
            'orphaned': 1,
            'unchanged': 0,
            'reference_changes': 0,
            'deleted_references': 1,
        }
