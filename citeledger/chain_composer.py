"""Change-Chain Composer Module.

Collapses a document's active change records into one original -> current
diff for preview and export.

Records that carry a ``marker_id`` are folded per marker, so two markers
with identical text never interfere. Records that carry neither a marker
nor a reference id (logs written by older tools, or hand-built logs) are
chained by text value:

1. RESEQUENCE records open chains (ingested text -> first persisted text).
2. Later records extend the chain whose current text equals their
   ``before_text``. RENUMBER records never extend a chain last touched by
   the same operation, so a swap inside one reorder stays two chains.
3. STYLE_CONVERSION and REFERENCE_EDIT records may also match a chain's
   original text; unmatched records open standalone chains.
4. A chain whose current text equals the ``before_text`` of an orphaning
   record becomes an orphan of its original text, unless that text is
   still valid (present in the current document, or produced by a
   non-orphan RENUMBER appended after the orphaning record).
5. No-op chains are dropped.

Reference-level records (``reference_id`` without ``marker_id``) are folded
per reference into reference changes and deleted references.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple
from loguru import logger

from .change_log import ChangeRecord, ChangeType
from .marker_parser import CitationMarker


KIND_RENUMBER = "renumber"
KIND_STYLE_CONVERSION = "style_conversion"
KIND_REFERENCE_EDIT = "reference_edit"


@dataclass
class ChainEntry:
    """A marker whose text changed: original -> current."""
    original_text: str
    current_text: str
    kind: str
    marker_id: Optional[str] = None
    paragraph_index: Optional[int] = None
    start: Optional[int] = None
    end: Optional[int] = None
    partial_deletion: bool = False
    record_ids: List[str] = field(default_factory=list)

    @property
    def has_position(self) -> bool:
        return self.paragraph_index is not None and self.start is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'original_text': self.original_text,
            'current_text': self.current_text,
            'kind': self.kind,
            'marker_id': self.marker_id,
            'paragraph_index': self.paragraph_index,
            'start': self.start,
            'end': self.end,
            'partial_deletion': self.partial_deletion,
        }


@dataclass
class OrphanEntry:
    """A marker whose every cited reference is gone."""
    original_text: str
    marker_id: Optional[str] = None
    paragraph_index: Optional[int] = None
    start: Optional[int] = None
    end: Optional[int] = None
    record_ids: List[str] = field(default_factory=list)

    @property
    def has_position(self) -> bool:
        return self.paragraph_index is not None and self.start is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'original_text': self.original_text,
            'marker_id': self.marker_id,
            'paragraph_index': self.paragraph_index,
            'start': self.start,
            'end': self.end,
        }


@dataclass
class ReferenceChange:
    """A reference list line: original -> current ('' when deleted)."""
    reference_id: str
    original_text: str
    current_text: str
    change_types: List[str] = field(default_factory=list)

    @property
    def deleted(self) -> bool:
        return ChangeType.REFERENCE_DELETE.value in self.change_types and not self.current_text

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reference_id': self.reference_id,
            'original_text': self.original_text,
            'current_text': self.current_text,
            'change_types': list(self.change_types),
        }


@dataclass
class ComposedDiff:
    """Result of composing a change log."""
    changed: List[ChainEntry] = field(default_factory=list)
    orphaned: List[OrphanEntry] = field(default_factory=list)
    unchanged: int = 0
    reference_changes: List[ReferenceChange] = field(default_factory=list)
    deleted_references: List[ReferenceChange] = field(default_factory=list)

    def for_marker(self, marker_id: str) -> Optional[ChainEntry]:
        for entry in self.changed:
            if entry.marker_id == marker_id:
                return entry
        return None

    def is_orphaned(self, marker_id: str) -> bool:
        return any(o.marker_id == marker_id for o in self.orphaned)

    def summary(self) -> Dict[str, int]:
        return {
            'changed': len(self.changed),
            'orphaned': len(self.orphaned),
            'unchanged': self.unchanged,
            'reference_changes': len(self.reference_changes),
            'deleted_references': len(self.deleted_references),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'changed': [c.to_dict() for c in self.changed],
            'orphaned': [o.to_dict() for o in self.orphaned],
            'unchanged': self.unchanged,
            'reference_changes': [r.to_dict() for r in self.reference_changes],
            'deleted_references': [r.to_dict() for r in self.deleted_references],
            'summary': self.summary(),
        }


@dataclass
class _Chain:
    original: str
    current: str
    types: List[ChangeType]
    record_ids: List[str]
    last_index: int
    last_operation: Optional[str]
    partial_deletion: bool = False

    def extend(self, record: ChangeRecord, index: int):
        self.current = record.after_text
        self.types.append(record.change_type)
        self.record_ids.append(record.id)
        self.last_index = index
        self.last_operation = record.metadata.get('operation')
        self.partial_deletion = self.partial_deletion or record.is_partial_deletion


def _chain_kind(types: Iterable[ChangeType]) -> str:
    types = set(types)
    if ChangeType.STYLE_CONVERSION in types:
        return KIND_STYLE_CONVERSION
    if ChangeType.REFERENCE_EDIT in types:
        return KIND_REFERENCE_EDIT
    return KIND_RENUMBER


class ChainComposer:
    """Composes change records into a ComposedDiff."""

    def compose(
        self,
        records: Iterable[ChangeRecord],
        markers: Optional[Mapping[str, CitationMarker]] = None,
        current_texts: Optional[Iterable[str]] = None,
    ) -> ComposedDiff:
        """
        Args:
            records: Change records in log order (revoked ones are skipped)
            markers: Marker id -> marker, used for positions and the unchanged count
            current_texts: Marker texts valid in the current document

        Returns:
            ComposedDiff
        """
        active = [r for r in records if not r.revoked]
        markers = markers or {}
        diff = ComposedDiff()

        marker_records = [r for r in active if r.marker_id is not None]
        reference_records = [r for r in active if r.marker_id is None and r.reference_id is not None]
        value_records = [r for r in active if r.marker_id is None and r.reference_id is None]

        touched, no_op_markers = self._compose_identity(marker_records, markers, diff)
        no_op_values = self._compose_values(value_records, set(current_texts or ()), diff)
        self._compose_references(reference_records, diff)

        # Orphan exclusivity
        orphan_ids = {o.marker_id for o in diff.orphaned if o.marker_id}
        orphan_texts = {o.original_text for o in diff.orphaned if not o.marker_id}
        diff.changed = [
            c for c in diff.changed
            if not (c.marker_id and c.marker_id in orphan_ids)
            and not (not c.marker_id and c.original_text in orphan_texts)
        ]

        if markers:
            diff.unchanged = sum(1 for mid in markers if mid not in touched)
        else:
            diff.unchanged = no_op_markers + no_op_values

        diff.changed.sort(key=lambda c: (c.paragraph_index is None, c.paragraph_index or 0, c.start or 0))
        diff.orphaned.sort(key=lambda o: (o.paragraph_index is None, o.paragraph_index or 0, o.start or 0))
        logger.debug(f"Composed diff: {diff.summary()}")
        return diff

    # =========================================================================
    # Identity chains
    # =========================================================================

    def _compose_identity(
        self,
        records: List[ChangeRecord],
        markers: Mapping[str, CitationMarker],
        diff: ComposedDiff,
    ) -> Tuple[Set[str], int]:
        """Fold records per marker; returns (ids with a net change, no-op count)."""
        by_marker: "OrderedDict[str, List[ChangeRecord]]" = OrderedDict()
        for record in records:
            by_marker.setdefault(record.marker_id, []).append(record)

        touched: Set[str] = set()
        no_ops = 0
        for marker_id, chain in by_marker.items():
            marker = markers.get(marker_id)
            original = chain[0].before_text
            if marker is not None and marker.original_text != original:
                logger.warning(
                    f"Chain for marker {marker_id} starts at {original!r}, "
                    f"ingested text was {marker.original_text!r}"
                )
                original = marker.original_text
            for previous, following in zip(chain, chain[1:]):
                if following.before_text != previous.after_text:
                    logger.warning(
                        f"Chain break on marker {marker_id}: {previous.after_text!r} "
                        f"then {following.before_text!r}"
                    )

            last = chain[-1]
            position = dict(
                paragraph_index=marker.paragraph_index if marker else None,
                start=marker.start if marker else None,
                end=marker.end if marker else None,
            )
            record_ids = [r.id for r in chain]

            if last.is_orphan:
                diff.orphaned.append(OrphanEntry(
                    original_text=original, marker_id=marker_id, record_ids=record_ids, **position
                ))
                touched.add(marker_id)
                continue

            if last.after_text == original:
                no_ops += 1
                continue

            diff.changed.append(ChainEntry(
                original_text=original,
                current_text=last.after_text,
                kind=_chain_kind(r.change_type for r in chain),
                marker_id=marker_id,
                partial_deletion=any(r.is_partial_deletion for r in chain),
                record_ids=record_ids,
                **position,
            ))
            touched.add(marker_id)
        return touched, no_ops

    # =========================================================================
    # Value chains
    # =========================================================================

    def _compose_values(self, records: List[ChangeRecord], current_texts: Set[str], diff: ComposedDiff) -> int:
        """Chain records by text; returns the number of no-op chains dropped."""
        if not records:
            return 0

        chains: List[_Chain] = []
        orphan_records: List[tuple] = []

        def open_chain(record: ChangeRecord, index: int):
            chains.append(_Chain(
                original=record.before_text,
                current=record.after_text,
                types=[record.change_type],
                record_ids=[record.id],
                last_index=index,
                last_operation=record.metadata.get('operation'),
                partial_deletion=record.is_partial_deletion,
            ))

        def same_operation(chain: _Chain, record: ChangeRecord) -> bool:
            operation = record.metadata.get('operation')
            return operation is not None and operation == chain.last_operation

        for index, record in enumerate(records):
            if record.is_orphan:
                orphan_records.append((index, record))
                continue

            if record.change_type == ChangeType.RESEQUENCE:
                open_chain(record, index)
                continue

            target = next(
                (c for c in chains if c.current == record.before_text and not same_operation(c, record)),
                None,
            )
            if target is None and record.change_type in (ChangeType.STYLE_CONVERSION, ChangeType.REFERENCE_EDIT):
                target = next(
                    (c for c in chains if c.original == record.before_text and not same_operation(c, record)),
                    None,
                )
            if target is not None:
                target.extend(record, index)
            else:
                open_chain(record, index)

        # Orphan resolution
        orphaned_chains: Set[int] = set()
        for orphan_index, orphan in orphan_records:
            still_valid = orphan.before_text in current_texts or any(
                r.change_type == ChangeType.RENUMBER
                and not r.is_orphan
                and r.after_text == orphan.before_text
                for r in records[orphan_index + 1:]
            )
            matched = False
            for chain_index, chain in enumerate(chains):
                if chain_index in orphaned_chains or chain.current != orphan.before_text:
                    continue
                if still_valid:
                    continue
                orphaned_chains.add(chain_index)
                diff.orphaned.append(OrphanEntry(
                    original_text=chain.original, record_ids=chain.record_ids + [orphan.id]
                ))
                matched = True
                break

            if not matched:
                if any(c.original == orphan.before_text for i, c in enumerate(chains) if i not in orphaned_chains):
                    logger.debug(f"Orphan text {orphan.before_text!r} is the original of a live chain; skipped")
                    continue
                if any(o.original_text == orphan.before_text and not o.marker_id for o in diff.orphaned):
                    continue
                diff.orphaned.append(OrphanEntry(original_text=orphan.before_text, record_ids=[orphan.id]))

        no_ops = 0
        seen: Dict[str, str] = {}
        for chain_index, chain in enumerate(chains):
            if chain_index in orphaned_chains:
                continue
            if chain.original == chain.current:
                no_ops += 1
                continue
            if chain.original in seen:
                if seen[chain.original] != chain.current:
                    logger.warning(
                        f"ChainCollision: {chain.original!r} resolves to both "
                        f"{seen[chain.original]!r} and {chain.current!r}; keeping the first"
                    )
                continue
            seen[chain.original] = chain.current
            diff.changed.append(ChainEntry(
                original_text=chain.original,
                current_text=chain.current,
                kind=_chain_kind(chain.types),
                partial_deletion=chain.partial_deletion,
                record_ids=list(chain.record_ids),
            ))
        return no_ops

    # =========================================================================
    # Reference chains
    # =========================================================================

    def _compose_references(self, records: List[ChangeRecord], diff: ComposedDiff):
        by_reference: "OrderedDict[str, List[ChangeRecord]]" = OrderedDict()
        for record in records:
            by_reference.setdefault(record.reference_id, []).append(record)

        for reference_id, chain in by_reference.items():
            change = ReferenceChange(
                reference_id=reference_id,
                original_text=chain[0].before_text,
                current_text=chain[-1].after_text,
                change_types=[r.change_type.value for r in chain],
            )
            if chain[-1].change_type == ChangeType.REFERENCE_DELETE:
                diff.deleted_references.append(change)
            elif change.original_text != change.current_text:
                diff.reference_changes.append(change)


def compose(
    records: Iterable[ChangeRecord],
    markers: Optional[Mapping[str, CitationMarker]] = None,
    current_texts: Optional[Iterable[str]] = None,
) -> ComposedDiff:
    """Convenience wrapper around ChainComposer.compose."""
    return ChainComposer().compose(records, markers, current_texts)


__all__ = [
    'ChainEntry',
    'OrphanEntry',
    'ReferenceChange',
    'ComposedDiff',
    'ChainComposer',
    'compose',
    'KIND_RENUMBER',
    'KIND_STYLE_CONVERSION',
    'KIND_REFERENCE_EDIT',
]
