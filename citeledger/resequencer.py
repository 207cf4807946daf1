"""Resequencer Module - Applies number mappings to markers and records the changes.

Shared by ingest-time auto-resequencing, reorders and deletes: given a
NumberMapping, every numeric marker is rewritten and one change record is
produced per marker whose text changes. Markers that lose every reference
are flagged orphaned; their text is kept so the export can strike it.
"""

import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .change_log import ChangeRecord, ChangeType
from .marker_parser import CitationMarker, format_marker, format_numbers
from .number_mapping import NumberMapping, NumberMappingBuilder
from .reference_ledger import ReferenceLedger


def new_operation_id(name: str) -> str:
    """Unique tag stored in record metadata so one operation's records can be told apart."""
    return f"{name}-{uuid.uuid4().hex[:12]}"


def marker_text(marker: CitationMarker, numbers: List[int]) -> str:
    """Render numbers in the marker's own kind; grouped markers stay bare."""
    if marker.group_id:
        return format_numbers(numbers)
    return format_marker(numbers, marker.kind)


@dataclass
class RenumberOutcome:
    """Records produced by applying one mapping."""
    mapping: NumberMapping
    records: List[ChangeRecord] = field(default_factory=list)
    renumbered: List[str] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)
    partial: List[str] = field(default_factory=list)


def renumber_markers(
    markers: Iterable[CitationMarker],
    mapping: NumberMapping,
    change_type: ChangeType,
    operation: str,
) -> RenumberOutcome:
    """
    Rewrite numeric markers through a mapping, in document order.

    Args:
        markers: Markers to rewrite (mutated in place)
        mapping: Old -> new numbers
        change_type: RESEQUENCE at ingest, RENUMBER afterwards
        operation: Operation tag for record metadata

    Returns:
        RenumberOutcome with the emitted records
    """
    outcome = RenumberOutcome(mapping=mapping)
    for marker in sorted(markers, key=lambda m: m.position):
        if not marker.is_numeric or marker.orphaned or not marker.numbers:
            continue

        new_numbers = mapping.remap(marker.numbers)
        if new_numbers is None:
            outcome.records.append(ChangeRecord(
                change_type=ChangeType.REFERENCE_DELETE,
                before_text=marker.raw_text,
                after_text="",
                marker_id=marker.id,
                metadata={'orphaned': True, 'operation': operation},
            ))
            marker.orphaned = True
            marker.numbers = []
            outcome.orphaned.append(marker.id)
            logger.info(f"Marker {marker.raw_text!r} orphaned: every cited reference was removed")
            continue

        partial = any(n in mapping.removed for n in marker.numbers)
        text = marker_text(marker, new_numbers)
        if text != marker.raw_text:
            metadata = {'operation': operation}
            if partial:
                metadata['partial_deletion'] = True
                outcome.partial.append(marker.id)
            outcome.records.append(ChangeRecord(
                change_type=change_type,
                before_text=marker.raw_text,
                after_text=text,
                marker_id=marker.id,
                metadata=metadata,
            ))
            marker.raw_text = text
            outcome.renumbered.append(marker.id)
        marker.numbers = new_numbers
    return outcome


def resequence_by_appearance(
    ledger: ReferenceLedger,
    markers: Dict[str, CitationMarker],
    change_type: ChangeType,
    operation: str,
    builder: Optional[NumberMappingBuilder] = None,
) -> RenumberOutcome:
    """
    Order references by first citation and renumber the markers.

    Uncited references go last, keeping their relative order.
    """
    builder = builder or NumberMappingBuilder()
    numeric = [m for m in markers.values() if m.is_numeric and not m.orphaned]
    order = ledger.appearance_order(numeric)
    previous = ledger.reorder(order)
    mapping = builder.build(ledger, markers, previous)
    outcome = renumber_markers(markers.values(), mapping, change_type, operation)
    logger.info(
        f"Resequenced {len(ledger)} references by appearance; "
        f"{len(outcome.renumbered)} markers renumbered"
    )
    return outcome


__all__ = [
    'RenumberOutcome',
    'renumber_markers',
    'resequence_by_appearance',
    'marker_text',
    'new_operation_id',
]
