"""Number Mapping Module - Old reference number -> new number (or deleted).

A mapping is rebuilt after every reorder or delete from the ledger's new
order and the markers that cite each entry:

    Pass 1  an entry cited by a single-number marker takes that number
    Pass 2  an entry cited only by multi-number markers claims an unclaimed
            number from them, preferring the number it held before
    Pass 3  an uncited entry keeps the number it held before, if free

Numbers that appear in markers but are never claimed are deleted.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set
from loguru import logger

from .marker_parser import CitationMarker
from .reference_ledger import ReferenceLedger


@dataclass
class NumberMapping:
    """
    Map of old number -> new number, ``None`` meaning deleted.

    ``removed`` holds deleted numbers that belonged to an entry the caller
    removed; ``unresolved`` holds numbers cited in the text that no entry
    claimed (typically citations to a reference the list never had).
    """
    mapping: Dict[int, Optional[int]] = field(default_factory=dict)
    removed: Set[int] = field(default_factory=set)
    unresolved: Set[int] = field(default_factory=set)

    def __getitem__(self, old: int) -> Optional[int]:
        return self.mapping[old]

    def __contains__(self, old: int) -> bool:
        return old in self.mapping

    def __len__(self) -> int:
        return len(self.mapping)

    def get(self, old: int, default: Optional[int] = None) -> Optional[int]:
        return self.mapping.get(old, default)

    def is_deleted(self, old: int) -> bool:
        return old in self.mapping and self.mapping[old] is None

    @property
    def surviving(self) -> Dict[int, int]:
        return {old: new for old, new in self.mapping.items() if new is not None}

    @property
    def is_identity(self) -> bool:
        return not self.removed and all(old == new for old, new in self.surviving.items())

    def remap(self, numbers: Iterable[int]) -> Optional[List[int]]:
        """
        Translate a marker's numbers.

        Removed numbers are dropped. Unresolved or unknown numbers are kept
        as-is. Returns ``None`` when every number was removed, which makes
        the marker an orphan.
        """
        numbers = list(numbers)
        result = set()
        for old in numbers:
            if old in self.removed:
                continue
            new = self.mapping.get(old)
            if new is None:
                logger.warning(f"MappingUnresolvable: number {old} has no claimant; left unchanged")
                result.add(old)
            else:
                result.add(new)
        if numbers and not result:
            return None
        return sorted(result)

    def to_dict(self) -> Dict:
        return {
            'mapping': {str(k): v for k, v in sorted(self.mapping.items())},
            'removed': sorted(self.removed),
            'unresolved': sorted(self.unresolved),
        }


class NumberMappingBuilder:
    """Builds a NumberMapping from the post-mutation ledger."""

    def build(
        self,
        ledger: ReferenceLedger,
        markers: Mapping[str, CitationMarker],
        previous_numbers: Optional[Mapping[str, int]] = None,
        removed_numbers: Iterable[int] = (),
    ) -> NumberMapping:
        """
        Args:
            ledger: Ledger already in its new order (removed entries gone)
            markers: Marker id -> marker, numbers still pre-mutation
            previous_numbers: Entry id -> number held before the mutation
            removed_numbers: Numbers of entries removed by this mutation

        Returns:
            NumberMapping covering every surviving entry and every cited number
        """
        previous_numbers = previous_numbers or {}
        removed = set(removed_numbers)
        result = NumberMapping(removed=set())
        claimed: Set[int] = set()
        mapped_entries: Set[str] = set()

        def linked(entry) -> List[CitationMarker]:
            found = [markers[mid] for mid in entry.citation_ids if mid in markers]
            return sorted(
                (m for m in found if m.is_numeric and not m.orphaned and m.numbers),
                key=lambda m: m.position,
            )

        def claim(entry, old: int, how: str):
            result.mapping[old] = entry.number
            claimed.add(old)
            mapped_entries.add(entry.id)
            logger.debug(f"{how}: {old} -> {entry.number}")

        # Pass 1: single-number markers are definitive
        for entry in ledger:
            for marker in linked(entry):
                if len(marker.numbers) != 1:
                    continue
                old = marker.numbers[0]
                if old in claimed or old in removed:
                    continue
                claim(entry, old, "Pass 1")
                break

        # Pass 2: claim from multi-number markers, first-seen entry wins
        for entry in ledger:
            if entry.id in mapped_entries:
                continue
            candidates: List[int] = []
            for marker in linked(entry):
                for old in marker.numbers:
                    if old not in claimed and old not in removed and old not in candidates:
                        candidates.append(old)
            if not candidates:
                continue
            previous = previous_numbers.get(entry.id)
            old = previous if previous in candidates else candidates[0]
            claim(entry, old, "Pass 2")

        # Pass 3: uncited entries keep their previous slot
        for entry in ledger:
            if entry.id in mapped_entries:
                continue
            previous = previous_numbers.get(entry.id)
            if previous is None or previous in claimed or previous in removed:
                logger.debug(f"Entry {entry.id} has no prior number to map")
                continue
            claim(entry, previous, "Pass 3")

        # Deletion detection
        cited: Set[int] = set()
        for marker in markers.values():
            if marker.is_numeric and not marker.orphaned:
                cited.update(marker.numbers)
        for old in sorted(cited | removed):
            if old in claimed:
                continue
            result.mapping[old] = None
            if old in removed:
                result.removed.add(old)
            else:
                result.unresolved.add(old)
                logger.warning(f"MappingUnresolvable: cited number {old} has no surviving reference")

        return result


def build_mapping(
    ledger: ReferenceLedger,
    markers: Mapping[str, CitationMarker],
    previous_numbers: Optional[Mapping[str, int]] = None,
    removed_numbers: Iterable[int] = (),
) -> NumberMapping:
    """Convenience wrapper around NumberMappingBuilder.build."""
    return NumberMappingBuilder().build(ledger, markers, previous_numbers, removed_numbers)


__all__ = ['NumberMapping', 'NumberMappingBuilder', 'build_mapping']
