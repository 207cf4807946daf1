"""Reference Ledger Module - The ordered reference list of a document.

Each entry owns a fixed-width position key ("0003") and the set of marker
ids that cite it. Keys are dense: every mutating call ends with a reindex
so positions read 1..N in list order.
"""

import re
import uuid
from dataclasses import dataclass, field, fields
from typing import Dict, Iterable, Iterator, List, Optional, Set
from loguru import logger

from .config import config
from .errors import InvalidOperationError, ReferenceNotFoundError


def make_position_key(number: int, width: Optional[int] = None) -> str:
    """Zero-pad a 1-based position into a key: 3 -> "0003"."""
    width = config.POSITION_KEY_WIDTH if width is None else width
    return str(number).zfill(width)


@dataclass
class ReferenceEntry:
    """One bibliography item."""
    position_key: str
    display_text: str = ""
    authors: List[str] = field(default_factory=list)
    year: Optional[str] = None
    title: Optional[str] = None
    journal: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None
    url: Optional[str] = None
    publisher: Optional[str] = None
    original_text: str = ""
    original_index: int = 0
    citation_ids: Set[str] = field(default_factory=set)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    # Fields a caller may change through edit_reference
    EDITABLE_FIELDS = (
        'authors', 'year', 'title', 'journal', 'volume', 'issue',
        'pages', 'doi', 'url', 'publisher', 'display_text',
    )

    @property
    def number(self) -> int:
        return int(self.position_key)

    @property
    def first_author_surname(self) -> Optional[str]:
        """Surname of the first author ("Smith, J." -> "Smith")."""
        if not self.authors:
            return None
        first = self.authors[0].strip()
        if not first:
            return None
        return re.split(r'[,\s]+', first)[0]

    def to_dict(self) -> Dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['authors'] = list(self.authors)
        data['citation_ids'] = sorted(self.citation_ids)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'ReferenceEntry':
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs['authors'] = list(kwargs.get('authors') or [])
        kwargs['citation_ids'] = set(kwargs.get('citation_ids') or [])
        return cls(**kwargs)


class ReferenceLedger:
    """Ordered collection of reference entries."""

    SORT_KEYS = ('alphabetical', 'year', 'appearance')

    def __init__(self, entries: Optional[Iterable[ReferenceEntry]] = None, key_width: Optional[int] = None):
        self.key_width = config.POSITION_KEY_WIDTH if key_width is None else key_width
        self._entries: List[ReferenceEntry] = sorted(entries or [], key=lambda e: e.number)
        self.reindex()

    def __iter__(self) -> Iterator[ReferenceEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[ReferenceEntry]:
        return list(self._entries)

    @property
    def order(self) -> List[str]:
        """Entry ids in position order."""
        return [e.id for e in self._entries]

    def numbers(self) -> Dict[str, int]:
        """Map entry id -> current 1-based number."""
        return {e.id: e.number for e in self._entries}

    def get(self, entry_id: str) -> ReferenceEntry:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        raise ReferenceNotFoundError(entry_id)

    def by_number(self, number: int) -> Optional[ReferenceEntry]:
        if 1 <= number <= len(self._entries):
            return self._entries[number - 1]
        return None

    def entries_citing(self, marker_id: str) -> List[ReferenceEntry]:
        return [e for e in self._entries if marker_id in e.citation_ids]

    def link(self, entry_id: str, marker_id: str):
        self.get(entry_id).citation_ids.add(marker_id)

    def unlink_marker(self, marker_id: str):
        for entry in self._entries:
            entry.citation_ids.discard(marker_id)

    def reindex(self):
        """Reassign dense position keys in list order."""
        for index, entry in enumerate(self._entries, start=1):
            entry.position_key = make_position_key(index, self.key_width)

    # =========================================================================
    # Mutations
    # =========================================================================

    def reorder(self, new_order: List[str]) -> Dict[str, int]:
        """
        Put entries in the given id order and reindex.

        Args:
            new_order: Every entry id exactly once

        Returns:
            Map of entry id -> number held before the reorder

        Raises:
            InvalidOperationError: If new_order is not a permutation of the ids
        """
        current = self.order
        if len(new_order) != len(set(new_order)) or set(new_order) != set(current):
            raise InvalidOperationError(
                f"Reorder must list each of the {len(current)} reference ids exactly once"
            )

        previous = self.numbers()
        by_id = {e.id: e for e in self._entries}
        self._entries = [by_id[entry_id] for entry_id in new_order]
        self.reindex()
        logger.debug(f"Reordered {len(self._entries)} references")
        return previous

    def remove(self, entry_id: str) -> ReferenceEntry:
        """Remove an entry; higher positions shift down by one."""
        entry = self.get(entry_id)
        self._entries.remove(entry)
        self.reindex()
        logger.debug(f"Removed reference {entry_id} (was {entry.position_key})")
        return entry

    def append(self, entry: ReferenceEntry):
        self._entries.append(entry)
        self.reindex()

    # =========================================================================
    # Order builders (return a new id order, do not mutate)
    # =========================================================================

    def moved_order(self, entry_id: str, new_position: int) -> List[str]:
        """Id order with one entry moved to a 1-based position."""
        self.get(entry_id)
        if not 1 <= new_position <= len(self._entries):
            raise InvalidOperationError(
                f"Position {new_position} out of range 1..{len(self._entries)}"
            )
        order = [i for i in self.order if i != entry_id]
        order.insert(new_position - 1, entry_id)
        return order

    def appearance_order(self, markers: Iterable) -> List[str]:
        """
        Id order by first citation in the document.

        Markers are walked in document order; uncited entries keep their
        relative order at the end.
        """
        order: List[str] = []
        seen: Set[str] = set()
        for marker in sorted(markers, key=lambda m: m.position):
            for entry in self.entries_citing(marker.id):
                if entry.id not in seen:
                    seen.add(entry.id)
                    order.append(entry.id)
        order.extend(e.id for e in self._entries if e.id not in seen)
        return order

    def sorted_order(self, by: str, markers: Iterable = ()) -> List[str]:
        """Id order for a named sort: alphabetical, year or appearance."""
        if by == 'appearance':
            return self.appearance_order(markers)
        if by == 'alphabetical':
            key = lambda e: ((e.first_author_surname or e.display_text or '').lower(), e.number)
        elif by == 'year':
            key = lambda e: (e.year or '9999', e.number)
        else:
            raise InvalidOperationError(f"Unknown sort key '{by}'. Use one of: {', '.join(self.SORT_KEYS)}")
        return [e.id for e in sorted(self._entries, key=key)]

    def to_dict(self) -> Dict:
        return {'key_width': self.key_width, 'entries': [e.to_dict() for e in self._entries]}

    @classmethod
    def from_dict(cls, data: Dict) -> 'ReferenceLedger':
        return cls(
            entries=[ReferenceEntry.from_dict(e) for e in data.get('entries', [])],
            key_width=data.get('key_width'),
        )


__all__ = ['ReferenceEntry', 'ReferenceLedger', 'make_position_key']
