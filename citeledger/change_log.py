"""Change Log Module - Append-only history of citation text transformations.

Records are immutable. A later edit to the same marker appends a new record
whose ``before_text`` is the previous ``after_text``; the chain composer
folds them back together. The only permitted change to history is marking
a record revoked, which replaces it with a revoked copy.
"""

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional
from loguru import logger


class ChangeType(str, Enum):
    """Kinds of recorded transformations."""
    RESEQUENCE = "RESEQUENCE"
    RENUMBER = "RENUMBER"
    STYLE_CONVERSION = "STYLE_CONVERSION"
    REFERENCE_STYLE_CONVERSION = "REFERENCE_STYLE_CONVERSION"
    REFERENCE_EDIT = "REFERENCE_EDIT"
    REFERENCE_DELETE = "REFERENCE_DELETE"


@dataclass(frozen=True)
class ChangeRecord:
    """One before/after text transition of a marker or reference."""
    change_type: ChangeType
    before_text: str
    after_text: str
    reference_id: Optional[str] = None
    marker_id: Optional[str] = None
    revoked: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_orphan(self) -> bool:
        return bool(self.metadata.get('orphaned'))

    @property
    def is_partial_deletion(self) -> bool:
        return bool(self.metadata.get('partial_deletion'))

    @property
    def is_marker_level(self) -> bool:
        return self.marker_id is not None

    @property
    def is_reference_level(self) -> bool:
        return self.marker_id is None and self.reference_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'change_type': self.change_type.value,
            'before_text': self.before_text,
            'after_text': self.after_text,
            'reference_id': self.reference_id,
            'marker_id': self.marker_id,
            'revoked': self.revoked,
            'timestamp': self.timestamp,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChangeRecord':
        return cls(
            id=data['id'],
            change_type=ChangeType(data['change_type']),
            before_text=data['before_text'],
            after_text=data['after_text'],
            reference_id=data.get('reference_id'),
            marker_id=data.get('marker_id'),
            revoked=bool(data.get('revoked', False)),
            timestamp=data['timestamp'],
            metadata=dict(data.get('metadata') or {}),
        )


class ChangeLog:
    """Ordered change records for one document."""

    def __init__(self, document_id: str, records: Optional[Iterable[ChangeRecord]] = None):
        self.document_id = document_id
        self._records: List[ChangeRecord] = list(records or [])
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ChangeRecord]:
        return iter(list(self._records))

    def append(self, record: ChangeRecord) -> ChangeRecord:
        with self._lock:
            self._records.append(record)
        logger.debug(
            f"[{self.document_id}] {record.change_type.value}: "
            f"{record.before_text!r} -> {record.after_text!r}"
        )
        return record

    def extend(self, records: Iterable[ChangeRecord]) -> List[ChangeRecord]:
        records = list(records)
        with self._lock:
            self._records.extend(records)
        if records:
            logger.debug(f"[{self.document_id}] appended {len(records)} change records")
        return records

    def records(self, include_revoked: bool = False) -> List[ChangeRecord]:
        with self._lock:
            return [r for r in self._records if include_revoked or not r.revoked]

    @property
    def active(self) -> List[ChangeRecord]:
        return self.records()

    def get(self, record_id: str) -> Optional[ChangeRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def for_marker(self, marker_id: str) -> List[ChangeRecord]:
        return [r for r in self.active if r.marker_id == marker_id]

    def for_reference(self, reference_id: str) -> List[ChangeRecord]:
        return [r for r in self.active if r.reference_id == reference_id and r.marker_id is None]

    def revoke_where(self, predicate: Callable[[ChangeRecord], bool]) -> int:
        """Revoke every active record matching the predicate; returns the count."""
        count = 0
        with self._lock:
            for index, record in enumerate(self._records):
                if not record.revoked and predicate(record):
                    self._records[index] = replace(record, revoked=True)
                    count += 1
        if count:
            logger.info(f"[{self.document_id}] revoked {count} change records")
        return count

    def revoke_type(self, change_type: ChangeType) -> int:
        return self.revoke_where(lambda r: r.change_type == change_type)

    def revoke_all(self) -> int:
        return self.revoke_where(lambda r: True)

    def copy(self) -> 'ChangeLog':
        """Independent log holding the same records."""
        return ChangeLog(self.document_id, self.records(include_revoked=True))

    def reset(self, records: Iterable[ChangeRecord]):
        """Replace the whole history, e.g. to roll back a failed operation."""
        with self._lock:
            self._records = list(records)

    def to_list(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.records(include_revoked=True)]

    @classmethod
    def from_list(cls, document_id: str, data: Iterable[Dict[str, Any]]) -> 'ChangeLog':
        return cls(document_id, [ChangeRecord.from_dict(d) for d in data])


__all__ = ['ChangeType', 'ChangeRecord', 'ChangeLog']
