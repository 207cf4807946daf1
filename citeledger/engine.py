"""Citation Engine - Document operations over markers, ledger and change log.

Every mutating operation runs under the document's lock, finishes any
collaborator call before touching state, appends its change records and
persists them before returning. A failed collaborator or storage call leaves the
document and its log exactly as they were.
"""

import copy
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from loguru import logger

from .chain_composer import ChainComposer, ComposedDiff
from .change_log import ChangeLog, ChangeRecord, ChangeType
from .change_log_store import ChangeLogStore
from .citation_detector import RuleBasedCitationDetector
from .collaborators import CitationDetector, DocumentStore, StyleConversionResult, StyleConverter
from .config import config
from .errors import (
    CitationLedgerError,
    DocumentNotFoundError,
    ExternalCollaboratorError,
    InvalidOperationError,
    MarkerNotFoundError,
)
from .export_renderer import MODE_TRACKED, ExportRenderer, render_reference_line
from .logging_setup import log_document_operation
from .marker_parser import CitationMarker, MarkerKind, MarkerParser
from .number_mapping import NumberMapping, NumberMappingBuilder
from .reference_ledger import ReferenceEntry, ReferenceLedger
from .resequencer import new_operation_id, renumber_markers, resequence_by_appearance
from .style_converter import RuleBasedStyleConverter, StyleCatalogue, format_reference, get_catalogue


@dataclass
class CitationDocument:
    """One ingested manuscript and its citation state."""
    document_id: str
    original_text: str
    style: str
    markers: Dict[str, CitationMarker]
    ledger: ReferenceLedger
    log: ChangeLog
    reference_section: Optional[Tuple[int, int]] = None
    source_path: Optional[str] = None
    # Current reference list line per entry id, as last recorded
    reference_lines: Dict[str, str] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def ordered_markers(self) -> List[CitationMarker]:
        return sorted(self.markers.values(), key=lambda m: m.position)

    def current_texts(self) -> Set[str]:
        return {m.raw_text for m in self.markers.values() if not m.orphaned}

    @property
    def has_numeric_markers(self) -> bool:
        return any(m.is_numeric and not m.orphaned for m in self.markers.values())

    def get_marker(self, marker_id: str) -> CitationMarker:
        marker = self.markers.get(marker_id)
        if marker is None:
            raise MarkerNotFoundError(marker_id)
        return marker

    def snapshot(self) -> Dict[str, Any]:
        """Copy of everything an operation may mutate."""
        return {
            'style': self.style,
            'markers': copy.deepcopy(self.markers),
            'ledger': copy.deepcopy(self.ledger),
            'reference_lines': dict(self.reference_lines),
            'records': self.log.records(include_revoked=True),
        }

    def restore(self, state: Dict[str, Any]):
        self.style = state['style']
        self.markers = state['markers']
        self.ledger = state['ledger']
        self.reference_lines = state['reference_lines']
        self.log.reset(state['records'])


class CitationEngine:
    """
    Entry point for every citation operation.

    Usage:
        engine = CitationEngine()
        doc = engine.ingest(text)
        engine.delete_reference(doc.document_id, entry_id)
        print(engine.export(doc.document_id))
    """

    def __init__(
        self,
        detector: Optional[CitationDetector] = None,
        converter: Optional[StyleConverter] = None,
        store: Optional[ChangeLogStore] = None,
        catalogue: Optional[StyleCatalogue] = None,
    ):
        self.catalogue = catalogue or get_catalogue()
        self.detector = detector or RuleBasedCitationDetector()
        self.converter = converter or RuleBasedStyleConverter(self.catalogue)
        self.store = store
        self.builder = NumberMappingBuilder()
        self.composer = ChainComposer()
        self.renderer = ExportRenderer()
        self.documents: Dict[str, CitationDocument] = {}
        self._registry_lock = threading.Lock()

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_document(self, document_id: str) -> CitationDocument:
        with self._registry_lock:
            doc = self.documents.get(document_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)
        return doc

    def changes(
        self,
        document_id: str,
        include_revoked: bool = False,
        marker_id: Optional[str] = None,
    ) -> List[ChangeRecord]:
        """Change records of a document, optionally only those of one marker."""
        doc = self.get_document(document_id)
        records = doc.log.records(include_revoked=include_revoked)
        if marker_id is not None:
            doc.get_marker(marker_id)
            records = [r for r in records if r.marker_id == marker_id]
        return records

    def _is_numeric_style(self, doc: CitationDocument) -> bool:
        return self.catalogue.get(doc.style).is_numeric

    @contextmanager
    def _transaction(self, doc: CitationDocument, name: str):
        """Persist the operation's records or roll the document back."""
        state = doc.snapshot()
        try:
            yield
            self._persist(doc)
        except Exception:
            doc.restore(state)
            logger.warning(f"[{doc.document_id}] {name} rolled back")
            raise

    # =========================================================================
    # Ingest
    # =========================================================================

    def ingest(
        self,
        content: Union[str, bytes],
        document_id: Optional[str] = None,
        style: Optional[str] = None,
        source_path: Optional[str] = None,
    ) -> CitationDocument:
        """
        Detect markers and references and auto-resequence numeric documents.

        Args:
            content: Manuscript text or UTF-8 bytes
            document_id: Id to register under (generated when omitted)
            style: Current style name (detected when omitted)
            source_path: Where the manuscript came from

        Returns:
            The registered CitationDocument
        """
        text = content.decode('utf-8') if isinstance(content, bytes) else content
        document_id = document_id or uuid.uuid4().hex
        with self._registry_lock:
            if document_id in self.documents:
                raise InvalidOperationError(f"Document {document_id} already ingested; use reanalyze")

        log = self.store.load(document_id) if self.store else ChangeLog(document_id)
        doc = self._analyze(document_id, text, style, source_path, log)
        self._persist(doc)

        with self._registry_lock:
            self.documents[document_id] = doc
        log_document_operation("ingest", document_id, {
            'markers': len(doc.markers),
            'references': len(doc.ledger),
            'style': doc.style,
        })
        return doc

    def reanalyze(self, document_id: str, style: Optional[str] = None) -> CitationDocument:
        """
        Revoke every prior record and analyze the original text again.

        Detection and persistence run against a copy of the log; the old
        document stays registered and untouched if either fails.
        """
        old = self.get_document(document_id)
        with old.lock:
            revoked = len(old.log.active)
            doc = self._analyze(document_id, old.original_text, style, old.source_path, old.log.copy())
            self._persist(doc)
            with self._registry_lock:
                self.documents[document_id] = doc
        log_document_operation("reanalyze", document_id, {'revoked': revoked})
        return doc

    def _analyze(
        self,
        document_id: str,
        text: str,
        style: Optional[str],
        source_path: Optional[str],
        log: ChangeLog,
    ) -> CitationDocument:
        try:
            detection = self.detector.detect_citations(text)
        except CitationLedgerError:
            raise
        except Exception as e:
            raise ExternalCollaboratorError("Citation detection failed", cause=e, collaborator=type(self.detector).__name__)

        # Earlier history is superseded only once detection has succeeded
        log.revoke_all()

        style_name = self.catalogue.get(style or detection.detected_style or config.DEFAULT_STYLE).name
        doc = CitationDocument(
            document_id=document_id,
            original_text=text,
            style=style_name,
            markers={m.id: m for m in detection.markers},
            ledger=ReferenceLedger(detection.references),
            log=log,
            reference_section=detection.reference_section,
            source_path=source_path,
        )
        doc.reference_lines = {e.id: e.original_text for e in doc.ledger}
        self._link_markers(doc)

        if doc.has_numeric_markers and self._is_numeric_style(doc):
            operation = new_operation_id("ingest")
            outcome = resequence_by_appearance(
                doc.ledger, doc.markers, ChangeType.RESEQUENCE, operation, self.builder
            )
            doc.log.extend(outcome.records)
            doc.log.extend(self._reference_records(doc, ChangeType.RESEQUENCE, operation))
        else:
            logger.info(f"[{document_id}] author-year document; order left as detected")
        return doc

    def _link_markers(self, doc: CitationDocument):
        """Link markers to entries: numeric by number, author-year by surname and year."""
        unresolved = 0
        for marker in doc.ordered_markers():
            if marker.is_numeric:
                for number in marker.numbers:
                    entry = doc.ledger.by_number(number)
                    if entry is None:
                        unresolved += 1
                        logger.warning(f"Marker {marker.raw_text!r} cites missing reference {number}")
                        continue
                    entry.citation_ids.add(marker.id)
                continue

            entry = self._match_author_year(doc.ledger, marker)
            if entry is None:
                unresolved += 1
                logger.warning(f"Marker {marker.raw_text!r} matches no reference")
            else:
                entry.citation_ids.add(marker.id)
        if unresolved:
            logger.info(f"[{doc.document_id}] {unresolved} citations could not be linked")

    @staticmethod
    def _match_author_year(ledger: ReferenceLedger, marker: CitationMarker) -> Optional[ReferenceEntry]:
        surname, year = MarkerParser.author_year_parts(marker.raw_text)
        if not surname:
            return None
        candidates = [
            e for e in ledger
            if (e.first_author_surname or '').lower() == surname.lower()
        ]
        for entry in candidates:
            if entry.year == year:
                return entry
        return candidates[0] if len(candidates) == 1 and not year else None

    def _reference_records(self, doc: CitationDocument, change_type: ChangeType, operation: str) -> List[ChangeRecord]:
        """Reference-level records for every entry whose list line changed."""
        numbered = self._is_numeric_style(doc)
        records = []
        for entry in doc.ledger:
            before = doc.reference_lines.get(entry.id, entry.original_text)
            after = render_reference_line(entry, numbered)
            if before == after:
                continue
            records.append(ChangeRecord(
                change_type=change_type,
                before_text=before,
                after_text=after,
                reference_id=entry.id,
                metadata={'operation': operation},
            ))
            doc.reference_lines[entry.id] = after
        return records

    # =========================================================================
    # Reordering
    # =========================================================================

    def reorder(self, document_id: str, new_order: List[str]) -> NumberMapping:
        """Put references in the given id order and renumber markers."""
        doc = self.get_document(document_id)
        with doc.lock:
            mapping = self._reorder_locked(doc, new_order, "reorder")
        return mapping

    def move_reference(self, document_id: str, entry_id: str, new_position: int) -> NumberMapping:
        """Move one reference to a 1-based position."""
        doc = self.get_document(document_id)
        with doc.lock:
            return self._reorder_locked(doc, doc.ledger.moved_order(entry_id, new_position), "move")

    def sort_references(self, document_id: str, by: str) -> NumberMapping:
        """Sort references alphabetically, by year, or by first appearance."""
        doc = self.get_document(document_id)
        with doc.lock:
            order = doc.ledger.sorted_order(by, doc.markers.values())
            return self._reorder_locked(doc, order, f"sort-{by}")

    def resequence(self, document_id: str) -> NumberMapping:
        """Renumber references by first appearance in the text."""
        doc = self.get_document(document_id)
        with doc.lock:
            numeric = [m for m in doc.markers.values() if m.is_numeric and not m.orphaned]
            return self._reorder_locked(doc, doc.ledger.appearance_order(numeric), "resequence")

    def _reorder_locked(self, doc: CitationDocument, new_order: List[str], name: str) -> NumberMapping:
        operation = new_operation_id(name)
        with self._transaction(doc, name):
            previous = doc.ledger.reorder(new_order)
            mapping = self.builder.build(doc.ledger, doc.markers, previous)
            outcome = renumber_markers(doc.markers.values(), mapping, ChangeType.RENUMBER, operation)
            records = outcome.records
            if self._is_numeric_style(doc):
                records += self._reference_records(doc, ChangeType.RENUMBER, operation)
            doc.log.extend(records)
        log_document_operation(name, doc.document_id, {
            'renumbered': len(outcome.renumbered),
            'records': len(records),
        })
        return mapping

    # =========================================================================
    # Delete
    # =========================================================================

    def delete_reference(self, document_id: str, entry_id: str) -> NumberMapping:
        """
        Remove a reference, shift higher numbers down and update markers.

        Markers citing only the removed reference become orphans; markers
        citing it among others lose that number (partial deletion).
        """
        doc = self.get_document(document_id)
        with doc.lock, self._transaction(doc, "delete"):
            entry = doc.ledger.get(entry_id)
            operation = new_operation_id("delete")
            removed_number = entry.number
            previous = doc.ledger.numbers()
            doc.ledger.remove(entry_id)

            records = [ChangeRecord(
                change_type=ChangeType.REFERENCE_DELETE,
                before_text=doc.reference_lines.pop(entry.id, entry.original_text),
                after_text="",
                reference_id=entry.id,
                metadata={'operation': operation},
            )]

            mapping = self.builder.build(doc.ledger, doc.markers, previous, removed_numbers=[removed_number])
            outcome = renumber_markers(doc.markers.values(), mapping, ChangeType.RENUMBER, operation)
            records += outcome.records

            for marker in doc.ordered_markers():
                if marker.is_numeric or marker.orphaned or marker.id not in entry.citation_ids:
                    continue
                records.append(ChangeRecord(
                    change_type=ChangeType.REFERENCE_DELETE,
                    before_text=marker.raw_text,
                    after_text="",
                    marker_id=marker.id,
                    metadata={'orphaned': True, 'operation': operation},
                ))
                marker.orphaned = True
                outcome.orphaned.append(marker.id)

            for marker_id in outcome.orphaned:
                doc.ledger.unlink_marker(marker_id)
            if self._is_numeric_style(doc):
                records += self._reference_records(doc, ChangeType.RENUMBER, operation)

            doc.log.extend(records)
        log_document_operation("delete", document_id, {
            'reference': entry_id,
            'orphaned': len(outcome.orphaned),
            'partial': len(outcome.partial),
        })
        return mapping

    # =========================================================================
    # Edit
    # =========================================================================

    def edit_reference(self, document_id: str, entry_id: str, fields: Dict[str, Any]) -> List[ChangeRecord]:
        """
        Change bibliographic fields of one reference.

        In author-year documents, a changed first-author surname or year is
        substituted into every linked marker, one REFERENCE_EDIT record per
        marker. Each edit appends new records; earlier ones stay untouched.
        """
        unknown = set(fields) - set(ReferenceEntry.EDITABLE_FIELDS)
        if unknown:
            raise InvalidOperationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        doc = self.get_document(document_id)
        with doc.lock, self._transaction(doc, "edit"):
            entry = doc.ledger.get(entry_id)
            operation = new_operation_id("edit")
            old_surname, old_year = entry.first_author_surname, entry.year

            for name, value in fields.items():
                if name == 'authors':
                    value = [value] if isinstance(value, str) else [str(a) for a in value or []]
                elif value is not None:
                    value = str(value)
                setattr(entry, name, value)
            if 'display_text' not in fields and entry.title:
                entry.display_text = format_reference(entry, self.catalogue.get(doc.style))

            new_surname, new_year = entry.first_author_surname, entry.year
            records: List[ChangeRecord] = []
            for marker in doc.ordered_markers():
                if marker.is_numeric or marker.orphaned or marker.id not in entry.citation_ids:
                    continue
                text = marker.raw_text
                if old_surname and new_surname and old_surname != new_surname:
                    text = text.replace(old_surname, new_surname)
                if old_year and new_year and old_year != new_year:
                    text = text.replace(old_year, new_year)
                if text == marker.raw_text:
                    continue
                records.append(ChangeRecord(
                    change_type=ChangeType.REFERENCE_EDIT,
                    before_text=marker.raw_text,
                    after_text=text,
                    marker_id=marker.id,
                    reference_id=entry.id,
                    metadata={'operation': operation},
                ))
                marker.raw_text = text

            numbered = self._is_numeric_style(doc)
            before = doc.reference_lines.get(entry.id, entry.original_text)
            after = render_reference_line(entry, numbered)
            if before != after:
                records.append(ChangeRecord(
                    change_type=ChangeType.REFERENCE_EDIT,
                    before_text=before,
                    after_text=after,
                    reference_id=entry.id,
                    metadata={'operation': operation},
                ))
                doc.reference_lines[entry.id] = after

            doc.log.extend(records)
        log_document_operation("edit", document_id, {'reference': entry_id, 'fields': sorted(fields)})
        return records

    # =========================================================================
    # Style conversion
    # =========================================================================

    def convert_style(self, document_id: str, target_style: str) -> StyleConversionResult:
        """
        Re-render references and markers in another style.

        The converter runs against copies first; state changes only after it
        succeeds. Author-year to numeric conversion numbers references by
        first citation.
        """
        style = self.catalogue.get(target_style)
        doc = self.get_document(document_id)
        with doc.lock, self._transaction(doc, "convert"):
            ledger = copy.deepcopy(doc.ledger)
            markers = copy.deepcopy(doc.markers)
            reorder_first = style.is_numeric and not self._is_numeric_style(doc)
            if reorder_first:
                ledger.reorder(ledger.appearance_order(markers.values()))

            try:
                result = self.converter.convert_style(
                    ledger.entries, sorted(markers.values(), key=lambda m: m.position), style.name
                )
            except CitationLedgerError:
                raise
            except Exception as e:
                logger.error(f"[{document_id}] style conversion failed: {e}")
                raise ExternalCollaboratorError(
                    f"Style conversion to {style.name} failed", cause=e, collaborator=type(self.converter).__name__
                )

            operation = new_operation_id("convert")
            records: List[ChangeRecord] = []
            for marker in doc.ordered_markers():
                text = result.converted_markers.get(marker.id)
                if text is None or marker.orphaned:
                    continue
                kind = result.marker_kinds.get(marker.id, style.marker_kind)
                if kind is MarkerKind.AUTHOR_YEAR:
                    numbers: List[int] = []
                elif marker.is_numeric:
                    numbers = list(marker.numbers)
                else:
                    numbers = sorted(e.number for e in ledger if marker.id in e.citation_ids)
                if text != marker.raw_text:
                    records.append(ChangeRecord(
                        change_type=ChangeType.STYLE_CONVERSION,
                        before_text=marker.raw_text,
                        after_text=text,
                        marker_id=marker.id,
                        metadata={'operation': operation},
                    ))
                marker.raw_text = text
                marker.kind = kind
                marker.numbers = numbers

            for entry in ledger:
                entry.display_text = result.converted_references.get(entry.id, entry.display_text)
            doc.ledger = ledger
            doc.style = style.name
            records += self._reference_records(doc, ChangeType.REFERENCE_STYLE_CONVERSION, operation)

            doc.log.extend(records)
        log_document_operation("convert", document_id, {
            'style': style.name,
            'markers': len(result.converted_markers),
            'references': len(result.converted_references),
        })
        return result

    # =========================================================================
    # Preview / export
    # =========================================================================

    def preview(self, document_id: str) -> ComposedDiff:
        """Compose the change log without mutating anything."""
        doc = self.get_document(document_id)
        with doc.lock:
            return self.composer.compose(doc.log.active, doc.markers, doc.current_texts())

    def export(
        self,
        document_id: str,
        mode: str = MODE_TRACKED,
        output_path: Optional[str] = None,
        document_store: Optional[DocumentStore] = None,
    ) -> str:
        """
        Render the document with tracked changes or cleanly accepted.

        When an output path and store are given the result is also written.
        """
        doc = self.get_document(document_id)
        with doc.lock:
            diff = self.composer.compose(doc.log.active, doc.markers, doc.current_texts())
            text = self.renderer.render(
                doc.original_text,
                diff,
                doc.ledger,
                numbered=self._is_numeric_style(doc),
                reference_section=doc.reference_section,
                mode=mode,
            )
        if output_path and document_store is not None:
            document_store.write_bytes(output_path, text.encode('utf-8'))
        log_document_operation("export", document_id, {'mode': mode, 'output': output_path})
        return text

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist(self, doc: CitationDocument):
        if self.store is not None:
            self.store.save(doc.log)


__all__ = ['CitationEngine', 'CitationDocument']
