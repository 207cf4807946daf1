"""Collaborator interfaces consumed by the engine.

The engine depends on three collaborators: a citation detector, a style
converter (both may be AI-backed) and a document store. Rule-based and
Ollama-backed implementations live in their own modules; the local
filesystem store lives here.
"""

import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable
from loguru import logger

from .errors import DocumentNotFoundError, ExternalCollaboratorError
from .marker_parser import CitationMarker, MarkerKind
from .reference_ledger import ReferenceEntry


@dataclass
class DetectionResult:
    """Markers, references and style found in a manuscript."""
    markers: List[CitationMarker] = field(default_factory=list)
    references: List[ReferenceEntry] = field(default_factory=list)
    detected_style: str = ""
    # (header line, first line after the list), None if no References section
    reference_section: Optional[Tuple[int, int]] = None

    @property
    def is_numeric(self) -> bool:
        numeric = sum(1 for m in self.markers if m.is_numeric)
        return numeric >= len(self.markers) - numeric and numeric > 0


@dataclass
class StyleConversionResult:
    """Re-rendered reference and marker texts for a target style."""
    target_style: str
    converted_references: Dict[str, str] = field(default_factory=dict)
    converted_markers: Dict[str, str] = field(default_factory=dict)
    marker_kinds: Dict[str, MarkerKind] = field(default_factory=dict)


@runtime_checkable
class CitationDetector(Protocol):
    def detect_citations(self, text: str) -> DetectionResult:
        ...


@runtime_checkable
class StyleConverter(Protocol):
    def convert_style(
        self,
        references: List[ReferenceEntry],
        markers: List[CitationMarker],
        target_style: str,
    ) -> StyleConversionResult:
        ...


@runtime_checkable
class DocumentStore(Protocol):
    def read_bytes(self, path: str) -> bytes:
        ...

    def write_bytes(self, path: str, data: bytes) -> str:
        ...


class LocalDocumentStore:
    """Reads originals and writes exports on the local filesystem."""

    def __init__(self, base_dir: Optional[str] = None, create_backups: bool = True):
        self.base_dir = Path(base_dir).resolve() if base_dir else None
        self.create_backups = create_backups

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        if self.base_dir is not None and not candidate.is_absolute():
            candidate = self.base_dir / candidate
        return candidate.resolve()

    def read_bytes(self, path: str) -> bytes:
        """Read a document's bytes."""
        resolved = self._resolve(path)
        if not resolved.exists():
            raise DocumentNotFoundError(str(resolved))
        logger.info(f"Reading: {resolved}")
        try:
            data = resolved.read_bytes()
        except OSError as e:
            raise ExternalCollaboratorError(f"Could not read {resolved}", cause=e, collaborator="document_store")
        logger.info(f"Read {len(data)} bytes")
        return data

    def write_bytes(self, path: str, data: bytes) -> str:
        """Write bytes, backing up any file already at the path."""
        resolved = self._resolve(path)
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            if resolved.exists() and self.create_backups:
                self.create_backup(resolved)
            logger.info(f"Writing to: {resolved}")
            resolved.write_bytes(data)
        except OSError as e:
            raise ExternalCollaboratorError(f"Could not write {resolved}", cause=e, collaborator="document_store")
        logger.info(f"Wrote {len(data)} bytes")
        return str(resolved)

    @staticmethod
    def create_backup(path: Path) -> Path:
        """Create a timestamped backup."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = path.parent / f"{path.stem}_backup_{timestamp}{path.suffix}"
        shutil.copy2(path, backup_path)
        logger.info(f"Backup created: {backup_path}")
        return backup_path

    def output_path(self, input_path: str, suffix: str, output_path: Optional[str] = None) -> str:
        """Determine the export path (input stem + suffix unless given)."""
        if output_path:
            return str(self._resolve(output_path))
        source = self._resolve(input_path)
        return str(source.parent / f"{source.stem}{suffix}{source.suffix}")


__all__ = [
    'DetectionResult',
    'StyleConversionResult',
    'CitationDetector',
    'StyleConverter',
    'DocumentStore',
    'LocalDocumentStore',
]
