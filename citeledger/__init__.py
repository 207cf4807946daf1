"""CitationLedger Modules"""

from .errors import (
    CitationLedgerError,
    NotFoundError,
    DocumentNotFoundError,
    ReferenceNotFoundError,
    MarkerNotFoundError,
    InvalidOperationError,
    ExternalCollaboratorError,
)
from .marker_parser import MarkerParser, CitationMarker, MarkerKind, extract_numbers, format_numbers, normalize_marker
from .reference_ledger import ReferenceLedger, ReferenceEntry
from .number_mapping import NumberMapping, NumberMappingBuilder
from .change_log import ChangeLog, ChangeRecord, ChangeType
from .change_log_store import ChangeLogStore
from .chain_composer import ChainComposer, ComposedDiff, ChainEntry, OrphanEntry
from .export_renderer import ExportRenderer
from .engine import CitationEngine, CitationDocument

__version__ = '0.1.0'
