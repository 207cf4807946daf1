"""Error hierarchy for CitationLedger.

Only failures that abort an operation are exceptions. Parse ambiguities,
unresolvable numbers and chain collisions are recovered where they occur
and logged as warnings.
"""

from typing import Optional


class CitationLedgerError(Exception):
    """Base exception for all CitationLedger errors.

    Attributes:
        message: Human-readable error description.
        cause: Original exception that caused this error (optional).
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


class NotFoundError(CitationLedgerError):
    """A referenced document, reference entry or marker does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class DocumentNotFoundError(NotFoundError):
    def __init__(self, document_id: str):
        super().__init__("Document", document_id)


class ReferenceNotFoundError(NotFoundError):
    def __init__(self, reference_id: str):
        super().__init__("Reference", reference_id)


class MarkerNotFoundError(NotFoundError):
    def __init__(self, marker_id: str):
        super().__init__("Marker", marker_id)


class InvalidOperationError(CitationLedgerError):
    """The request is malformed (bad permutation, unknown style, bad position)."""


class ExternalCollaboratorError(CitationLedgerError):
    """An AI or storage collaborator call failed.

    The operation that made the call is aborted without writing any change
    records. Callers may retry when ``retryable`` is set.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        collaborator: Optional[str] = None,
        retryable: bool = True,
    ):
        super().__init__(message, cause)
        self.collaborator = collaborator
        self.retryable = retryable


__all__ = [
    'CitationLedgerError',
    'NotFoundError',
    'DocumentNotFoundError',
    'ReferenceNotFoundError',
    'MarkerNotFoundError',
    'InvalidOperationError',
    'ExternalCollaboratorError',
]
