"""Exception taxonomy for the docflow engine.

Precondition, conflict and lookup failures are hard errors.  Transition
rejections are expected business outcomes: the dry-run path returns them as
a :class:`~docflow_engine.models.TransitionValidation` value and the
mutating path raises :class:`TransitionRejectedError` carrying the same kind.
Persistence errors raised by SQLAlchemy are never wrapped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docflow_engine.models.document import TransitionErrorKind


class DocflowError(Exception):
    """Base class for all errors raised by the engine."""


class MissingTenantContextError(DocflowError):
    """Raised when no tenant scope can be resolved for an operation."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"Tenant context is required for '{operation}'")
        self.operation = operation


class DocumentNotFoundError(DocflowError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document '{document_id}' not found")
        self.document_id = document_id


class CounterAlreadyExistsError(DocflowError):
    """Raised when an explicit create targets a key that already has a live counter."""

    def __init__(self, document_type_id: str, series: str, year: int | None) -> None:
        super().__init__(
            f"A counter already exists for document type {document_type_id}, series '{series}', year {year}"
        )
        self.document_type_id = document_type_id
        self.series = series
        self.year = year


class TransitionRejectedError(DocflowError):
    """A status change failed business-rule validation.

    Callers branch on :attr:`kind` to render a specific message; it is the
    same value the dry-run validation returns.
    """

    def __init__(self, kind: TransitionErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class ConcurrentModificationError(DocflowError):
    """The document changed underneath a status change (stale version)."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document '{document_id}' was modified concurrently; reload and retry")
        self.document_id = document_id


class AppendOnlyViolationError(DocflowError):
    """An UPDATE or DELETE was attempted on an append-only table."""

    def __init__(self, table_name: str, operation: str) -> None:
        super().__init__(f"Table '{table_name}' is append-only; {operation} is not permitted")
        self.table_name = table_name
        self.operation = operation
