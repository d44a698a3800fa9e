"""Document status transition table and per-target business rules.

Pure decision functions over a :class:`DocumentSnapshot`; nothing here touches
persistence.  Validation runs in two stages:

1. the transition table must allow ``current -> target``;
2. the validator registered for the target status must accept the snapshot.

Closed and Cancelled are terminal: their table rows are empty.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType

from docflow_engine.models.document import (
    DocumentSnapshot,
    DocumentStatus,
    TransitionErrorKind,
    TransitionValidation,
)

# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

ALLOWED_TRANSITIONS: Mapping[DocumentStatus, frozenset[DocumentStatus]] = MappingProxyType(
    {
        DocumentStatus.DRAFT: frozenset({DocumentStatus.OPEN, DocumentStatus.CANCELLED}),
        DocumentStatus.OPEN: frozenset({DocumentStatus.CLOSED, DocumentStatus.DRAFT, DocumentStatus.CANCELLED}),
        DocumentStatus.CLOSED: frozenset(),
        DocumentStatus.CANCELLED: frozenset(),
    }
)

TERMINAL_STATUSES = frozenset({DocumentStatus.CLOSED, DocumentStatus.CANCELLED})


def can_transition(from_status: DocumentStatus, to_status: DocumentStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def is_terminal(status: DocumentStatus) -> bool:
    """True for statuses that admit no further change."""
    return status in TERMINAL_STATUSES


def available_transitions(from_status: DocumentStatus) -> frozenset[DocumentStatus]:
    return ALLOWED_TRANSITIONS.get(from_status, frozenset())


# ---------------------------------------------------------------------------
# Business rules per target status
# ---------------------------------------------------------------------------


def _validate_open(document: DocumentSnapshot) -> TransitionValidation:
    if not document.business_party_id:
        return TransitionValidation.fail(
            "Cannot open the document: select a customer or supplier first",
            TransitionErrorKind.MISSING_BUSINESS_PARTY,
        )
    if not document.document_type_id:
        return TransitionValidation.fail(
            "Cannot open the document: select a document type",
            TransitionErrorKind.MISSING_DOCUMENT_TYPE,
        )
    return TransitionValidation.success()


def _validate_closed(document: DocumentSnapshot) -> TransitionValidation:
    if not document.rows:
        return TransitionValidation.fail(
            "Cannot close the document: it must contain at least one row",
            TransitionErrorKind.NO_ROWS,
        )
    if document.total_gross_amount <= 0:
        return TransitionValidation.fail(
            "Cannot close the document: the total must be greater than zero",
            TransitionErrorKind.ZERO_TOTAL,
        )
    if not document.business_party_id:
        return TransitionValidation.fail(
            "Cannot close the document: select a customer or supplier",
            TransitionErrorKind.MISSING_BUSINESS_PARTY,
        )
    if not document.number or not document.number.strip():
        return TransitionValidation.fail(
            "Cannot close the document: assign a number to the document",
            TransitionErrorKind.MISSING_NUMBER,
        )
    return TransitionValidation.success()


def _validate_cancelled(document: DocumentSnapshot) -> TransitionValidation:
    # Also reached by direct callers that skip the table check.
    if document.status is DocumentStatus.CLOSED:
        return TransitionValidation.fail(
            "Cannot cancel a closed document. Create a credit note.",
            TransitionErrorKind.CANNOT_CANCEL_CLOSED,
        )
    return TransitionValidation.success()


def _validate_draft(document: DocumentSnapshot) -> TransitionValidation:
    if document.status is not DocumentStatus.OPEN:
        return TransitionValidation.fail(
            "Only an open document can be returned to draft",
            TransitionErrorKind.INVALID_TRANSITION,
        )
    return TransitionValidation.success()


_TARGET_VALIDATORS: Mapping[DocumentStatus, Callable[[DocumentSnapshot], TransitionValidation]] = MappingProxyType(
    {
        DocumentStatus.OPEN: _validate_open,
        DocumentStatus.CLOSED: _validate_closed,
        DocumentStatus.CANCELLED: _validate_cancelled,
        DocumentStatus.DRAFT: _validate_draft,
    }
)


def validate_transition(document: DocumentSnapshot, target: DocumentStatus) -> TransitionValidation:
    """Decide whether *document* may move to *target*.

    Returns a failed :class:`TransitionValidation` carrying a human-readable
    message and a stable :class:`TransitionErrorKind`; never raises for a
    rejected transition.
    """
    if not can_transition(document.status, target):
        return TransitionValidation.fail(
            f"Transition not allowed from {document.status.value} to {target.value}",
            TransitionErrorKind.INVALID_TRANSITION,
        )

    validator = _TARGET_VALIDATORS.get(target)
    if validator is None:
        return TransitionValidation.success()
    return validator(document)


def confirmation_message(from_status: DocumentStatus, to_status: DocumentStatus) -> str:
    """Prompt shown to a user before executing ``from_status -> to_status``."""
    if from_status is DocumentStatus.DRAFT and to_status is DocumentStatus.OPEN:
        return "Open the document? It will be ready for processing."
    if from_status is DocumentStatus.OPEN and to_status is DocumentStatus.CLOSED:
        return "Close the document? This action is IRREVERSIBLE and the document will become immutable."
    if from_status is DocumentStatus.OPEN and to_status is DocumentStatus.DRAFT:
        return "Return the document to draft? You can continue editing it."
    if to_status is DocumentStatus.CANCELLED:
        return "Cancel the document? This action is IRREVERSIBLE."
    return f"Confirm the transition from {from_status.value} to {to_status.value}?"
