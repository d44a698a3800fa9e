"""Domain models for the docflow engine."""

from docflow_engine.models.counter import (
    MAX_PADDING_LENGTH,
    MIN_PADDING_LENGTH,
    Allocation,
    CounterCreate,
    CounterSnapshot,
    CounterUpdate,
)
from docflow_engine.models.document import (
    DocumentRowSnapshot,
    DocumentSnapshot,
    DocumentStatus,
    StatusHistoryRecord,
    TransitionErrorKind,
    TransitionValidation,
)

__all__ = [
    "MAX_PADDING_LENGTH",
    "MIN_PADDING_LENGTH",
    "Allocation",
    "CounterCreate",
    "CounterSnapshot",
    "CounterUpdate",
    "DocumentRowSnapshot",
    "DocumentSnapshot",
    "DocumentStatus",
    "StatusHistoryRecord",
    "TransitionErrorKind",
    "TransitionValidation",
]
