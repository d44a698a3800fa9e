"""Document status lifecycle: transition rules and their orchestration."""

from docflow_engine.lifecycle.orchestrator import LifecycleOrchestrator
from docflow_engine.lifecycle.rules import (
    ALLOWED_TRANSITIONS,
    available_transitions,
    can_transition,
    confirmation_message,
    is_terminal,
    validate_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "LifecycleOrchestrator",
    "available_transitions",
    "can_transition",
    "confirmation_message",
    "is_terminal",
    "validate_transition",
]
