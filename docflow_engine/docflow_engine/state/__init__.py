"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from docflow_engine.state.database import get_engine, get_session
from docflow_engine.state.repository import (
    AuditRepository,
    CounterRepository,
    DocumentRepository,
    StatusHistoryRepository,
)

__all__ = [
    "AuditRepository",
    "CounterRepository",
    "DocumentRepository",
    "StatusHistoryRepository",
    "get_engine",
    "get_session",
]
