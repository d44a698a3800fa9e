"""Change-tracking sink.

Services report every successful mutation here after their own unit of work
has committed.  The default sink persists to the append-only ``audit_log``
table in a separate transaction; a failure to record is logged and never
undoes or fails the business operation.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncEngine

from docflow_engine.state.database import get_session
from docflow_engine.state.repository import AuditRepository

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Action constants
# ---------------------------------------------------------------------------


class AuditAction:
    """Well-known audit action identifiers."""

    COUNTER_CREATED = "COUNTER_CREATED"
    COUNTER_UPDATED = "COUNTER_UPDATED"
    COUNTER_DELETED = "COUNTER_DELETED"
    NUMBER_ALLOCATED = "NUMBER_ALLOCATED"
    DOCUMENT_STATUS_CHANGED = "DOCUMENT_STATUS_CHANGED"


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


@runtime_checkable
class ChangeTrackingSink(Protocol):
    async def record(
        self,
        *,
        tenant_id: str,
        actor: str,
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


class NullSink:
    """Discards every record."""

    async def record(self, **kwargs: Any) -> None:
        return None


class AuditLogSink:
    """Writes records to the ``audit_log`` table through :class:`AuditRepository`."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def record(
        self,
        *,
        tenant_id: str,
        actor: str,
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            async with get_session(self._engine) as session:
                await AuditRepository(session, tenant_id=tenant_id).log(
                    actor=actor,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    metadata=metadata,
                )
        except Exception:
            logger.exception(
                "Failed to record audit entry action=%s entity=%s/%s tenant=%s",
                action,
                entity_type,
                entity_id,
                tenant_id,
            )
