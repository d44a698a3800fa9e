"""Execute validated document status changes and record their history.

A status change is one unit of work: the document row is loaded with its
rows under a row lock, validated by :mod:`docflow_engine.lifecycle.rules`,
mutated, and one history entry is appended.  Both writes commit together or
not at all.  The ``version`` column guards against a concurrent writer that
slipped in between load and flush.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm.exc import StaleDataError

from docflow_engine.audit import AuditAction, AuditLogSink, ChangeTrackingSink
from docflow_engine.config import Settings
from docflow_engine.context import ActorAccessor, ContextVarActorAccessor, TenantResolver
from docflow_engine.errors import (
    ConcurrentModificationError,
    DocflowError,
    DocumentNotFoundError,
    MissingTenantContextError,
    TransitionRejectedError,
)
from docflow_engine.lifecycle import rules
from docflow_engine.models.document import (
    DocumentRowSnapshot,
    DocumentSnapshot,
    DocumentStatus,
    StatusHistoryRecord,
    TransitionErrorKind,
    TransitionValidation,
)
from docflow_engine.state.database import get_session
from docflow_engine.state.repository import DocumentRepository, StatusHistoryRepository
from docflow_engine.state.tables import DocumentTable

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def to_snapshot(row: DocumentTable) -> DocumentSnapshot:
    """Detach a loaded document (rows included) into an immutable snapshot."""
    return DocumentSnapshot(
        id=row.id,
        status=DocumentStatus(row.status),
        number=row.number,
        series=row.series,
        business_party_id=row.business_party_id,
        document_type_id=row.document_type_id,
        rows=tuple(DocumentRowSnapshot.model_validate(line) for line in row.rows if not line.is_deleted),
        closed_at=row.closed_at,
        version=row.version,
    )


class LifecycleOrchestrator:
    """Status changes, transition introspection and history for documents."""

    def __init__(
        self,
        engine: AsyncEngine,
        tenant_resolver: TenantResolver,
        actor_accessor: ActorAccessor | None = None,
        *,
        settings: Settings | None = None,
        audit_sink: ChangeTrackingSink | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        settings = settings or Settings()
        self._engine = engine
        self._tenants = tenant_resolver
        self._actors = actor_accessor or ContextVarActorAccessor(settings.default_actor)
        self._audit = audit_sink or AuditLogSink(engine)
        self._clock = clock

    def _require_tenant(self, operation: str) -> str:
        tenant_id = self._tenants.current_tenant_id()
        if not tenant_id:
            raise MissingTenantContextError(operation)
        return tenant_id

    async def change_status(
        self,
        document_id: str,
        new_status: DocumentStatus | str,
        reason: str | None = None,
        acting_user: str | None = None,
    ) -> DocumentSnapshot:
        """Move a document to *new_status* and append a history entry.

        Raises
        ------
        DocumentNotFoundError
            If no live document has this id in the current tenant.
        TransitionRejectedError
            If the table or a business rule forbids the change.
        ConcurrentModificationError
            If the document was updated by someone else meanwhile.
        """
        tenant_id = self._require_tenant("change_status")
        target = DocumentStatus(new_status)
        actor = self._actors.current_actor()
        user = acting_user or actor.user
        log_extra = {"tenant_id": tenant_id, "document_id": document_id, "actor": user}

        try:
            async with get_session(self._engine) as session:
                documents = DocumentRepository(session, tenant_id)

                row = await documents.get(document_id, with_rows=True, for_update=True)
                if row is None:
                    logger.warning("Document %s not found for status change", document_id, extra=log_extra)
                    raise DocumentNotFoundError(document_id)

                before = to_snapshot(row)
                validation = rules.validate_transition(before, target)
                if not validation.is_valid:
                    logger.warning(
                        "Status change %s -> %s rejected for document %s: %s",
                        before.status.value,
                        target.value,
                        document_id,
                        validation.message,
                        extra=log_extra,
                    )
                    raise TransitionRejectedError(validation.error_kind, validation.message)

                now = self._clock()
                row.status = target.value
                if target is DocumentStatus.CLOSED:
                    row.closed_at = now
                row.modified_by = user
                row.modified_at = now
                await documents.save(row)

                await StatusHistoryRepository(session, tenant_id).append(
                    document_id=document_id,
                    from_status=before.status.value,
                    to_status=target.value,
                    reason=reason,
                    changed_by=user,
                    changed_at=now,
                    ip_address=actor.ip_address,
                    user_agent=actor.user_agent,
                )
                after = to_snapshot(row)
        except StaleDataError as exc:
            logger.warning("Document %s changed concurrently; status change aborted", document_id, extra=log_extra)
            raise ConcurrentModificationError(document_id) from exc
        except DocflowError:
            raise
        except Exception:
            logger.exception("Error changing status of document %s", document_id, extra=log_extra)
            raise

        logger.info(
            "Document %s status changed from %s to %s by %s",
            document_id,
            before.status.value,
            target.value,
            user,
            extra=log_extra,
        )
        await self._audit.record(
            tenant_id=tenant_id,
            actor=user,
            action=AuditAction.DOCUMENT_STATUS_CHANGED,
            entity_type="document",
            entity_id=document_id,
            metadata={"from_status": before.status.value, "to_status": target.value, "reason": reason},
        )
        return after

    async def get_available_transitions(self, document_id: str) -> list[DocumentStatus]:
        """Statuses reachable from the document's current one; empty if not found."""
        tenant_id = self._require_tenant("get_available_transitions")
        async with get_session(self._engine) as session:
            status = await DocumentRepository(session, tenant_id).get_status(document_id)

        if status is None:
            return []
        allowed = rules.available_transitions(DocumentStatus(status))
        return [candidate for candidate in DocumentStatus if candidate in allowed]

    async def get_status_history(self, document_id: str) -> list[StatusHistoryRecord]:
        """History entries for the document, most recent first."""
        tenant_id = self._require_tenant("get_status_history")
        async with get_session(self._engine) as session:
            entries = await StatusHistoryRepository(session, tenant_id).list_for_document(document_id)
        return [StatusHistoryRecord.model_validate(entry) for entry in entries]

    async def validate_transition(
        self,
        document_id: str,
        new_status: DocumentStatus | str,
    ) -> TransitionValidation:
        """Dry run of :meth:`change_status`; never mutates anything."""
        tenant_id = self._require_tenant("validate_transition")
        target = DocumentStatus(new_status)
        async with get_session(self._engine) as session:
            row = await DocumentRepository(session, tenant_id).get(document_id, with_rows=True)
            snapshot = to_snapshot(row) if row is not None else None

        if snapshot is None:
            return TransitionValidation.fail("Document not found", TransitionErrorKind.INVALID_TRANSITION)
        return rules.validate_transition(snapshot, target)
