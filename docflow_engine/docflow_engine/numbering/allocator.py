"""Gapless per-key document number allocation and counter configuration.

A numbering stream is identified by ``(tenant, document type, series)`` and,
when year-scoped, the year.  Each allocation is one unit of work:

1. take the per-key exclusive section (an in-process ``asyncio.Lock`` and,
   on PostgreSQL, a transaction-scoped advisory lock);
2. locate the live counter (current year first, else the latest earlier or
   year-less row; a row configured for a later year is never used);
3. create it lazily, or reset it when the year rolled over;
4. increment by exactly one, flush, format, commit.

The lock is held until the commit finishes, so N concurrent callers on one
key observe the values 1..N.  Any error or cancellation rolls the whole unit
back; nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from docflow_engine.audit import AuditAction, AuditLogSink, ChangeTrackingSink
from docflow_engine.config import Settings
from docflow_engine.context import TenantResolver
from docflow_engine.errors import CounterAlreadyExistsError, MissingTenantContextError
from docflow_engine.models.counter import Allocation, CounterCreate, CounterSnapshot, CounterUpdate
from docflow_engine.numbering.formatter import format_document_number
from docflow_engine.state.database import get_session
from docflow_engine.state.repository import CounterRepository, acquire_advisory_xact_lock
from docflow_engine.state.tables import CounterTable

logger = logging.getLogger(__name__)

_ENTITY_TYPE = "document_counter"

# Configuration fields an update may explicitly clear.
_CLEARABLE_FIELDS = frozenset({"prefix", "format_pattern", "notes"})

# One lock per live key; entries vanish once no coroutine holds or awaits them.
_key_locks: weakref.WeakValueDictionary[tuple[str, str, str], asyncio.Lock] = weakref.WeakValueDictionary()


def key_lock(tenant_id: str, document_type_id: str, series: str) -> asyncio.Lock:
    """Return the process-wide lock guarding one numbering stream."""
    key = (tenant_id, document_type_id, series)
    lock = _key_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _key_locks[key] = lock
    return lock


def _utc_now() -> datetime:
    return datetime.now(UTC)


class CounterAllocator:
    """Allocates document numbers and manages counter configuration.

    Parameters
    ----------
    engine:
        Engine for the state store.  Each public call runs in its own session.
    tenant_resolver:
        Supplies the tenant scope; every operation fails without one.
    settings:
        Defaults for counters created on first use.
    audit_sink:
        Receives a record after each committed mutation.  Defaults to the
        ``audit_log`` table on the same engine.
    clock:
        Returns the current UTC time; only its year is used.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        tenant_resolver: TenantResolver,
        *,
        settings: Settings | None = None,
        audit_sink: ChangeTrackingSink | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._engine = engine
        self._tenants = tenant_resolver
        self._settings = settings or Settings()
        self._audit = audit_sink or AuditLogSink(engine)
        self._clock = clock

    def _require_tenant(self, operation: str) -> str:
        tenant_id = self._tenants.current_tenant_id()
        if not tenant_id:
            raise MissingTenantContextError(operation)
        return tenant_id

    def _actor(self, acting_user: str | None) -> str:
        return acting_user or self._settings.default_actor

    async def _track(self, tenant_id: str, actor: str, action: str, entity_id: str, **metadata: Any) -> None:
        await self._audit.record(
            tenant_id=tenant_id,
            actor=actor,
            action=action,
            entity_type=_ENTITY_TYPE,
            entity_id=entity_id,
            metadata=metadata or None,
        )

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    async def allocate(
        self,
        document_type_id: str,
        series: str = "",
        acting_user: str | None = None,
    ) -> str:
        """Allocate the next number for the stream and return it formatted."""
        allocation = await self.allocate_value(document_type_id, series, acting_user)
        return allocation.number

    generate_document_number = allocate

    async def allocate_value(
        self,
        document_type_id: str,
        series: str = "",
        acting_user: str | None = None,
    ) -> Allocation:
        """Allocate the next number, returning both the raw value and its rendering."""
        tenant_id = self._require_tenant("allocate")
        actor = self._actor(acting_user)
        current_year = self._clock().year

        async with key_lock(tenant_id, document_type_id, series):
            try:
                async with get_session(self._engine) as session:
                    await acquire_advisory_xact_lock(
                        session, "document_counter", tenant_id, document_type_id, series
                    )
                    allocation = await self._advance(
                        CounterRepository(session, tenant_id),
                        document_type_id,
                        series,
                        current_year,
                        actor,
                    )
            except Exception:
                logger.exception(
                    "Error generating document number for type %s series '%s'",
                    document_type_id,
                    series,
                    extra={"tenant_id": tenant_id},
                )
                raise

        logger.info(
            "Generated document number %s for type %s series '%s'",
            allocation.number,
            document_type_id,
            series,
            extra={"tenant_id": tenant_id, "counter_id": allocation.counter_id, "actor": actor},
        )
        await self._track(
            tenant_id,
            actor,
            AuditAction.NUMBER_ALLOCATED,
            allocation.counter_id,
            number=allocation.number,
            value=allocation.value,
            year=allocation.year,
        )
        return allocation

    async def _advance(
        self,
        repo: CounterRepository,
        document_type_id: str,
        series: str,
        current_year: int,
        actor: str,
    ) -> Allocation:
        counter = await repo.find_for_allocation(document_type_id, series, current_year)

        if counter is None:
            counter = await repo.create(
                document_type_id=document_type_id,
                series=series,
                year=current_year,
                created_by=actor,
                padding_length=self._settings.default_padding_length,
                reset_on_year_change=self._settings.default_reset_on_year_change,
            )
            logger.info(
                "Created counter for type %s series '%s' year %d",
                document_type_id,
                series,
                current_year,
                extra={"counter_id": counter.id},
            )
        elif counter.reset_on_year_change and counter.year != current_year:
            logger.info(
                "Resetting counter %s for new year %s -> %d",
                counter.id,
                counter.year,
                current_year,
            )
            counter.current_value = 0
            counter.year = current_year

        counter.current_value += 1
        counter.modified_by = actor
        counter.modified_at = self._clock()
        await repo.save(counter)

        number = format_document_number(CounterSnapshot.model_validate(counter))
        return Allocation(
            counter_id=counter.id,
            value=counter.current_value,
            year=counter.year,
            number=number,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def create(self, data: CounterCreate, acting_user: str | None = None) -> CounterTable:
        """Create a counter explicitly.

        Raises
        ------
        CounterAlreadyExistsError
            If a live counter already exists for the same key.
        """
        tenant_id = self._require_tenant("create_counter")
        actor = self._actor(acting_user)

        async with key_lock(tenant_id, data.document_type_id, data.series):
            async with get_session(self._engine) as session:
                repo = CounterRepository(session, tenant_id)
                if await repo.get_by_key(data.document_type_id, data.series, data.year) is not None:
                    raise CounterAlreadyExistsError(data.document_type_id, data.series, data.year)
                counter = await repo.create(
                    document_type_id=data.document_type_id,
                    series=data.series,
                    year=data.year,
                    created_by=actor,
                    current_value=data.current_value,
                    prefix=data.prefix,
                    padding_length=data.padding_length,
                    format_pattern=data.format_pattern,
                    reset_on_year_change=data.reset_on_year_change,
                    notes=data.notes,
                )

        logger.info(
            "Document counter %s created by %s",
            counter.id,
            actor,
            extra={"tenant_id": tenant_id, "counter_id": counter.id},
        )
        await self._track(
            tenant_id,
            actor,
            AuditAction.COUNTER_CREATED,
            counter.id,
            document_type_id=counter.document_type_id,
            series=counter.series,
            year=counter.year,
        )
        return counter

    async def update(
        self,
        counter_id: str,
        data: CounterUpdate,
        acting_user: str | None = None,
    ) -> CounterTable | None:
        """Change configuration fields; ``current_value`` is never touched.

        Returns ``None`` when the counter does not exist or was deleted.
        """
        tenant_id = self._require_tenant("update_counter")
        actor = self._actor(acting_user)
        changes = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None or field in _CLEARABLE_FIELDS
        }

        async with get_session(self._engine) as session:
            counter = await CounterRepository(session, tenant_id).update(counter_id, changes, actor)

        if counter is None:
            logger.warning("Document counter %s not found for update", counter_id, extra={"tenant_id": tenant_id})
            return None

        logger.info("Document counter %s updated by %s", counter_id, actor, extra={"tenant_id": tenant_id})
        await self._track(tenant_id, actor, AuditAction.COUNTER_UPDATED, counter_id, fields=sorted(changes))
        return counter

    async def soft_delete(self, counter_id: str, acting_user: str | None = None) -> bool:
        tenant_id = self._require_tenant("delete_counter")
        actor = self._actor(acting_user)

        async with get_session(self._engine) as session:
            deleted = await CounterRepository(session, tenant_id).soft_delete(counter_id, actor)

        if not deleted:
            logger.warning("Document counter %s not found for deletion", counter_id, extra={"tenant_id": tenant_id})
            return False

        logger.info("Document counter %s deleted by %s", counter_id, actor, extra={"tenant_id": tenant_id})
        await self._track(tenant_id, actor, AuditAction.COUNTER_DELETED, counter_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_by_id(self, counter_id: str) -> CounterTable | None:
        tenant_id = self._require_tenant("get_counter")
        async with get_session(self._engine) as session:
            return await CounterRepository(session, tenant_id).get_by_id(counter_id)

    async def get_by_key(
        self,
        document_type_id: str,
        series: str = "",
        year: int | None = None,
    ) -> CounterTable | None:
        tenant_id = self._require_tenant("get_counter")
        async with get_session(self._engine) as session:
            return await CounterRepository(session, tenant_id).get_by_key(document_type_id, series, year)

    async def get_all(self) -> list[CounterTable]:
        tenant_id = self._require_tenant("list_counters")
        async with get_session(self._engine) as session:
            return await CounterRepository(session, tenant_id).list_all()

    async def get_by_document_type(self, document_type_id: str) -> list[CounterTable]:
        tenant_id = self._require_tenant("list_counters")
        async with get_session(self._engine) as session:
            return await CounterRepository(session, tenant_id).list_for_document_type(document_type_id)
