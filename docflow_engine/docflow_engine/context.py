"""Ambient collaborators: tenant scope and acting user.

Both are narrow protocols so that a host application can plug in its own
request context.  The ``ContextVar`` implementations propagate through
``asyncio`` tasks the same way a request-scoped trace id does.
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

DEFAULT_ACTOR = "System"

# ---------------------------------------------------------------------------
# Tenant
# ---------------------------------------------------------------------------


@runtime_checkable
class TenantResolver(Protocol):
    def current_tenant_id(self) -> str | None:
        """Return the active tenant, or ``None`` outside any tenant scope."""
        ...


class StaticTenantResolver:
    """Always resolves to the same tenant.  Suitable for single-tenant hosts."""

    def __init__(self, tenant_id: str | None) -> None:
        self._tenant_id = tenant_id

    def current_tenant_id(self) -> str | None:
        return self._tenant_id


_tenant_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("docflow_tenant_id", default=None)


class ContextVarTenantResolver:
    """Reads the tenant bound by :func:`tenant_scope`."""

    def current_tenant_id(self) -> str | None:
        return _tenant_id_var.get()


@contextmanager
def tenant_scope(tenant_id: str) -> Iterator[None]:
    """Bind *tenant_id* for the duration of the block."""
    token = _tenant_id_var.set(tenant_id)
    try:
        yield
    finally:
        _tenant_id_var.reset(token)


# ---------------------------------------------------------------------------
# Actor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActorContext:
    """Who is acting, and from where."""

    user: str = DEFAULT_ACTOR
    ip_address: str | None = None
    user_agent: str | None = None


@runtime_checkable
class ActorAccessor(Protocol):
    def current_actor(self) -> ActorContext: ...


class StaticActorAccessor:
    def __init__(self, actor: ActorContext | None = None) -> None:
        self._actor = actor or ActorContext()

    def current_actor(self) -> ActorContext:
        return self._actor


_actor_var: contextvars.ContextVar[ActorContext | None] = contextvars.ContextVar("docflow_actor", default=None)


class ContextVarActorAccessor:
    """Reads the actor bound by :func:`actor_scope`, else *default_user*."""

    def __init__(self, default_user: str = DEFAULT_ACTOR) -> None:
        self._default = ActorContext(user=default_user)

    def current_actor(self) -> ActorContext:
        return _actor_var.get() or self._default


@contextmanager
def actor_scope(
    user: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> Iterator[ActorContext]:
    actor = ActorContext(user=user, ip_address=ip_address, user_agent=user_agent)
    token = _actor_var.set(actor)
    try:
        yield actor
    finally:
        _actor_var.reset(token)
