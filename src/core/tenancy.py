"""Tenant context threaded explicitly through every core operation.

There is no process-wide "current tenant". Callers build a ``TenantContext``
from the organization id resolved upstream plus the acting user, and every
query goes through ``TenantContext.scoped`` so it is filtered by
``organization_id``. Trusted maintenance code that needs to look across
organizations must open ``without_tenant`` and pass the resulting access token
to the unscoped helpers. Request handling binds its tenant to the running task
with ``bind_tenant`` so unscoped access cannot be opened from that path.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import NotFoundError, TenantMismatch, ValidationError
from src.core.logging import build_log_context

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")

_bound_tenant: ContextVar["TenantContext | None"] = ContextVar("bound_tenant", default=None)


class TenantMember(Protocol):
    user_id: str
    organization_id: str


@dataclass(frozen=True)
class TenantContext:
    organization_id: str
    actor: TenantMember

    def __post_init__(self) -> None:
        if not self.organization_id:
            raise ValidationError("organization_id", "tenant context is required")
        self.ensure_actor()

    def ensure_actor(self) -> None:
        """Fail closed when the actor does not belong to this tenant."""
        if self.actor is None or self.actor.organization_id != self.organization_id:
            logger.warning(
                "tenant mismatch",
                extra=build_log_context(
                    org_id=self.organization_id,
                    user_id=getattr(self.actor, "user_id", None),
                ),
            )
            raise TenantMismatch()

    def scoped(self, stmt: Select, *models: Any) -> Select:
        """Filter ``stmt`` by this tenant for every given model."""
        if not models:
            raise TypeError("scoped() needs at least one model to filter on")
        for model in models:
            column = getattr(model, "organization_id", None)
            if column is None:
                raise TypeError(f"{model!r} is not organization-scoped")
            stmt = stmt.where(column == self.organization_id)
        return stmt

    def owns(self, row: Any) -> bool:
        return row is not None and getattr(row, "organization_id", None) == self.organization_id

    def ensure_owned(self, row: RowT | None, resource: str) -> RowT:
        """Return ``row`` if it belongs to this tenant, otherwise report it as missing."""
        if not self.owns(row):
            raise NotFoundError(resource)
        return row

    def stamp(self, row: RowT) -> RowT:
        """Set the organization on a new row, rejecting rows tagged for another tenant."""
        current = getattr(row, "organization_id", None)
        if current is not None and current != self.organization_id:
            raise TenantMismatch()
        row.organization_id = self.organization_id
        return row


def bound_tenant() -> TenantContext | None:
    return _bound_tenant.get()


@contextmanager
def bind_tenant(tenant: TenantContext) -> Iterator[TenantContext]:
    """Mark ``tenant`` as the one serving the current task until the block exits."""
    previous = _bound_tenant.get()
    _bound_tenant.set(tenant)
    try:
        yield tenant
    finally:
        _bound_tenant.set(previous)


@dataclass
class UnscopedAccess:
    """Capability handed out by ``without_tenant``. Only valid inside the block."""

    reason: str
    active: bool = field(default=True)

    def check(self) -> None:
        if not self.active:
            raise RuntimeError("unscoped access used outside of without_tenant()")


@contextmanager
def without_tenant(reason: str) -> Iterator[UnscopedAccess]:
    """Open a trusted maintenance block that may read across organizations.

    Refuses to open while a tenant is bound to the current task.
    """
    if not reason:
        raise ValueError("a reason is required for unscoped access")
    bound = _bound_tenant.get()
    if bound is not None:
        raise RuntimeError(f"unscoped access refused while tenant {bound.organization_id} is bound")
    logger.info("unscoped access opened: %s", reason)
    access = UnscopedAccess(reason=reason)
    try:
        yield access
    finally:
        access.active = False


async def count_by_organization(db: AsyncSession, model: Any, access: UnscopedAccess) -> dict[str, int]:
    """Aggregate row counts per organization for a tenant-owned model."""
    access.check()
    stmt = select(model.organization_id, func.count()).group_by(model.organization_id)
    result = await db.execute(stmt)
    return {organization_id: count for organization_id, count in result.all()}
