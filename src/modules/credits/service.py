"""Credit operations exposed to the API: balance lookup, purchases and manual movements."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import unit_of_work
from src.core.exceptions import NotFoundError
from src.core.tenancy import TenantContext
from src.modules.authz.policy import ensure_authorized, policy_scope
from src.modules.credits.ledger import CreditLedger
from src.modules.credits.models import CreditBalance, CreditTransaction
from src.shared.clock import utcnow
from src.shared.enums import ResourceType


class CreditService:
    def __init__(self, db: AsyncSession, tenant: TenantContext, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.tenant = tenant
        self.actor = tenant.actor
        self.ledger = CreditLedger(db, tenant, clock)

    async def get_balance(self, user_id: str) -> CreditBalance:
        try:
            balance = await self.ledger.balance_for(user_id)
        except NotFoundError:
            # Members without a ledger row simply have nothing yet.
            await self.ledger.ensure_user(user_id)
            balance =self.tenant.stamp(CreditBalance(user_id=user_id, balance=0, lifetime_purchased=0, lifetime_used=0))
        ensure_authorized(self.actor, "show", balance)
        return balance

    async def list_balances(self) -> list[CreditBalance]:
        ensure_authorized(self.actor, "index", ResourceType.BILLING)
        result = await self.db.execute(
            self.tenant.scoped(
                select(CreditBalance).where(policy_scope(self.actor, ResourceType.BILLING)),
                CreditBalance,
            ).order_by(CreditBalance.created_at)
        )
        return list(result.scalars().all())

    async def purchase_credits(self, user_id: str, amount: int, metadata: dict[str, Any] | None = None) -> CreditTransaction:
        return await self._move(user_id, "create", self.ledger.purchase, amount, metadata)

    async def debit_credits(
        self, user_id: str, amount: int, appointment_id: str | None = None, metadata: dict[str, Any] | None = None
    ) -> CreditTransaction:
        async def debit(balance, value, details):
            return await self.ledger.debit(balance, value, appointment_id, details)

        return await self._move(user_id, "debit", debit, amount, metadata)

    async def refund_credits(
        self, user_id: str, amount: int, appointment_id: str | None = None, metadata: dict[str, Any] | None = None
    ) -> CreditTransaction:
        async def refund(balance, value, details):
            return await self.ledger.refund(balance, value, appointment_id, details)

        return await self._move(user_id, "refund", refund, amount, metadata)

    async def adjust_credits(self, user_id: str, amount: int, metadata: dict[str, Any] | None = None) -> CreditTransaction:
        return await self._move(user_id, "adjust", self.ledger.adjust, amount, metadata)

    async def transactions_for(self, user_id: str) -> list[CreditTransaction]:
        balance = await self.get_balance(user_id)
        if balance.credit_balance_id is None:
            return []
        return await self.ledger.transactions(balance)

    async def _move(self, user_id, action, operation, amount, metadata) -> CreditTransaction:
        async with unit_of_work(self.db):
            balance = await self.ledger.balance_for(user_id, lock=True, create=True)
            ensure_authorized(self.actor, action, balance)
            transaction = await operation(balance, amount, {"actor_id": self.actor.user_id, **(metadata or {})})
        return transaction
