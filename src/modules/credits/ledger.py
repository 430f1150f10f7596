"""Append-only credit ledger.

Each balance mutation writes exactly one ``CreditTransaction`` in the same
flush, so a balance always equals the sum of its completed transactions. The
ledger never commits: callers own the transaction boundary and lock the
balance row (``balance_for(..., lock=True)``) before evaluating guards.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import InsufficientCredits, NotFoundError, ValidationError
from src.core.logging import build_log_context
from src.core.tenancy import TenantContext
from src.modules.appointments.models import Appointment
from src.modules.credits.models import CreditBalance, CreditTransaction
from src.modules.users.models import User
from src.shared.clock import utcnow
from src.shared.enums import TransactionStatus, TransactionType

logger = logging.getLogger(__name__)

APPOINTMENT_CHARGE_TYPES = (TransactionType.APPOINTMENT_DEBIT, TransactionType.CANCELLATION_REFUND)


class CreditLedger:
    def __init__(self, db: AsyncSession, tenant: TenantContext, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.tenant = tenant
        self.clock = clock

    async def balance_for(self, user_id: str, *, lock: bool = False, create: bool = False) -> CreditBalance:
        stmt = self.tenant.scoped(select(CreditBalance).where(CreditBalance.user_id == user_id), CreditBalance)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        balance = result.scalar_one_or_none()
        if balance is not None:
            return balance
        if not create:
            raise NotFoundError("Credit balance")

        await self.ensure_user(user_id)
        balance = self.tenant.stamp(CreditBalance(user_id=user_id, balance=0, lifetime_purchased=0, lifetime_used=0))
        self.db.add(balance)
        await self.db.flush()
        return balance

    async def ensure_user(self, user_id: str) -> None:
        result = await self.db.execute(
            self.tenant.scoped(select(User.user_id).where(User.user_id == user_id), User)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("User")

    async def add(
        self,
        balance: CreditBalance,
        amount: int,
        transaction_type: TransactionType,
        metadata: dict[str, Any] | None = None,
        appointment_id: str | None = None,
    ) -> CreditTransaction:
        """Apply a signed movement and record it as a completed transaction."""
        self.tenant.ensure_owned(balance, "Credit balance")
        if amount == 0:
            raise ValidationError("amount", "must not be zero")
        if appointment_id is not None:
            await self._ensure_client_appointment(balance, appointment_id)
        new_balance = balance.balance + amount
        if new_balance < 0:
            raise InsufficientCredits(available=balance.balance, requested=-amount)

        transaction = self.tenant.stamp(
            CreditTransaction(
                credit_balance_id=balance.credit_balance_id,
                user_id=balance.user_id,
                appointment_id=appointment_id,
                amount=amount,
                transaction_type=TransactionType(transaction_type),
                status=TransactionStatus.COMPLETED,
                processed_at=self.clock(),
                details=dict(metadata or {}),
            )
        )
        balance.balance = new_balance
        if amount > 0:
            balance.lifetime_purchased += amount
        else:
            balance.lifetime_used += -amount
        self.db.add(transaction)
        await self.db.flush()

        logger.info(
            "ledger %s %+d -> %d",
            transaction.transaction_type.value,
            amount,
            balance.balance,
            extra=build_log_context(org_id=balance.organization_id, user_id=balance.user_id, appointment_id=appointment_id),
        )
        return transaction

    async def debit(
        self,
        balance: CreditBalance,
        amount: int,
        appointment_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreditTransaction:
        _require_positive(amount)
        if balance.balance < amount:
            raise InsufficientCredits(available=balance.balance, requested=amount)
        return await self.add(balance, -amount, TransactionType.APPOINTMENT_DEBIT, metadata, appointment_id)

    async def refund(
        self,
        balance: CreditBalance,
        amount: int,
        appointment_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreditTransaction:
        _require_positive(amount)
        return await self.add(balance, amount, TransactionType.CANCELLATION_REFUND, metadata, appointment_id)

    async def purchase(self, balance: CreditBalance, amount: int, metadata: dict[str, Any] | None = None) -> CreditTransaction:
        _require_positive(amount)
        return await self.add(balance, amount, TransactionType.PURCHASE, metadata)

    async def adjust(self, balance: CreditBalance, amount: int, metadata: dict[str, Any] | None = None) -> CreditTransaction:
        return await self.add(balance, amount, TransactionType.ADMIN_ADJUSTMENT, metadata)

    async def net_charged_for_appointment(self, appointment_id: str) -> int:
        """Credits debited for an appointment and not yet refunded."""
        stmt = self.tenant.scoped(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.appointment_id == appointment_id,
                CreditTransaction.status == TransactionStatus.COMPLETED,
                CreditTransaction.transaction_type.in_(APPOINTMENT_CHARGE_TYPES),
            ),
            CreditTransaction,
        )
        result = await self.db.execute(stmt)
        return max(0, -int(result.scalar_one()))

    async def reconstructed_balance(self, balance: CreditBalance) -> int:
        stmt = self.tenant.scoped(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.credit_balance_id == balance.credit_balance_id,
                CreditTransaction.status == TransactionStatus.COMPLETED,
            ),
            CreditTransaction,
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def transactions(self, balance: CreditBalance) -> list[CreditTransaction]:
        stmt = self.tenant.scoped(
            select(CreditTransaction)
            .where(CreditTransaction.credit_balance_id == balance.credit_balance_id)
            .order_by(CreditTransaction.created_at, CreditTransaction.transaction_id),
            CreditTransaction,
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _ensure_client_appointment(self, balance: CreditBalance, appointment_id: str) -> None:
        """Only link movements to an appointment of this tenant booked for the balance owner."""
        result = await self.db.execute(
            self.tenant.scoped(
                select(Appointment.client_id).where(Appointment.appointment_id == appointment_id),
                Appointment,
            )
        )
        client_id = result.scalar_one_or_none()
        if client_id is None:
            raise NotFoundError("Appointment")
        if client_id != balance.user_id:
            raise ValidationError("appointment_id", "appointment belongs to another client")


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise ValidationError("amount", "must be positive")
