"""Credit balance and ledger ORM models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base
from src.shared.enums import TransactionStatus, TransactionType, enum_values
from src.shared.models import OrganizationScopedMixin, TimestampMixin
from src.shared.ulid import generate_ulid


class CreditBalance(Base, OrganizationScopedMixin, TimestampMixin):
    __tablename__ = "credit_balances"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_credit_balances_org_user"),
        CheckConstraint("balance >= 0", name="ck_credit_balances_balance"),
        CheckConstraint("lifetime_purchased >= 0", name="ck_credit_balances_purchased"),
        CheckConstraint("lifetime_used >= 0", name="ck_credit_balances_used"),
    )

    credit_balance_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_purchased: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class CreditTransaction(Base, OrganizationScopedMixin, TimestampMixin):
    __tablename__ = "credit_transactions"
    __table_args__ = (CheckConstraint("amount <> 0", name="ck_credit_transactions_amount"),)

    transaction_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    credit_balance_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("credit_balances.credit_balance_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    appointment_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("appointments.appointment_id", ondelete="RESTRICT"),
        index=True,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(
            TransactionType,
            values_callable=enum_values,
            validate_strings=True,
            name="transactiontype",
        ),
        nullable=False,
    )
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(
            TransactionStatus,
            values_callable=enum_values,
            validate_strings=True,
            name="transactionstatus",
        ),
        default=TransactionStatus.PENDING,
        nullable=False,
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)
