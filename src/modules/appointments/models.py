"""Appointment ORM model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base
from src.shared.enums import AppointmentState, enum_values
from src.shared.models import OrganizationScopedMixin, TimestampMixin
from src.shared.ulid import generate_ulid


class Appointment(Base, OrganizationScopedMixin, TimestampMixin):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_professional_start", "organization_id", "professional_id", "scheduled_at"),
        CheckConstraint("duration_minutes > 0", name="ck_appointments_duration"),
        CheckConstraint("ends_at > scheduled_at", name="ck_appointments_time_order"),
        CheckConstraint("price IS NULL OR price >= 0", name="ck_appointments_price"),
        CheckConstraint("credits_used IS NULL OR credits_used > 0", name="ck_appointments_credits"),
    )

    appointment_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    professional_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.user_id", ondelete="RESTRICT"),
        nullable=False,
    )
    client_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.user_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("students.student_id", ondelete="SET NULL"),
    )
    state: Mapped[AppointmentState] = mapped_column(
        Enum(
            AppointmentState,
            values_callable=enum_values,
            validate_strings=True,
            name="appointmentstate",
        ),
        default=AppointmentState.DRAFT,
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    uses_credits: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    credits_used: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    pre_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.user_id", ondelete="SET NULL"),
    )
