"""Schedule ORM models."""

from __future__ import annotations

from datetime import date, time

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Integer, String, Time, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base
from src.shared.models import OrganizationScopedMixin, TimestampMixin
from src.shared.ulid import generate_ulid


class AvailabilityRule(Base, OrganizationScopedMixin, TimestampMixin):
    __tablename__ = "availability_rules"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "professional_id",
            "day_of_week",
            "start_time",
            name="uq_availability_rule_start",
        ),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_rules_weekday"),
        CheckConstraint("end_time > start_time", name="ck_availability_rules_time_order"),
    )

    rule_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    professional_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("professionals.professional_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def overlaps(self, other: "AvailabilityRule") -> bool:
        if other.day_of_week != self.day_of_week or not (self.active and other.active):
            return False
        return self.start_time < other.end_time and other.start_time < self.end_time


class TimeSlot(Base, OrganizationScopedMixin, TimestampMixin):
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "professional_id",
            "date",
            "start_time",
            name="uq_time_slot_start",
        ),
        CheckConstraint("end_time > start_time", name="ck_time_slots_time_order"),
    )

    slot_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    professional_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("professionals.professional_id", ondelete="CASCADE"),
        nullable=False,
    )
    slot_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    appointment_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("appointments.appointment_id", ondelete="SET NULL"),
    )
    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
