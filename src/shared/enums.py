"""Shared enumerations used across modules."""

from __future__ import annotations

from datetime import date
from enum import IntEnum, StrEnum
from typing import Iterable, TypeVar

EnumType = TypeVar("EnumType", bound=StrEnum)


def enum_values(enum_cls: Iterable[EnumType]) -> list[str]:
    """Return the .value for each enum member (used by SQLAlchemy)."""
    return [member.value for member in enum_cls]


class RoleKey(StrEnum):
    ADMIN = "admin"
    PROFESSIONAL = "professional"
    SECRETARY = "secretary"
    CLIENT = "client"


class ResourceType(StrEnum):
    ORGANIZATIONS = "organizations"
    USERS = "users"
    APPOINTMENTS = "appointments"
    PROFESSIONALS = "professionals"
    STUDENTS = "students"
    REPORTS = "reports"
    BILLING = "billing"


class AppointmentState(StrEnum):
    DRAFT = "draft"
    PRE_CONFIRMED = "pre_confirmed"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (AppointmentState.EXECUTED, AppointmentState.CANCELLED)


class AppointmentEvent(StrEnum):
    PRE_CONFIRM = "pre_confirm"
    CONFIRM = "confirm"
    EXECUTE = "execute"
    CANCEL = "cancel"


class TransactionType(StrEnum):
    PURCHASE = "purchase"
    APPOINTMENT_DEBIT = "appointment_debit"
    CANCELLATION_REFUND = "cancellation_refund"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class TransactionStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Weekday(IntEnum):
    """Day of week numbered from Sunday = 0, as stored on availability rules."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def from_date(cls, value: date) -> "Weekday":
        # date.weekday() counts from Monday = 0
        return cls((value.weekday() + 1) % 7)

    @classmethod
    def from_name(cls, name: str) -> "Weekday":
        try:
            return cls[name.strip().upper()]
        except KeyError as exc:
            msg = f"unknown weekday '{name}'"
            raise ValueError(msg) from exc
