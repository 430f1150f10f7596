"""Appointments schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.shared.enums import AppointmentState


class AppointmentPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    appointment_id: str = Field(serialization_alias="id")
    organization_id: str
    professional_id: str
    client_id: str
    student_id: str | None = None
    state: AppointmentState
    scheduled_at: datetime
    duration_minutes: int
    ends_at: datetime
    price: Decimal | None = None
    uses_credits: bool
    credits_used: int | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    pre_confirmed_at: datetime | None = None
    expires_at: datetime | None = None
    confirmed_at: datetime | None = None
    executed_at: datetime | None = None
    cancelled_at: datetime | None = None


class AppointmentCreate(BaseModel):
    professional_id: str
    client_id: str
    student_id: str | None = None
    scheduled_at: datetime
    duration_minutes: int = Field(gt=0)
    price: Decimal | None = Field(None, ge=0)
    uses_credits: bool = False
    credits_used: int | None = Field(None, gt=0)
    notes: str | None = None
    pre_confirm: bool = False


class AppointmentUpdate(BaseModel):
    scheduled_at: datetime | None = None
    duration_minutes: int | None = Field(None, gt=0)
    notes: str | None = None


class TransitionRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)

    def metadata(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
