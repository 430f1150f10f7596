"""Schedule schemas."""

from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AvailabilityCheck(BaseModel):
    professional_id: str
    start: datetime
    end: datetime
    available: bool
    conflicting_ids: list[str] = Field(default_factory=list)


class AvailabilityWindow(BaseModel):
    start: datetime
    end: datetime


class _TimeRange(BaseModel):
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def validate_range(self) -> "_TimeRange":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class AvailabilityRuleCreate(_TimeRange):
    day_of_week: int = Field(ge=0, le=6)


class AvailabilityRulePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rule_id: str = Field(serialization_alias="id")
    professional_id: str
    day_of_week: int
    start_time: time
    end_time: time
    active: bool


class TimeSlotCreate(_TimeRange):
    slot_date: date = Field(alias="date")


class TimeSlotPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    slot_id: str = Field(serialization_alias="id")
    professional_id: str
    slot_date: date = Field(serialization_alias="date")
    start_time: time
    end_time: time
    appointment_id: str | None = None
    available: bool
