"""Pydantic schemas for users, students and professionals."""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field

from src.shared.enums import RoleKey


class UserPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    user_id: str = Field(serialization_alias="id")
    organization_id: str
    email: str
    first_name: str
    last_name: str
    phone_number: str | None = None
    is_active: bool

    @computed_field(return_type=str, alias="name")
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class UserCreate(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone_number: str | None = Field(
        default=None,
        max_length=32,
        validation_alias=AliasChoices("phone", "phone_number"),
    )
    role: RoleKey = RoleKey.CLIENT


class RoleAssignment(BaseModel):
    role: RoleKey


class RoleAssignmentResult(BaseModel):
    user_id: str
    role: RoleKey
    changed: bool


class StudentCreate(BaseModel):
    parent_id: str
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    date_of_birth: date | None = None


class StudentPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    student_id: str = Field(serialization_alias="id")
    parent_id: str
    first_name: str
    last_name: str
    date_of_birth: date | None = None
    active: bool


class ProfessionalCreate(BaseModel):
    title: str | None = Field(None, max_length=50)
    specialization: str | None = Field(None, max_length=100)
    bio: str | None = None
    license_number: str | None = Field(None, max_length=50)
    availability: dict[str, Any] = Field(default_factory=dict)
    session_duration_minutes: int = Field(60, gt=0)
    hourly_rate: Decimal | None = Field(None, ge=0)


class ProfessionalPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    professional_id: str = Field(serialization_alias="id")
    user_id: str
    title: str | None = None
    specialization: str | None = None
    bio: str | None = None
    license_number: str | None = None
    availability: dict[str, Any]
    session_duration_minutes: int
    hourly_rate: Decimal | None = None
    active: bool
