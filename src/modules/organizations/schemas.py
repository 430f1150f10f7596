"""Organization schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OrganizationAdmin(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    subdomain: str = Field(min_length=1, max_length=63)
    email: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    admin: OrganizationAdmin | None = None


class OrganizationPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    organization_id: str = Field(serialization_alias="id")
    name: str
    subdomain: str
    email: str | None = None
    active: bool
    settings: dict[str, Any]
