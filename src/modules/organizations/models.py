"""Organization (tenant) ORM model."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base
from src.shared.models import TimestampMixin
from src.shared.ulid import generate_ulid


class Organization(Base, TimestampMixin):
    __tablename__ = "organizations"

    organization_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    subdomain: Mapped[str] = mapped_column(String(63), unique=True, index=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    def timezone_name(self, fallback: str) -> str:
        return (self.settings or {}).get("timezone") or fallback
