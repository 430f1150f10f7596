"""Reusable ORM mixins."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, declared_attr, mapped_column


class TimestampMixin:
    """Track creation/update times in UTC."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class OrganizationScopedMixin:
    """Rows partitioned by tenant. The organization id is always required."""

    @declared_attr
    def organization_id(cls) -> Mapped[str]:
        return mapped_column(
            String(26),
            ForeignKey("organizations.organization_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
