"""Tenant provisioning."""

from __future__ import annotations

import logging
import re
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import unit_of_work
from src.core.exceptions import NotFoundError, ValidationError
from src.core.logging import build_log_context
from src.modules.authz.actor import Actor
from src.modules.authz.policy import ensure_authorized
from src.modules.authz.registry import DEFAULT_ROLES
from src.modules.organizations.models import Organization
from src.modules.users.models import Role, User, UserRole
from src.shared.enums import ResourceType, RoleKey

logger = logging.getLogger(__name__)

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9-]+$")


def normalize_subdomain(value: str) -> str:
    subdomain = (value or "").strip().lower()
    if not subdomain or len(subdomain) > 63 or not SUBDOMAIN_PATTERN.match(subdomain):
        raise ValidationError("subdomain", "may only contain lowercase letters, digits and hyphens")
    return subdomain


def _validate_settings(org_settings: dict[str, Any]) -> dict[str, Any]:
    tz_name = org_settings.get("timezone")
    if tz_name is not None:
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValidationError("settings.timezone", f"unknown timezone '{tz_name}'") from exc
    return org_settings


async def create_organization(
    db: AsyncSession,
    actor: Actor,
    name: str,
    subdomain: str,
    *,
    email: str | None = None,
    settings: dict[str, Any] | None = None,
    admin: dict[str, str] | None = None,
) -> Organization:
    """Create a tenant with its four default roles, and optionally its first admin user.

    Everything is written in one transaction: a tenant never exists without its roles.
    """
    ensure_authorized(actor, "create", ResourceType.ORGANIZATIONS)
    name = (name or "").strip()
    if not name:
        raise ValidationError("name", "must not be blank")
    subdomain = normalize_subdomain(subdomain)
    org_settings = _validate_settings(dict(settings or {}))

    async with unit_of_work(db):
        clash = await db.execute(
            select(Organization.name, Organization.subdomain).where(
                or_(Organization.name == name, Organization.subdomain == subdomain)
            )
        )
        row = clash.first()
        if row is not None:
            field = "subdomain" if row.subdomain == subdomain else "name"
            raise ValidationError(field, "is already taken")

        organization = Organization(name=name, subdomain=subdomain, email=email, active=True, settings=org_settings)
        db.add(organization)
        await db.flush()

        roles = [Role(organization_id=organization.organization_id, active=True, **role) for role in DEFAULT_ROLES]
        db.add_all(roles)
        await db.flush()

        if admin is not None:
            admin_role = next(role for role in roles if role.key == RoleKey.ADMIN)
            user = User(
                organization_id=organization.organization_id,
                email=admin["email"].strip().lower(),
                first_name=admin.get("first_name", "").strip(),
                last_name=admin.get("last_name", "").strip(),
            )
            db.add(user)
            await db.flush()
            db.add(
                UserRole(
                    organization_id=organization.organization_id,
                    user_id=user.user_id,
                    role_id=admin_role.role_id,
                    active=True,
                )
            )
            await db.flush()

    logger.info(
        "organization %s created",
        organization.subdomain,
        extra=build_log_context(org_id=organization.organization_id, user_id=actor.user_id),
    )
    return organization


async def get_by_subdomain(db: AsyncSession, subdomain: str) -> Organization:
    """Resolve an active tenant from a request subdomain."""
    result = await db.execute(
        select(Organization).where(
            Organization.subdomain == (subdomain or "").strip().lower(),
            Organization.active.is_(True),
        )
    )
    organization = result.scalar_one_or_none()
    if organization is None:
        raise NotFoundError("Organization")
    return organization
