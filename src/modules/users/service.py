"""User, role assignment, student and professional management inside one organization."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import unit_of_work
from src.core.exceptions import NotFoundError, ValidationError
from src.core.logging import build_log_context
from src.core.tenancy import TenantContext
from src.modules.authz.policy import ensure_authorized, policy_scope
from src.modules.users.models import Professional, Role, Student, User, UserRole
from src.shared.clock import utcnow
from src.shared.enums import ResourceType, RoleKey

logger = logging.getLogger(__name__)

MAX_STUDENT_AGE = 18
MAX_PLAUSIBLE_AGE = 100


async def role_keys_for(db: AsyncSession, tenant: TenantContext, user_id: str) -> frozenset[RoleKey]:
    result = await db.execute(
        tenant.scoped(
            select(Role.key)
            .join(UserRole, UserRole.role_id == Role.role_id)
            .where(UserRole.user_id == user_id, UserRole.active.is_(True), Role.active.is_(True)),
            Role,
            UserRole,
        )
    )
    return frozenset(RoleKey(key) for key in result.scalars().all())


async def has_role(db: AsyncSession, tenant: TenantContext, user_id: str, role_key: RoleKey | str) -> bool:
    return RoleKey(role_key) in await role_keys_for(db, tenant, user_id)


class UserService:
    def __init__(self, db: AsyncSession, tenant: TenantContext, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.tenant = tenant
        self.actor = tenant.actor
        self.clock = clock

    async def get_user(self, user_id: str) -> User:
        user = await self._get_user(user_id)
        ensure_authorized(self.actor, "show", user)
        return user

    async def list_users(self) -> list[User]:
        ensure_authorized(self.actor, "index", ResourceType.USERS)
        result = await self.db.execute(
            self.tenant.scoped(select(User).where(policy_scope(self.actor, ResourceType.USERS)), User).order_by(
                User.last_name, User.first_name
            )
        )
        return list(result.scalars().all())

    async def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        *,
        phone_number: str | None = None,
        role_key: RoleKey = RoleKey.CLIENT,
    ) -> User:
        """Create a user with one initial role. Only admins may create staff accounts."""
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("email", "must be a valid email address")
        user = self.tenant.stamp(
            User(email=email, first_name=first_name.strip(), last_name=last_name.strip(), phone_number=phone_number)
        )
        ensure_authorized(self.actor, "create", user)
        if RoleKey(role_key) != RoleKey.CLIENT:
            ensure_authorized(self.actor, "assign_role", user)

        async with unit_of_work(self.db):
            existing = await self.db.execute(
                self.tenant.scoped(select(User.user_id).where(User.email == email), User)
            )
            if existing.first() is not None:
                raise ValidationError("email", "is already registered in this organization")
            self.db.add(user)
            await self.db.flush()
            await self._assign(user, RoleKey(role_key))

        logger.info(
            "user created with role %s",
            RoleKey(role_key).value,
            extra=build_log_context(org_id=self.tenant.organization_id, user_id=user.user_id),
        )
        return user

    async def assign_role(self, user_id: str, role_key: RoleKey | str) -> bool:
        """Grant ``role_key``. Returns False when the user already holds it."""
        async with unit_of_work(self.db):
            user = await self._get_user(user_id)
            ensure_authorized(self.actor, "assign_role", user)
            assigned = await self._assign(user, RoleKey(role_key))
        return assigned

    async def revoke_role(self, user_id: str, role_key: RoleKey | str) -> bool:
        async with unit_of_work(self.db):
            user = await self._get_user(user_id)
            ensure_authorized(self.actor, "assign_role", user)
            role = await self._role(RoleKey(role_key))
            result = await self.db.execute(
                self.tenant.scoped(
                    select(UserRole).where(
                        UserRole.user_id == user.user_id,
                        UserRole.role_id == role.role_id,
                        UserRole.active.is_(True),
                    ),
                    UserRole,
                )
            )
            assignment = result.scalar_one_or_none()
            if assignment is None:
                return False
            assignment.active = False
        return True

    async def has_role(self, user_id: str, role_key: RoleKey | str) -> bool:
        return await has_role(self.db, self.tenant, user_id, role_key)

    async def create_student(
        self,
        parent_id: str,
        first_name: str,
        last_name: str,
        date_of_birth: date | None = None,
    ) -> Student:
        await self._get_user(parent_id)
        student = self.tenant.stamp(
            Student(parent_id=parent_id, first_name=first_name.strip(), last_name=last_name.strip(), date_of_birth=date_of_birth)
        )
        validate_student_age(student, self.clock().date())
        ensure_authorized(self.actor, "create", student)
        async with unit_of_work(self.db):
            self.db.add(student)
            await self.db.flush()
        return student

    async def list_students(self) -> list[Student]:
        ensure_authorized(self.actor, "index", ResourceType.STUDENTS)
        result = await self.db.execute(
            self.tenant.scoped(
                select(Student).where(policy_scope(self.actor, ResourceType.STUDENTS)), Student
            ).order_by(Student.last_name, Student.first_name)
        )
        return list(result.scalars().all())

    async def create_professional(
        self,
        user_id: str,
        *,
        specialization: str | None = None,
        availability: dict[str, Any] | None = None,
        session_duration_minutes: int = 60,
        hourly_rate: Decimal | None = None,
        title: str | None = None,
        bio: str | None = None,
        license_number: str | None = None,
    ) -> Professional:
        """Attach a professional profile to a user who holds the professional role."""
        user = await self._get_user(user_id)
        if not await self.has_role(user.user_id, RoleKey.PROFESSIONAL):
            raise ValidationError("user_id", "user does not hold the professional role")
        if session_duration_minutes <= 0:
            raise ValidationError("session_duration_minutes", "must be greater than 0")
        if hourly_rate is not None and hourly_rate < 0:
            raise ValidationError("hourly_rate", "must not be negative")

        professional = self.tenant.stamp(
            Professional(
                user_id=user.user_id,
                title=title,
                specialization=specialization,
                bio=bio,
                license_number=(license_number or "").strip() or None,
                availability=dict(availability or {}),
                session_duration_minutes=session_duration_minutes,
                hourly_rate=hourly_rate,
                active=True,
            )
        )
        if professional.license_required and not professional.license_number:
            raise ValidationError("license_number", f"is required for {specialization.strip().lower()}")
        ensure_authorized(self.actor, "create", professional)
        async with unit_of_work(self.db):
            self.db.add(professional)
            try:
                await self.db.flush()
            except IntegrityError as exc:
                raise ValidationError("user_id", "professional profile already exists") from exc
        return professional

    async def _assign(self, user: User, role_key: RoleKey) -> bool:
        role = await self._role(role_key)
        result = await self.db.execute(
            self.tenant.scoped(
                select(UserRole).where(UserRole.user_id == user.user_id, UserRole.role_id == role.role_id),
                UserRole,
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is not None:
            if assignment.active:
                return False
            assignment.active = True
        else:
            self.db.add(self.tenant.stamp(UserRole(user_id=user.user_id, role_id=role.role_id, active=True)))
        await self.db.flush()
        logger.info(
            "role %s assigned",
            role_key.value,
            extra=build_log_context(org_id=self.tenant.organization_id, user_id=user.user_id),
        )
        return True

    async def _role(self, role_key: RoleKey) -> Role:
        result = await self.db.execute(
            self.tenant.scoped(select(Role).where(Role.key == role_key, Role.active.is_(True)), Role)
        )
        role = result.scalar_one_or_none()
        if role is None:
            raise NotFoundError("Role")
        return role

    async def _get_user(self, user_id: str) -> User:
        result = await self.db.execute(self.tenant.scoped(select(User).where(User.user_id == user_id), User))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User")
        return user


def validate_student_age(student: Student, today: date) -> None:
    if student.date_of_birth is None:
        return
    if student.date_of_birth > today:
        raise ValidationError("date_of_birth", "cannot be in the future")
    age = student.age_on(today)
    if age > MAX_PLAUSIBLE_AGE:
        raise ValidationError("date_of_birth", f"seems incorrect (age over {MAX_PLAUSIBLE_AGE})")
    if age > MAX_STUDENT_AGE:
        raise ValidationError("date_of_birth", f"student cannot be older than {MAX_STUDENT_AGE} years")
