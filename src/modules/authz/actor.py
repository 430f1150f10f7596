"""Acting-user snapshot used by the policy engine."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.modules.authz.registry import highest_role
from src.modules.users.models import Role, Student, User, UserRole
from src.shared.enums import RoleKey


@dataclass(frozen=True)
class Actor:
    user_id: str
    organization_id: str
    role_keys: frozenset[RoleKey] = frozenset()
    family_student_ids: frozenset[str] = frozenset()
    platform_operator: bool = False

    def has_role(self, role_key: RoleKey | str) -> bool:
        return RoleKey(role_key) in self.role_keys

    @property
    def highest_role(self) -> RoleKey | None:
        return highest_role(self.role_keys)


async def load_actor(db: AsyncSession, user: User, *, platform_operator: bool = False) -> Actor:
    """Build an ``Actor`` from the user's active role assignments and family links.

    Both lookups are restricted to the user's own organization.
    """
    role_rows = await db.execute(
        select(Role.key)
        .join(UserRole, UserRole.role_id == Role.role_id)
        .where(
            UserRole.user_id == user.user_id,
            UserRole.organization_id == user.organization_id,
            Role.organization_id == user.organization_id,
            UserRole.active.is_(True),
            Role.active.is_(True),
        )
    )
    student_rows = await db.execute(
        select(Student.student_id).where(
            Student.parent_id == user.user_id,
            Student.organization_id == user.organization_id,
        )
    )
    return Actor(
        user_id=user.user_id,
        organization_id=user.organization_id,
        role_keys=frozenset(RoleKey(key) for key in role_rows.scalars().all()),
        family_student_ids=frozenset(student_rows.scalars().all()),
        platform_operator=platform_operator,
    )
