"""Role/permission registry.

The matrix below is the single source of truth for what each organization role
may do per resource type. Qualified actions (``*_own``, ``*_assigned``,
``*_family``, ``update_clients``) are distinct entries: the policy engine
decides which variant applies to a given actor/resource pair.
"""

from collections.abc import Iterable

from src.shared.enums import ResourceType, RoleKey

R = ResourceType

ROLE_PERMISSIONS: dict[RoleKey, dict[ResourceType, frozenset[str]]] = {
    RoleKey.ADMIN: {
        R.ORGANIZATIONS: frozenset({"index", "show", "update", "destroy"}),
        R.USERS: frozenset({"index", "show", "create", "update", "destroy", "assign_role"}),
        R.APPOINTMENTS: frozenset(
            {"index", "show", "create", "update", "destroy", "pre_confirm", "confirm", "execute", "cancel"}
        ),
        R.PROFESSIONALS: frozenset({"index", "show", "create", "update", "destroy"}),
        R.STUDENTS: frozenset({"index", "show", "create", "update", "destroy"}),
        R.REPORTS: frozenset({"index", "show", "create", "update", "destroy"}),
        R.BILLING: frozenset({"index", "show", "create", "update", "debit", "refund", "adjust"}),
    },
    RoleKey.PROFESSIONAL: {
        R.ORGANIZATIONS: frozenset({"show"}),
        R.USERS: frozenset({"index", "show", "update_own"}),
        R.APPOINTMENTS: frozenset({"index", "show", "update_assigned", "execute_assigned", "cancel_assigned"}),
        R.PROFESSIONALS: frozenset({"show_own", "update_own"}),
        R.STUDENTS: frozenset({"index", "show", "update_assigned"}),
        R.REPORTS: frozenset({"create_own", "show_own", "update_own"}),
        R.BILLING: frozenset(),
    },
    RoleKey.SECRETARY: {
        R.ORGANIZATIONS: frozenset({"show"}),
        R.USERS: frozenset({"index", "show", "create", "update_clients"}),
        R.APPOINTMENTS: frozenset(
            {"index", "show", "create", "update", "destroy", "pre_confirm", "confirm", "cancel"}
        ),
        R.PROFESSIONALS: frozenset({"index", "show"}),
        R.STUDENTS: frozenset({"index", "show", "create", "update"}),
        R.REPORTS: frozenset({"index", "show"}),
        R.BILLING: frozenset({"index", "show", "create", "debit", "refund"}),
    },
    RoleKey.CLIENT: {
        R.ORGANIZATIONS: frozenset({"show"}),
        R.USERS: frozenset({"show_own", "update_own"}),
        R.APPOINTMENTS: frozenset(
            {"index_own", "show_own", "create_own", "update_own", "pre_confirm_own", "confirm_own", "cancel_own"}
        ),
        R.PROFESSIONALS: frozenset({"index", "show"}),
        R.STUDENTS: frozenset({"index_family", "show_family", "create_family", "update_family"}),
        R.REPORTS: frozenset({"show_own"}),
        R.BILLING: frozenset({"show_own"}),
    },
}

# Lowest to highest.
ROLE_HIERARCHY: tuple[RoleKey, ...] = (
    RoleKey.CLIENT,
    RoleKey.PROFESSIONAL,
    RoleKey.SECRETARY,
    RoleKey.ADMIN,
)

DEFAULT_ROLES: tuple[dict[str, str], ...] = (
    {"key": RoleKey.ADMIN, "name": "Administrator", "description": "Full organization access and management"},
    {
        "key": RoleKey.PROFESSIONAL,
        "name": "Professional",
        "description": "Can manage appointments, students, and provide services",
    },
    {
        "key": RoleKey.SECRETARY,
        "name": "Secretary",
        "description": "Can manage appointments, billing, and client support",
    },
    {"key": RoleKey.CLIENT, "name": "Client", "description": "Can book appointments and view student progress"},
)


def permissions_for(role_key: RoleKey | str, resource_type: ResourceType | str) -> frozenset[str]:
    """Return every action ``role_key`` may perform on ``resource_type``."""
    try:
        role = RoleKey(role_key)
        resource = ResourceType(resource_type)
    except ValueError:
        return frozenset()
    return ROLE_PERMISSIONS[role].get(resource, frozenset())


def can(role_key: RoleKey | str, action: str, resource_type: ResourceType | str) -> bool:
    return action in permissions_for(role_key, resource_type)


def can_any(role_keys: Iterable[RoleKey | str], action: str, resource_type: ResourceType | str) -> bool:
    return any(can(role_key, action, resource_type) for role_key in role_keys)


def highest_role(role_keys: Iterable[RoleKey | str]) -> RoleKey | None:
    held = {RoleKey(key) for key in role_keys}
    for role in reversed(ROLE_HIERARCHY):
        if role in held:
            return role
    return None
