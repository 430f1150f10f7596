"""Authorization policy engine.

``authorize`` evaluates, in order: tenant check, resource-state gate,
ownership/relationship predicates, then the role registry using the
predicate-qualified action. The first rule that decides wins and the default
is Deny. ``policy_scope`` narrows list queries to what the actor's role may see.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

from sqlalchemy import ColumnElement, false, or_, true

from src.core.exceptions import AuthorizationDenied, InvalidStateTransition, TenantMismatch
from src.core.logging import build_log_context
from src.modules.appointments.models import Appointment
from src.modules.appointments.state_machine import is_legal
from src.modules.authz.actor import Actor
from src.modules.authz.registry import can, can_any
from src.modules.credits.models import CreditBalance, CreditTransaction
from src.modules.organizations.models import Organization
from src.modules.users.models import Professional, Student, User
from src.shared.clock import as_utc, utcnow
from src.shared.enums import AppointmentEvent, AppointmentState, ResourceType, RoleKey

logger = logging.getLogger(__name__)

DENY_TENANT = "tenant"
DENY_STATE = "state"
DENY_ROLE = "role"
DENY_PLATFORM = "platform"

RESOURCE_TYPES: dict[type, ResourceType] = {
    Organization: ResourceType.ORGANIZATIONS,
    User: ResourceType.USERS,
    Appointment: ResourceType.APPOINTMENTS,
    Professional: ResourceType.PROFESSIONALS,
    Student: ResourceType.STUDENTS,
    CreditBalance: ResourceType.BILLING,
    CreditTransaction: ResourceType.BILLING,
}

TRANSITION_ACTIONS = frozenset(event.value for event in AppointmentEvent)

# Roles allowed to update an appointment in each state; None means any role the registry permits.
UPDATE_GATE: dict[AppointmentState, frozenset[RoleKey] | None] = {
    AppointmentState.DRAFT: None,
    AppointmentState.PRE_CONFIRMED: frozenset({RoleKey.ADMIN, RoleKey.SECRETARY}),
    AppointmentState.CONFIRMED: frozenset({RoleKey.ADMIN, RoleKey.SECRETARY}),
    AppointmentState.EXECUTED: frozenset({RoleKey.ADMIN}),
    AppointmentState.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class Allow:
    allowed: ClassVar[bool] = True

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Deny:
    reason: str
    code: str = DENY_ROLE
    allowed: ClassVar[bool] = False

    def __bool__(self) -> bool:
        return False


Decision = Allow | Deny


def resource_type_of(resource: Any) -> ResourceType:
    if isinstance(resource, (ResourceType, str)):
        return ResourceType(resource)
    for model, resource_type in RESOURCE_TYPES.items():
        if isinstance(resource, model):
            return resource_type
    raise TypeError(f"no resource type registered for {type(resource).__name__}")


def authorize(
    actor: Actor,
    action: str,
    resource: Any,
    *,
    now: datetime | None = None,
    target_roles: frozenset[RoleKey] = frozenset(),
) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on ``resource``.

    ``resource`` is either a model instance or a resource type name for
    collection-level actions such as ``index``. ``target_roles`` lists the
    roles of a target user when authorizing user-management actions.
    """
    resource_type = resource_type_of(resource)

    if resource_type == ResourceType.ORGANIZATIONS and action == "create":
        if actor.platform_operator:
            return Allow()
        return Deny("organization creation requires the platform operator capability", DENY_PLATFORM)

    if not isinstance(resource, (ResourceType, str)):
        if getattr(resource, "organization_id", None) != actor.organization_id:
            return Deny("resource belongs to another organization", DENY_TENANT)
    else:
        return _check_roles(actor, [f"{action}_own", f"{action}_family", action], resource_type)

    if resource_type == ResourceType.APPOINTMENTS:
        return _authorize_appointment(actor, action, resource, now or utcnow())
    if resource_type == ResourceType.USERS:
        return _authorize_user(actor, action, resource, target_roles)
    if resource_type == ResourceType.STUDENTS:
        candidates = [f"{action}_family", action] if resource.parent_id == actor.user_id else [action]
        return _check_roles(actor, candidates, resource_type)
    if resource_type in (ResourceType.PROFESSIONALS, ResourceType.BILLING):
        candidates = [f"{action}_own", action] if resource.user_id == actor.user_id else [action]
        return _check_roles(actor, candidates, resource_type)
    return _check_roles(actor, [action], resource_type)


def _authorize_appointment(actor: Actor, action: str, appointment: Appointment, now: datetime) -> Decision:
    state = AppointmentState(appointment.state)
    assigned = actor.has_role(RoleKey.PROFESSIONAL) and appointment.professional_id == actor.user_id
    own = appointment.client_id == actor.user_id
    family = appointment.student_id is not None and appointment.student_id in actor.family_student_ids

    if action in TRANSITION_ACTIONS:
        if not is_legal(state, AppointmentEvent(action)):
            return Deny(f"cannot {action} an appointment in state '{state}'", DENY_STATE)
    elif action == "update":
        allowed_roles = UPDATE_GATE[state]
        if allowed_roles is not None:
            confirmed_assigned = state == AppointmentState.CONFIRMED and assigned
            if not (actor.role_keys & allowed_roles or confirmed_assigned):
                return Deny(f"appointment in state '{state}' cannot be updated by this actor", DENY_STATE)
    elif action == "destroy" and state != AppointmentState.DRAFT:
        return Deny(f"only draft appointments can be destroyed, not '{state}'", DENY_STATE)

    candidates: list[str] = []
    if own or family:
        if action != AppointmentEvent.CANCEL or as_utc(appointment.scheduled_at) > now:
            candidates.append(f"{action}_own")
    if assigned:
        candidates.append(f"{action}_assigned")
    candidates.append(action)
    return _check_roles(actor, candidates, ResourceType.APPOINTMENTS)


def _authorize_user(actor: Actor, action: str, target: User, target_roles: frozenset[RoleKey]) -> Decision:
    own = target.user_id == actor.user_id
    if action == "destroy" and own:
        return Deny("users cannot delete themselves")
    candidates: list[str] = []
    if own:
        candidates.append(f"{action}_own")
    if action == "update" and target_roles and target_roles <= {RoleKey.CLIENT}:
        candidates.append("update_clients")
    candidates.append(action)
    return _check_roles(actor, candidates, ResourceType.USERS)


def _check_roles(actor: Actor, candidates: list[str], resource_type: ResourceType) -> Decision:
    for candidate in candidates:
        if can_any(actor.role_keys, candidate, resource_type):
            return Allow()
    return Deny(f"not permitted to {candidates[-1]} {resource_type.value}")


def ensure_authorized(actor: Actor, action: str, resource: Any, **kwargs: Any) -> None:
    """Raise the matching domain error unless ``authorize`` allows the action.

    Tenant denials surface as not-found so other organizations' records stay invisible.
    """
    decision = authorize(actor, action, resource, **kwargs)
    if decision.allowed:
        return
    logger.warning(
        "authorization denied: %s %s (%s)",
        action,
        resource_type_of(resource).value,
        decision.code,
        extra=build_log_context(org_id=actor.organization_id, user_id=actor.user_id),
    )
    if decision.code == DENY_TENANT:
        raise TenantMismatch(resource_type_of(resource).value.rstrip("s").capitalize())
    if decision.code == DENY_STATE and action in TRANSITION_ACTIONS:
        raise InvalidStateTransition(str(AppointmentState(resource.state)), action)
    raise AuthorizationDenied(decision.reason)


def policy_scope(actor: Actor, resource_type: ResourceType | str) -> ColumnElement[bool]:
    """Return a filter limiting a list query to records the actor may see."""
    resource_type = ResourceType(resource_type)
    role = actor.highest_role
    if resource_type == ResourceType.APPOINTMENTS:
        return (Appointment.organization_id == actor.organization_id) & _appointment_scope(actor, role)
    if resource_type == ResourceType.STUDENTS:
        if role in (RoleKey.ADMIN, RoleKey.SECRETARY, RoleKey.PROFESSIONAL):
            return Student.organization_id == actor.organization_id
        if role == RoleKey.CLIENT:
            return (Student.organization_id == actor.organization_id) & (Student.parent_id == actor.user_id)
        return false()
    if resource_type == ResourceType.USERS:
        if role in (RoleKey.ADMIN, RoleKey.SECRETARY, RoleKey.PROFESSIONAL):
            return User.organization_id == actor.organization_id
        if role == RoleKey.CLIENT:
            return (User.organization_id == actor.organization_id) & (User.user_id == actor.user_id)
        return false()
    if resource_type == ResourceType.PROFESSIONALS:
        if role is None:
            return false()
        return Professional.organization_id == actor.organization_id
    if resource_type == ResourceType.BILLING:
        if role in (RoleKey.ADMIN, RoleKey.SECRETARY):
            return CreditBalance.organization_id == actor.organization_id
        if role is None:
            return false()
        return (CreditBalance.organization_id == actor.organization_id) & (CreditBalance.user_id == actor.user_id)
    if resource_type == ResourceType.ORGANIZATIONS:
        if role is None:
            return false()
        return Organization.organization_id == actor.organization_id
    return true() if role is not None and can(role, "index", resource_type) else false()


def _appointment_scope(actor: Actor, role: RoleKey | None) -> ColumnElement[bool]:
    if role in (RoleKey.ADMIN, RoleKey.SECRETARY):
        return true()
    if role == RoleKey.PROFESSIONAL:
        return Appointment.professional_id == actor.user_id
    if role == RoleKey.CLIENT:
        return or_(
            Appointment.client_id == actor.user_id,
            Appointment.student_id.in_(sorted(actor.family_student_ids)),
        )
    return false()
