from datetime import datetime, timedelta, timezone

import pytest

from src.core.exceptions import AuthorizationDenied, InvalidStateTransition, TenantMismatch
from src.modules.appointments.models import Appointment
from src.modules.authz.actor import Actor
from src.modules.authz.policy import (
    DENY_PLATFORM,
    DENY_ROLE,
    DENY_STATE,
    DENY_TENANT,
    authorize,
    ensure_authorized,
)
from src.modules.authz.registry import can, can_any, highest_role, permissions_for
from src.modules.users.models import User
from src.shared.enums import AppointmentState, ResourceType, RoleKey

NOW = datetime(2030, 1, 6, 9, 0, tzinfo=timezone.utc)

ADMIN = Actor("u-admin", "org-a", frozenset({RoleKey.ADMIN}))
SECRETARY = Actor("u-desk", "org-a", frozenset({RoleKey.SECRETARY}))
PROFESSIONAL = Actor("u-pro", "org-a", frozenset({RoleKey.PROFESSIONAL}))
CLIENT = Actor("u-client", "org-a", frozenset({RoleKey.CLIENT}), family_student_ids=frozenset({"s-kid"}))
STRANGER = Actor("u-other", "org-a", frozenset({RoleKey.CLIENT}))


def _appointment(state=AppointmentState.PRE_CONFIRMED, org="org-a", start_in=timedelta(days=1), **overrides):
    start = NOW + start_in
    values = dict(
        appointment_id="appt-1",
        organization_id=org,
        professional_id="u-pro",
        client_id="u-client",
        student_id=None,
        state=state,
        scheduled_at=start,
        duration_minutes=60,
        ends_at=start + timedelta(hours=1),
    )
    values.update(overrides)
    return Appointment(**values)


def test_registry_lists_qualified_client_actions():
    actions = permissions_for(RoleKey.CLIENT, ResourceType.APPOINTMENTS)
    assert {"create_own", "confirm_own", "cancel_own"} <= actions
    assert "confirm" not in actions
    assert permissions_for("unknown", ResourceType.APPOINTMENTS) == frozenset()


def test_can_checks_single_role_and_union():
    assert can(RoleKey.SECRETARY, "confirm", ResourceType.APPOINTMENTS)
    assert not can(RoleKey.PROFESSIONAL, "confirm", ResourceType.APPOINTMENTS)
    assert can_any({RoleKey.PROFESSIONAL, RoleKey.SECRETARY}, "confirm", ResourceType.APPOINTMENTS)
    assert not can(RoleKey.SECRETARY, "adjust", ResourceType.BILLING)


def test_highest_role_follows_hierarchy():
    assert highest_role({RoleKey.CLIENT, RoleKey.SECRETARY}) == RoleKey.SECRETARY
    assert highest_role(set()) is None


def test_client_may_confirm_own_pre_confirmed_appointment():
    assert authorize(CLIENT, "confirm", _appointment(), now=NOW)
    decision = authorize(STRANGER, "confirm", _appointment(), now=NOW)
    assert not decision
    assert decision.code == DENY_ROLE


def test_family_link_grants_client_access():
    appointment = _appointment(client_id="u-someone", student_id="s-kid")
    assert authorize(CLIENT, "show", appointment, now=NOW)


def test_professional_limited_to_assigned_appointments():
    confirmed = _appointment(AppointmentState.CONFIRMED, start_in=timedelta(hours=-1))
    assert authorize(PROFESSIONAL, "execute", confirmed, now=NOW)
    unassigned = _appointment(AppointmentState.CONFIRMED, professional_id="u-other-pro")
    assert not authorize(PROFESSIONAL, "execute", unassigned, now=NOW)
    assert not authorize(PROFESSIONAL, "confirm", _appointment(), now=NOW)


def test_state_gate_denies_illegal_transition_events():
    decision = authorize(ADMIN, "confirm", _appointment(AppointmentState.EXECUTED), now=NOW)
    assert decision.code == DENY_STATE


def test_cross_tenant_resources_are_denied_first():
    decision = authorize(ADMIN, "show", _appointment(org="org-b"), now=NOW)
    assert decision.code == DENY_TENANT


def test_client_cannot_cancel_after_start():
    started = _appointment(AppointmentState.CONFIRMED, start_in=timedelta(minutes=-5))
    assert not authorize(CLIENT, "cancel", started, now=NOW)
    assert authorize(SECRETARY, "cancel", started, now=NOW)


def test_update_gate_by_state():
    assert authorize(CLIENT, "update", _appointment(AppointmentState.DRAFT), now=NOW)
    assert not authorize(CLIENT, "update", _appointment(AppointmentState.CONFIRMED), now=NOW)
    assert authorize(PROFESSIONAL, "update", _appointment(AppointmentState.CONFIRMED), now=NOW)
    assert not authorize(SECRETARY, "update", _appointment(AppointmentState.EXECUTED), now=NOW)
    assert authorize(ADMIN, "update", _appointment(AppointmentState.EXECUTED), now=NOW)
    assert not authorize(ADMIN, "update", _appointment(AppointmentState.CANCELLED), now=NOW)


def test_only_draft_appointments_can_be_destroyed():
    assert authorize(ADMIN, "destroy", _appointment(AppointmentState.DRAFT), now=NOW)
    assert authorize(SECRETARY, "destroy", _appointment(AppointmentState.DRAFT), now=NOW)
    assert not authorize(CLIENT, "destroy", _appointment(AppointmentState.DRAFT), now=NOW)
    assert not authorize(PROFESSIONAL, "destroy", _appointment(AppointmentState.DRAFT), now=NOW)
    for state in (AppointmentState.PRE_CONFIRMED, AppointmentState.CONFIRMED, AppointmentState.EXECUTED):
        decision = authorize(ADMIN, "destroy", _appointment(state), now=NOW)
        assert decision.code == DENY_STATE
    with pytest.raises(AuthorizationDenied):
        ensure_authorized(ADMIN, "destroy", _appointment(AppointmentState.CONFIRMED), now=NOW)


def test_organization_creation_requires_platform_operator():
    decision = authorize(ADMIN, "create", ResourceType.ORGANIZATIONS)
    assert decision.code == DENY_PLATFORM
    operator = Actor("ops", "", platform_operator=True)
    assert authorize(operator, "create", ResourceType.ORGANIZATIONS)


def test_user_management_rules():
    client_user = User(user_id="u-client", organization_id="org-a", email="c@a.test", first_name="C", last_name="L")
    assert authorize(CLIENT, "show", client_user)
    assert not authorize(STRANGER, "show", client_user)
    assert authorize(SECRETARY, "update", client_user, target_roles=frozenset({RoleKey.CLIENT}))
    assert not authorize(SECRETARY, "update", client_user, target_roles=frozenset({RoleKey.PROFESSIONAL}))
    admin_user = User(user_id="u-admin", organization_id="org-a", email="a@a.test", first_name="A", last_name="D")
    assert not authorize(ADMIN, "destroy", admin_user)


def test_ensure_authorized_maps_denials_to_errors():
    with pytest.raises(InvalidStateTransition):
        ensure_authorized(ADMIN, "confirm", _appointment(AppointmentState.EXECUTED), now=NOW)
    with pytest.raises(TenantMismatch):
        ensure_authorized(ADMIN, "show", _appointment(org="org-b"), now=NOW)
    with pytest.raises(AuthorizationDenied):
        ensure_authorized(STRANGER, "show", _appointment(), now=NOW)


def test_actor_without_roles_is_denied_everything():
    nobody = Actor("u-none", "org-a")
    assert not authorize(nobody, "index", ResourceType.APPOINTMENTS)
    assert not authorize(nobody, "show", _appointment(client_id="u-none"), now=NOW)
