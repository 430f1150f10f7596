"""Appointment lifecycle as an explicit transition table.

``plan_transition`` is pure: it validates the (state, event) pair and the
guard, then returns the column changes and the commands the service must run
in the same database transaction (schedule re-validation, ledger movements)
or after commit (job hand-offs). Nothing here touches the database.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from src.core.exceptions import InvalidStateTransition
from src.modules.appointments.models import Appointment
from src.modules.jobs.queue import APPOINTMENT_REMINDER, EMAIL_NOTIFICATION, EXPIRE_PRE_CONFIRMED, SESSION_SUMMARY
from src.shared.clock import as_utc
from src.shared.enums import AppointmentEvent, AppointmentState

S = AppointmentState
E = AppointmentEvent


@dataclass(frozen=True)
class RequireAvailability:
    """Re-check rules and conflicts for the appointment's window, excluding itself."""


@dataclass(frozen=True)
class DebitCredits:
    user_id: str
    amount: int


@dataclass(frozen=True)
class RefundCharges:
    """Refund whatever was charged for the appointment and not yet refunded."""

    user_id: str


@dataclass(frozen=True)
class EnqueueJob:
    name: str
    payload: dict[str, Any]
    delay: timedelta | None = None


Command = RequireAvailability | DebitCredits | RefundCharges | EnqueueJob


@dataclass(frozen=True)
class TransitionContext:
    now: datetime
    actor_id: str
    reason: str | None = None
    pre_confirmation_ttl: timedelta = timedelta(hours=24)
    refund_window: timedelta = timedelta(hours=24)
    default_credits: int = 1


@dataclass
class TransitionPlan:
    event: AppointmentEvent
    from_state: AppointmentState
    to_state: AppointmentState
    changes: dict[str, Any] = field(default_factory=dict)
    commands: list[Command] = field(default_factory=list)

    def of_type(self, command_type: type) -> list[Command]:
        return [command for command in self.commands if isinstance(command, command_type)]


Guard = Callable[[Appointment, TransitionContext], str | None]
Effects = Callable[[Appointment, TransitionContext], tuple[dict[str, Any], list[Command]]]


@dataclass(frozen=True)
class Transition:
    target: AppointmentState
    guard: Guard
    effects: Effects


def _reference(appointment: Appointment) -> dict[str, Any]:
    return {"appointment_id": appointment.appointment_id, "organization_id": appointment.organization_id}


def _notify(appointment: Appointment, template: str, *user_ids: str) -> list[Command]:
    return [
        EnqueueJob(
            EMAIL_NOTIFICATION,
            {
                "user_id": user_id,
                "template": template,
                "appointment_id": appointment.appointment_id,
                "organization_id": appointment.organization_id,
            },
        )
        for user_id in user_ids
    ]


def _still_schedulable(appointment: Appointment, ctx: TransitionContext) -> str | None:
    if as_utc(appointment.scheduled_at) <= ctx.now:
        return "scheduled time has already passed"
    return None


def _pre_confirm_effects(appointment: Appointment, ctx: TransitionContext):
    expires_at = ctx.now + ctx.pre_confirmation_ttl
    changes = {"pre_confirmed_at": ctx.now, "expires_at": expires_at}
    commands: list[Command] = [
        RequireAvailability(),
        EnqueueJob(APPOINTMENT_REMINDER, _reference(appointment), delay=ctx.pre_confirmation_ttl),
        EnqueueJob(EXPIRE_PRE_CONFIRMED, _reference(appointment), delay=ctx.pre_confirmation_ttl),
        *_notify(appointment, "appointment_confirmation_reminder", appointment.client_id),
    ]
    return changes, commands


def _not_expired(appointment: Appointment, ctx: TransitionContext) -> str | None:
    if is_expired(appointment, ctx.now):
        return "pre-confirmation has expired"
    return None


def _confirm_effects(appointment: Appointment, ctx: TransitionContext):
    changes: dict[str, Any] = {"confirmed_at": ctx.now}
    commands: list[Command] = [RequireAvailability()]
    if appointment.uses_credits:
        credits = appointment.credits_used or ctx.default_credits
        changes["credits_used"] = credits
        commands.append(DebitCredits(user_id=appointment.client_id, amount=credits))
    commands.extend(_notify(appointment, "appointment_confirmed", appointment.professional_id, appointment.client_id))
    return changes, commands


def _session_started(appointment: Appointment, ctx: TransitionContext) -> str | None:
    if as_utc(appointment.scheduled_at) > ctx.now:
        return "appointment has not started yet"
    return None


def _execute_effects(appointment: Appointment, ctx: TransitionContext):
    commands: list[Command] = [EnqueueJob(SESSION_SUMMARY, _reference(appointment))]
    return {"executed_at": ctx.now}, commands


def _no_guard(appointment: Appointment, ctx: TransitionContext) -> str | None:
    return None


def _cancel_effects(appointment: Appointment, ctx: TransitionContext):
    changes = {
        "cancelled_at": ctx.now,
        "cancelled_by_id": ctx.actor_id,
        "cancellation_reason": ctx.reason,
    }
    commands: list[Command] = []
    if as_utc(appointment.scheduled_at) - ctx.now >= ctx.refund_window:
        commands.append(RefundCharges(user_id=appointment.client_id))
    commands.extend(_notify(appointment, "appointment_cancelled", appointment.professional_id, appointment.client_id))
    return changes, commands


TRANSITIONS: dict[tuple[AppointmentState, AppointmentEvent], Transition] = {
    (S.DRAFT, E.PRE_CONFIRM): Transition(S.PRE_CONFIRMED, _still_schedulable, _pre_confirm_effects),
    (S.PRE_CONFIRMED, E.CONFIRM): Transition(S.CONFIRMED, _not_expired, _confirm_effects),
    (S.CONFIRMED, E.EXECUTE): Transition(S.EXECUTED, _session_started, _execute_effects),
    (S.DRAFT, E.CANCEL): Transition(S.CANCELLED, _no_guard, _cancel_effects),
    (S.PRE_CONFIRMED, E.CANCEL): Transition(S.CANCELLED, _no_guard, _cancel_effects),
    (S.CONFIRMED, E.CANCEL): Transition(S.CANCELLED, _no_guard, _cancel_effects),
}


def is_legal(state: AppointmentState, event: AppointmentEvent) -> bool:
    return (AppointmentState(state), AppointmentEvent(event)) in TRANSITIONS


def allowed_events(state: AppointmentState) -> list[AppointmentEvent]:
    return [event for (source, event) in TRANSITIONS if source == state]


def is_expired(appointment: Appointment, now: datetime) -> bool:
    """A pre-confirmed appointment whose confirmation window has closed."""
    if appointment.state != AppointmentState.PRE_CONFIRMED or appointment.expires_at is None:
        return False
    return as_utc(appointment.expires_at) <= now


def plan_transition(appointment: Appointment, event: AppointmentEvent | str, ctx: TransitionContext) -> TransitionPlan:
    """Validate ``event`` against the table and the guard, and describe its effects."""
    state = AppointmentState(appointment.state)
    try:
        event = AppointmentEvent(event)
    except ValueError:
        raise InvalidStateTransition(state, str(event), "unknown event") from None

    transition = TRANSITIONS.get((state, event))
    if transition is None:
        raise InvalidStateTransition(state, event)

    failure = transition.guard(appointment, ctx)
    if failure:
        raise InvalidStateTransition(state, event, failure)

    changes, commands = transition.effects(appointment, ctx)
    changes["state"] = transition.target
    return TransitionPlan(
        event=event,
        from_state=state,
        to_state=transition.target,
        changes=changes,
        commands=commands,
    )
