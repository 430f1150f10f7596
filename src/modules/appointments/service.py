"""Appointment service layer.

The only code path that mutates appointment state. Each operation runs in one
unit of work: authorization, schedule re-validation, the compare-on-state
write and any ledger movement commit together or not at all. Job hand-offs
are dispatched after the commit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from src.core.config import settings
from src.core.database import unit_of_work
from src.core.exceptions import AuthorizationDenied, InvalidStateTransition, NotFoundError, ValidationError
from src.core.logging import build_log_context
from src.core.tenancy import TenantContext
from src.modules.appointments.models import Appointment
from src.modules.appointments.state_machine import (
    DebitCredits,
    EnqueueJob,
    RefundCharges,
    RequireAvailability,
    TransitionContext,
    TransitionPlan,
    is_expired,
    plan_transition,
)
from src.modules.authz.actor import Actor
from src.modules.authz.policy import ensure_authorized, policy_scope
from src.modules.credits.ledger import CreditLedger
from src.modules.credits.models import CreditTransaction
from src.modules.jobs.queue import JobQueue, RecordingJobQueue, dispatch
from src.modules.schedule.service import AvailabilityResolver, validate_window
from src.modules.users.models import Professional, Student, User
from src.shared.clock import as_utc, utcnow
from src.shared.enums import AppointmentEvent, AppointmentState, ResourceType, RoleKey

logger = logging.getLogger(__name__)

EXPIRED_REASON = "pre-confirmation expired"
MIN_STUDENT_AGE = 3
SWEEP_ROLES = frozenset({RoleKey.ADMIN, RoleKey.SECRETARY})


class AppointmentService:
    def __init__(
        self,
        db: AsyncSession,
        tenant: TenantContext,
        jobs: JobQueue | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.tenant = tenant
        self.actor: Actor = tenant.actor
        self.jobs = jobs if jobs is not None else RecordingJobQueue()
        self.clock = clock
        self.resolver = AvailabilityResolver(db, tenant, clock)
        self.ledger = CreditLedger(db, tenant, clock)

    async def create_appointment(
        self,
        professional_id: str,
        client_id: str,
        start: datetime,
        duration_minutes: int,
        student_id: str | None = None,
        *,
        price: Decimal | None = None,
        uses_credits: bool = False,
        credits_used: int | None = None,
        notes: str | None = None,
    ) -> Appointment:
        """Create a draft appointment after availability and authorization checks."""
        return await self._create(
            professional_id,
            client_id,
            start,
            duration_minutes,
            student_id,
            price=price,
            uses_credits=uses_credits,
            credits_used=credits_used,
            notes=notes,
            pre_confirm=False,
        )

    async def book_appointment(
        self,
        professional_id: str,
        client_id: str,
        start: datetime,
        duration_minutes: int,
        student_id: str | None = None,
        **options: Any,
    ) -> Appointment:
        """Create and pre-confirm in one transaction, holding the slot for the client."""
        return await self._create(
            professional_id,
            client_id,
            start,
            duration_minutes,
            student_id,
            pre_confirm=True,
            **options,
        )

    async def _create(
        self,
        professional_id: str,
        client_id: str,
        start: datetime,
        duration_minutes: int,
        student_id: str | None,
        *,
        price: Decimal | None = None,
        uses_credits: bool = False,
        credits_used: int | None = None,
        notes: str | None = None,
        pre_confirm: bool,
    ) -> Appointment:
        if duration_minutes is None or duration_minutes <= 0:
            raise ValidationError("duration_minutes", "must be greater than 0")
        if credits_used is not None and credits_used <= 0:
            raise ValidationError("credits_used", "must be greater than 0")
        if price is not None and price < 0:
            raise ValidationError("price", "must not be negative")
        start, end = validate_window(start, start + timedelta(minutes=duration_minutes))

        await self._get_user(client_id, "Client")
        await self._get_user(professional_id, "Professional")
        if student_id is not None:
            student = await self._get_student(student_id)
            if student.parent_id != client_id:
                raise ValidationError("student_id", "student does not belong to this client")
            age = student.age_on(self.clock().date())
            if age is not None and age < MIN_STUDENT_AGE:
                raise ValidationError("student_id", f"student must be at least {MIN_STUDENT_AGE} years old")

        appointment = self.tenant.stamp(
            Appointment(
                professional_id=professional_id,
                client_id=client_id,
                student_id=student_id,
                state=AppointmentState.DRAFT,
                scheduled_at=start,
                duration_minutes=duration_minutes,
                ends_at=end,
                price=price,
                uses_credits=uses_credits,
                credits_used=credits_used,
                notes=notes,
            )
        )
        ensure_authorized(self.actor, "create", appointment, now=self.clock())

        jobs: list[EnqueueJob] = []
        async with unit_of_work(self.db):
            professional = await self.resolver.ensure_bookable(professional_id, start, end, at_creation=True)
            if appointment.price is None:
                appointment.price = _session_price(professional, duration_minutes)
            self.db.add(appointment)
            await self.db.flush()

            slot = await self.resolver.slot_for(professional, start)
            if slot is not None:
                await self.resolver.book_slot(slot, appointment)

            if pre_confirm:
                ensure_authorized(self.actor, AppointmentEvent.PRE_CONFIRM, appointment, now=self.clock())
                plan = plan_transition(appointment, AppointmentEvent.PRE_CONFIRM, self._context())
                jobs = await self._apply(appointment, plan)

        logger.info(
            "appointment created (%s)",
            appointment.state.value,
            extra=build_log_context(
                org_id=self.tenant.organization_id,
                user_id=self.actor.user_id,
                appointment_id=appointment.appointment_id,
            ),
        )
        await self._dispatch(jobs)
        return appointment

    async def transition_appointment(
        self,
        appointment_id: str,
        event: AppointmentEvent | str,
        metadata: dict[str, Any] | None = None,
    ) -> Appointment:
        metadata = metadata or {}
        async with unit_of_work(self.db):
            appointment = await self._get(appointment_id, lock=True)
            try:
                event = AppointmentEvent(event)
            except ValueError:
                raise InvalidStateTransition(appointment.state, str(event), "unknown event") from None
            now = self.clock()
            ensure_authorized(self.actor, event, appointment, now=now)
            plan = plan_transition(appointment, event, self._context(now, metadata.get("reason")))
            jobs = await self._apply(appointment, plan)

        logger.info(
            "appointment %s: %s -> %s",
            plan.event.value,
            plan.from_state.value,
            plan.to_state.value,
            extra=build_log_context(
                org_id=self.tenant.organization_id,
                user_id=self.actor.user_id,
                appointment_id=appointment.appointment_id,
                event=plan.event.value,
            ),
        )
        await self._dispatch(jobs)
        return appointment

    async def update_appointment(
        self,
        appointment_id: str,
        *,
        start: datetime | None = None,
        duration_minutes: int | None = None,
        notes: str | None = None,
    ) -> Appointment:
        """Reschedule or annotate an appointment, subject to the state gate."""
        async with unit_of_work(self.db):
            appointment = await self._get(appointment_id, lock=True)
            ensure_authorized(self.actor, "update", appointment, now=self.clock())
            if start is not None or duration_minutes is not None:
                new_duration = duration_minutes if duration_minutes is not None else appointment.duration_minutes
                if new_duration <= 0:
                    raise ValidationError("duration_minutes", "must be greater than 0")
                new_start = start if start is not None else as_utc(appointment.scheduled_at)
                new_start, new_end = validate_window(new_start, new_start + timedelta(minutes=new_duration))
                await self.resolver.ensure_bookable(
                    appointment.professional_id,
                    new_start,
                    new_end,
                    at_creation=True,
                    exclude_appointment_id=appointment.appointment_id,
                )
                appointment.scheduled_at = new_start
                appointment.ends_at = new_end
                appointment.duration_minutes = new_duration
                await self.resolver.release_slots(appointment.appointment_id)
            if notes is not None:
                appointment.notes = notes
            await self.db.flush()
        return appointment

    async def delete_appointment(self, appointment_id: str) -> None:
        """Administrative removal. Appointments with ledger history are kept."""
        async with unit_of_work(self.db):
            appointment = await self._get(appointment_id, lock=True)
            ensure_authorized(self.actor, "destroy", appointment, now=self.clock())
            history = await self.db.execute(
                self.tenant.scoped(
                    select(CreditTransaction.transaction_id).where(
                        CreditTransaction.appointment_id == appointment.appointment_id
                    ),
                    CreditTransaction,
                )
            )
            if history.first() is not None:
                raise ValidationError("appointment_id", "appointment has credit transactions")
            await self.resolver.release_slots(appointment.appointment_id)
            await self.db.delete(appointment)

    async def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = await self._get(appointment_id)
        ensure_authorized(self.actor, "show", appointment, now=self.clock())
        return appointment

    async def list_appointments(
        self,
        *,
        state: AppointmentState | None = None,
        professional_id: str | None = None,
        start_from: datetime | None = None,
        start_until: datetime | None = None,
    ) -> list[Appointment]:
        ensure_authorized(self.actor, "index", ResourceType.APPOINTMENTS)
        stmt = self.tenant.scoped(
            select(Appointment).where(policy_scope(self.actor, ResourceType.APPOINTMENTS)),
            Appointment,
        )
        if state is not None:
            stmt = stmt.where(Appointment.state == state)
        if professional_id is not None:
            stmt = stmt.where(Appointment.professional_id == professional_id)
        if start_from is not None:
            stmt = stmt.where(Appointment.scheduled_at >= as_utc(start_from))
        if start_until is not None:
            stmt = stmt.where(Appointment.scheduled_at < as_utc(start_until))
        result = await self.db.execute(stmt.order_by(Appointment.scheduled_at))
        return list(result.scalars().all())

    async def is_expired(self, appointment_id: str) -> bool:
        appointment = await self.get_appointment(appointment_id)
        return is_expired(appointment, self.clock())

    async def expire_pre_confirmed(self) -> list[str]:
        """Cancel every expired pre-confirmed appointment through the normal transition path.

        Runs as an admin or secretary, who may cancel any appointment in the tenant.
        """
        if not self.actor.role_keys & SWEEP_ROLES:
            raise AuthorizationDenied("the expiry sweep must run as an admin or secretary")
        now = self.clock()
        result = await self.db.execute(
            self.tenant.scoped(
                select(Appointment.appointment_id).where(
                    Appointment.state == AppointmentState.PRE_CONFIRMED,
                    Appointment.expires_at <= now,
                ),
                Appointment,
            )
        )
        expired: list[str] = []
        for appointment_id in result.scalars().all():
            try:
                await self.transition_appointment(appointment_id, AppointmentEvent.CANCEL, {"reason": EXPIRED_REASON})
            except InvalidStateTransition:
                # Confirmed or cancelled by someone else since the query ran.
                logger.info("skipping expiry of %s, state changed", appointment_id)
                continue
            expired.append(appointment_id)
        return expired

    def _context(self, now: datetime | None = None, reason: str | None = None) -> TransitionContext:
        return TransitionContext(
            now=now or self.clock(),
            actor_id=self.actor.user_id,
            reason=reason,
            pre_confirmation_ttl=timedelta(hours=settings.pre_confirmation_ttl_hours),
            refund_window=timedelta(hours=settings.refund_window_hours),
            default_credits=settings.default_credits_per_appointment,
        )

    async def _apply(self, appointment: Appointment, plan: TransitionPlan) -> list[EnqueueJob]:
        """Run a plan inside the caller's transaction and return the jobs to dispatch after commit."""
        if plan.of_type(RequireAvailability):
            await self.resolver.ensure_bookable(
                appointment.professional_id,
                as_utc(appointment.scheduled_at),
                as_utc(appointment.ends_at),
                at_creation=False,
                exclude_appointment_id=appointment.appointment_id,
            )

        result = await self.db.execute(
            update(Appointment)
            .where(
                Appointment.appointment_id == appointment.appointment_id,
                Appointment.organization_id == self.tenant.organization_id,
                Appointment.state == plan.from_state,
            )
            .values(**plan.changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateTransition(plan.from_state, plan.event, "appointment was modified concurrently")
        for key, value in plan.changes.items():
            set_committed_value(appointment, key, value)

        for command in plan.commands:
            if isinstance(command, DebitCredits):
                balance = await self.ledger.balance_for(command.user_id, lock=True, create=True)
                await self.ledger.debit(
                    balance,
                    command.amount,
                    appointment_id=appointment.appointment_id,
                    metadata={"event": plan.event.value},
                )
            elif isinstance(command, RefundCharges):
                charged = await self.ledger.net_charged_for_appointment(appointment.appointment_id)
                if charged:
                    balance = await self.ledger.balance_for(command.user_id, lock=True)
                    await self.ledger.refund(
                        balance,
                        charged,
                        appointment_id=appointment.appointment_id,
                        metadata={"event": plan.event.value, "reason": appointment.cancellation_reason},
                    )

        if plan.to_state == AppointmentState.CANCELLED:
            await self.resolver.release_slots(appointment.appointment_id)
        return plan.of_type(EnqueueJob)

    async def _dispatch(self, jobs: list[EnqueueJob]) -> None:
        for job in jobs:
            await dispatch(self.jobs, job.name, job.payload, job.delay)

    async def _get(self, appointment_id: str, *, lock: bool = False) -> Appointment:
        stmt = self.tenant.scoped(select(Appointment).where(Appointment.appointment_id == appointment_id), Appointment)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        appointment = result.scalar_one_or_none()
        if appointment is None:
            raise NotFoundError("Appointment")
        return appointment

    async def _get_user(self, user_id: str, label: str) -> User:
        result = await self.db.execute(
            self.tenant.scoped(select(User).where(User.user_id == user_id, User.is_active.is_(True)), User)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError(label)
        return user

    async def _get_student(self, student_id: str) -> Student:
        result = await self.db.execute(
            self.tenant.scoped(select(Student).where(Student.student_id == student_id), Student)
        )
        student = result.scalar_one_or_none()
        if student is None:
            raise NotFoundError("Student")
        return student


def _session_price(professional: Professional, duration_minutes: int) -> Decimal | None:
    if professional.hourly_rate is None:
        return None
    price = Decimal(professional.hourly_rate) * Decimal(duration_minutes) / Decimal(60)
    return price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
