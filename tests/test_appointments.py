from datetime import date, timedelta

import pytest
from sqlalchemy import select, update

from helpers import at
from src.core.exceptions import (
    AuthorizationDenied,
    InsufficientCredits,
    InvalidStateTransition,
    NotFoundError,
    SchedulingConflict,
    ValidationError,
)
from src.modules.appointments.models import Appointment
from src.modules.appointments.service import EXPIRED_REASON
from src.modules.appointments.state_machine import plan_transition
from src.modules.credits.models import CreditBalance, CreditTransaction
from src.modules.users.models import Student
from src.shared.enums import AppointmentEvent, AppointmentState, TransactionType


async def _balance(db_session, user_id):
    result = await db_session.execute(
        select(CreditBalance).where(CreditBalance.user_id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _state(db_session, appointment_id):
    result = await db_session.execute(select(Appointment.state).where(Appointment.appointment_id == appointment_id))
    return result.scalar_one()


async def _book_with_credits(clinic, start=None):
    service = clinic.appointments(clinic.client)
    return await service.book_appointment(
        clinic.professional.user_id,
        clinic.client.user_id,
        start or at(10),
        60,
        uses_credits=True,
    )


@pytest.mark.asyncio
async def test_credit_lifecycle_confirm_then_cancel_with_refund(clinic, db_session):
    await clinic.credits(clinic.secretary).purchase_credits(clinic.client.user_id, 3)
    appointment = await _book_with_credits(clinic)
    assert appointment.state == AppointmentState.PRE_CONFIRMED
    assert appointment.price == 60

    client_service = clinic.appointments(clinic.client)
    confirmed = await client_service.transition_appointment(appointment.appointment_id, "confirm")
    assert confirmed.state == AppointmentState.CONFIRMED
    assert confirmed.credits_used == 1
    balance = await _balance(db_session, clinic.client.user_id)
    assert (balance.balance, balance.lifetime_used) == (2, 1)

    cancelled = await client_service.transition_appointment(
        appointment.appointment_id, "cancel", {"reason": "travelling"}
    )
    assert cancelled.state == AppointmentState.CANCELLED
    assert cancelled.cancellation_reason == "travelling"
    assert cancelled.cancelled_by_id == clinic.client.user_id
    balance = await _balance(db_session, clinic.client.user_id)
    assert balance.balance == 3

    result = await db_session.execute(
        select(CreditTransaction.transaction_type, CreditTransaction.amount)
        .where(CreditTransaction.appointment_id == appointment.appointment_id)
        .order_by(CreditTransaction.created_at, CreditTransaction.transaction_id)
    )
    movements = sorted(result.all(), key=lambda row: row.amount)
    assert movements == [(TransactionType.APPOINTMENT_DEBIT, -1), (TransactionType.CANCELLATION_REFUND, 1)]


@pytest.mark.asyncio
async def test_late_cancellation_keeps_the_charge(clinic, db_session):
    await clinic.credits(clinic.secretary).purchase_credits(clinic.client.user_id, 2)
    appointment = await _book_with_credits(clinic)
    service = clinic.appointments(clinic.secretary)
    await service.transition_appointment(appointment.appointment_id, "confirm")

    clinic.clock.set(at(8))
    await service.transition_appointment(appointment.appointment_id, "cancel")
    balance = await _balance(db_session, clinic.client.user_id)
    assert balance.balance == 1


@pytest.mark.asyncio
async def test_confirm_without_credits_rolls_back(clinic, db_session):
    appointment = await _book_with_credits(clinic)
    appointment_id = appointment.appointment_id

    with pytest.raises(InsufficientCredits):
        await clinic.appointments(clinic.client).transition_appointment(appointment_id, "confirm")

    assert await _state(db_session, appointment_id) == AppointmentState.PRE_CONFIRMED
    count = await db_session.execute(
        select(CreditTransaction.transaction_id).where(CreditTransaction.appointment_id == appointment_id)
    )
    assert count.all() == []


@pytest.mark.asyncio
async def test_executed_appointment_cannot_be_confirmed(clinic):
    desk = clinic.appointments(clinic.secretary)
    appointment = await desk.book_appointment(clinic.professional.user_id, clinic.client.user_id, at(10), 60)
    appointment_id = appointment.appointment_id
    await desk.transition_appointment(appointment_id, AppointmentEvent.CONFIRM)

    clinic.clock.set(at(10, 5))
    executed = await clinic.appointments(clinic.professional).transition_appointment(appointment_id, "execute")
    assert executed.state == AppointmentState.EXECUTED
    assert [job.job_name for job in clinic.jobs.named("session_summary")] == ["session_summary"]

    with pytest.raises(InvalidStateTransition) as exc_info:
        await desk.transition_appointment(appointment_id, "confirm")
    assert exc_info.value.from_state == AppointmentState.EXECUTED


@pytest.mark.asyncio
async def test_execute_before_start_is_rejected(clinic):
    desk = clinic.appointments(clinic.secretary)
    appointment = await desk.book_appointment(clinic.professional.user_id, clinic.client.user_id, at(10), 60)
    await desk.transition_appointment(appointment.appointment_id, "confirm")
    with pytest.raises(InvalidStateTransition):
        await clinic.appointments(clinic.professional).transition_appointment(appointment.appointment_id, "execute")


@pytest.mark.asyncio
async def test_roles_are_enforced_on_transitions(clinic):
    desk = clinic.appointments(clinic.secretary)
    appointment = await desk.book_appointment(clinic.professional.user_id, clinic.client.user_id, at(10), 60)
    appointment_id = appointment.appointment_id

    with pytest.raises(AuthorizationDenied):
        await clinic.appointments(clinic.other_client).transition_appointment(appointment_id, "confirm")
    with pytest.raises(AuthorizationDenied):
        await clinic.appointments(clinic.professional).transition_appointment(appointment_id, "confirm")

    await desk.transition_appointment(appointment_id, "confirm")
    clinic.clock.set(at(10, 30))
    with pytest.raises(AuthorizationDenied):
        await clinic.appointments(clinic.client).transition_appointment(appointment_id, "cancel")


@pytest.mark.asyncio
async def test_client_cannot_book_for_someone_else(clinic):
    with pytest.raises(AuthorizationDenied):
        await clinic.appointments(clinic.client).create_appointment(
            clinic.professional.user_id, clinic.other_client.user_id, at(10), 60
        )


@pytest.mark.asyncio
async def test_student_must_belong_to_client(clinic, db_session):
    child = await clinic.users(clinic.client).create_student(clinic.client.user_id, "Kit", "Tester")
    service = clinic.appointments(clinic.secretary)
    with pytest.raises(ValidationError):
        await service.create_appointment(
            clinic.professional.user_id, clinic.other_client.user_id, at(10), 60, child.student_id
        )
    booked = await service.create_appointment(
        clinic.professional.user_id, clinic.client.user_id, at(10), 60, child.student_id
    )
    assert booked.student_id == child.student_id


@pytest.mark.asyncio
async def test_expired_pre_confirmations_are_swept(clinic):
    appointment = await clinic.appointments(clinic.client).book_appointment(
        clinic.professional.user_id, clinic.client.user_id, at(10), 60
    )
    appointment_id = appointment.appointment_id
    reminders = clinic.jobs.named("appointment_reminder")
    assert reminders and reminders[0].delay == timedelta(hours=24)

    admin = clinic.appointments(clinic.admin)
    assert await admin.expire_pre_confirmed() == []

    clinic.clock.set(at(9, 30))
    assert await admin.is_expired(appointment_id)
    with pytest.raises(InvalidStateTransition):
        await clinic.appointments(clinic.client).transition_appointment(appointment_id, "confirm")

    for actor in (clinic.client, clinic.professional):
        with pytest.raises(AuthorizationDenied):
            await clinic.appointments(actor).expire_pre_confirmed()
    assert await _state(clinic.db, appointment_id) == AppointmentState.PRE_CONFIRMED

    assert await clinic.appointments(clinic.secretary).expire_pre_confirmed() == [appointment_id]
    swept = await admin.get_appointment(appointment_id)
    assert swept.state == AppointmentState.CANCELLED
    assert swept.cancellation_reason == EXPIRED_REASON


@pytest.mark.asyncio
async def test_stale_state_write_is_rejected(clinic, db_session):
    service = clinic.appointments(clinic.secretary)
    appointment = await service.book_appointment(clinic.professional.user_id, clinic.client.user_id, at(10), 60)
    appointment_id = appointment.appointment_id
    plan = plan_transition(appointment, AppointmentEvent.CONFIRM, service._context())

    await db_session.execute(
        update(Appointment)
        .where(Appointment.appointment_id == appointment_id)
        .values(state=AppointmentState.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    with pytest.raises(InvalidStateTransition):
        await service._apply(appointment, plan)
    await db_session.rollback()
    assert await _state(db_session, appointment_id) == AppointmentState.PRE_CONFIRMED


@pytest.mark.asyncio
async def test_update_respects_state_gate(clinic):
    client_service = clinic.appointments(clinic.client)
    draft = await client_service.create_appointment(clinic.professional.user_id, clinic.client.user_id, at(10), 60)
    draft_id = draft.appointment_id
    moved = await client_service.update_appointment(draft_id, start=at(13), notes="afternoon please")
    assert moved.ends_at == at(14)
    assert moved.notes == "afternoon please"

    desk = clinic.appointments(clinic.secretary)
    await desk.transition_appointment(draft_id, "pre_confirm")
    await desk.transition_appointment(draft_id, "confirm")
    with pytest.raises(AuthorizationDenied):
        await client_service.update_appointment(draft_id, notes="too late")
    updated = await desk.update_appointment(draft_id, notes="front desk note")
    assert updated.notes == "front desk note"


@pytest.mark.asyncio
async def test_list_is_scoped_by_role(clinic):
    desk = clinic.appointments(clinic.secretary)
    mine = await desk.book_appointment(clinic.professional.user_id, clinic.client.user_id, at(10), 60)
    theirs = await desk.book_appointment(clinic.professional.user_id, clinic.other_client.user_id, at(12), 60)

    client_view = await clinic.appointments(clinic.client).list_appointments()
    assert [a.appointment_id for a in client_view] == [mine.appointment_id]
    everyone = await desk.list_appointments()
    assert {a.appointment_id for a in everyone} == {mine.appointment_id, theirs.appointment_id}
    assert len(await clinic.appointments(clinic.professional).list_appointments(state=AppointmentState.PRE_CONFIRMED)) == 2

    with pytest.raises(AuthorizationDenied):
        await clinic.appointments(clinic.client).get_appointment(theirs.appointment_id)


@pytest.mark.asyncio
async def test_only_drafts_can_be_deleted(clinic, db_session):
    await clinic.credits(clinic.admin).purchase_credits(clinic.client.user_id, 1)
    appointment = await _book_with_credits(clinic)
    appointment_id = appointment.appointment_id
    admin = clinic.appointments(clinic.admin)
    await admin.transition_appointment(appointment_id, "confirm")
    with pytest.raises(AuthorizationDenied):
        await admin.delete_appointment(appointment_id)
    assert await _state(db_session, appointment_id) == AppointmentState.CONFIRMED

    draft = await admin.create_appointment(clinic.professional.user_id, clinic.client.user_id, at(14), 60)
    draft_id = draft.appointment_id
    with pytest.raises(AuthorizationDenied):
        await clinic.appointments(clinic.client).delete_appointment(draft_id)
    await clinic.appointments(clinic.secretary).delete_appointment(draft_id)
    with pytest.raises(NotFoundError):
        await admin.get_appointment(draft_id)


@pytest.mark.asyncio
async def test_delete_keeps_drafts_with_ledger_history(clinic):
    await clinic.credits(clinic.admin).purchase_credits(clinic.client.user_id, 2)
    admin = clinic.appointments(clinic.admin)
    draft = await admin.create_appointment(clinic.professional.user_id, clinic.client.user_id, at(14), 60)
    draft_id = draft.appointment_id
    await clinic.credits(clinic.admin).debit_credits(clinic.client.user_id, 1, draft_id)
    with pytest.raises(ValidationError):
        await admin.delete_appointment(draft_id)
    assert (await admin.get_appointment(draft_id)).state == AppointmentState.DRAFT


@pytest.mark.asyncio
async def test_notifications_follow_commits(clinic):
    await clinic.appointments(clinic.secretary).book_appointment(
        clinic.professional.user_id, clinic.client.user_id, at(10), 60
    )
    assert [job.payload["template"] for job in clinic.jobs.named("email_notification")] == [
        "appointment_confirmation_reminder"
    ]
    with pytest.raises(SchedulingConflict):
        await clinic.appointments(clinic.secretary).book_appointment(
            clinic.professional.user_id, clinic.client.user_id, at(10), 60
        )
    assert len(clinic.jobs.named("email_notification")) == 1


@pytest.mark.asyncio
async def test_family_student_appointments_visible_to_parent(clinic):
    child = await clinic.users(clinic.client).create_student(clinic.client.user_id, "Kit", "Tester")
    assert isinstance(child, Student)
    parent = await clinic.reload(clinic.client)
    assert child.student_id in parent.family_student_ids


@pytest.mark.asyncio
async def test_student_age_rules(clinic):
    users = clinic.users(clinic.client)
    parent_id = clinic.client.user_id
    for born in (date(2031, 1, 1), date(2000, 1, 1), date(1900, 1, 1)):
        with pytest.raises(ValidationError) as exc_info:
            await users.create_student(parent_id, "Out", "Of Range", born)
        assert exc_info.value.field == "date_of_birth"

    infant = await users.create_student(parent_id, "Bea", "Tester", date(2029, 6, 1))
    infant_id = infant.student_id
    service = clinic.appointments(clinic.secretary)
    with pytest.raises(ValidationError) as exc_info:
        await service.book_appointment(clinic.professional.user_id, parent_id, at(10), 60, infant_id)
    assert exc_info.value.field == "student_id"

    # Turns three on the current date.
    preschooler = await users.create_student(parent_id, "Kit", "Tester", date(2027, 1, 6))
    booked = await service.book_appointment(
        clinic.professional.user_id, parent_id, at(10), 60, preschooler.student_id
    )
    assert booked.state == AppointmentState.PRE_CONFIRMED
