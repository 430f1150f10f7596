from datetime import time, timedelta

import pytest
from sqlalchemy import select

from helpers import MONDAY, at
from src.core.database import unit_of_work
from src.core.exceptions import NotFoundError, SchedulingConflict, ValidationError
from src.modules.schedule.models import TimeSlot
from src.shared.enums import AppointmentEvent, AppointmentState, Weekday


async def _book(clinic, start, minutes=60, actor=None):
    service = clinic.appointments(actor or clinic.secretary)
    return await service.book_appointment(clinic.professional.user_id, clinic.client.user_id, start, minutes)


@pytest.mark.asyncio
async def test_overlapping_booking_is_rejected(clinic):
    first = await _book(clinic, at(10))
    first_id = first.appointment_id
    assert first.state == AppointmentState.PRE_CONFIRMED

    with pytest.raises(SchedulingConflict) as exc_info:
        await _book(clinic, at(10, 30))
    assert exc_info.value.conflicting_ids == [first_id]


@pytest.mark.asyncio
async def test_adjacent_bookings_do_not_conflict(clinic):
    await _book(clinic, at(10))
    second = await _book(clinic, at(11))
    earlier = await _book(clinic, at(9))
    assert second.state == AppointmentState.PRE_CONFIRMED
    assert earlier.state == AppointmentState.PRE_CONFIRMED


@pytest.mark.asyncio
async def test_conflict_detection_is_symmetric(clinic):
    booked = await _book(clinic, at(12), minutes=90)
    resolver = clinic.resolver()
    pro = clinic.professional.user_id

    assert [a.appointment_id for a in await resolver.find_conflicts(pro, at(13), at(14))] == [booked.appointment_id]
    assert [a.appointment_id for a in await resolver.find_conflicts(pro, at(11), at(12, 30))] == [booked.appointment_id]
    assert await resolver.find_conflicts(pro, at(13, 30), at(14)) == []
    assert await resolver.find_conflicts(pro, at(12), at(13, 30), exclude_appointment_id=booked.appointment_id) == []


@pytest.mark.asyncio
async def test_drafts_hold_no_time_until_pre_confirmed(clinic):
    service = clinic.appointments(clinic.secretary)
    pro, client = clinic.professional.user_id, clinic.client.user_id
    first = await service.create_appointment(pro, client, at(10), 60)
    second = await service.create_appointment(pro, client, at(10), 60)
    assert first.state == second.state == AppointmentState.DRAFT
    second_id = second.appointment_id

    await service.transition_appointment(first.appointment_id, AppointmentEvent.PRE_CONFIRM)
    with pytest.raises(SchedulingConflict):
        await service.transition_appointment(second_id, AppointmentEvent.PRE_CONFIRM)

    refreshed = await service.get_appointment(second_id)
    assert refreshed.state == AppointmentState.DRAFT


@pytest.mark.asyncio
async def test_cancelled_appointments_free_the_window(clinic):
    first = await _book(clinic, at(14))
    await clinic.appointments(clinic.secretary).transition_appointment(first.appointment_id, "cancel")
    again = await _book(clinic, at(14))
    assert again.state == AppointmentState.PRE_CONFIRMED


@pytest.mark.asyncio
async def test_bookings_must_fit_availability_rules(clinic):
    with pytest.raises(SchedulingConflict):
        await _book(clinic, at(16, 30))
    with pytest.raises(SchedulingConflict):
        await _book(clinic, at(10, day=MONDAY + timedelta(days=1)))


@pytest.mark.asyncio
async def test_bookings_need_lead_time(clinic):
    clinic.clock.set(at(9))
    with pytest.raises(ValidationError):
        await _book(clinic, at(10))
    with pytest.raises(ValidationError):
        await _book(clinic, at(8, 30))
    booked = await _book(clinic, at(11))
    assert booked.scheduled_at == at(11)


@pytest.mark.asyncio
async def test_window_validation(clinic):
    resolver = clinic.resolver()
    with pytest.raises(ValidationError):
        await resolver.find_conflicts(clinic.professional.user_id, at(11), at(10))
    with pytest.raises(ValidationError):
        await resolver.find_conflicts(clinic.professional.user_id, at(10).replace(tzinfo=None), at(11))
    with pytest.raises(ValidationError):
        await clinic.appointments(clinic.secretary).create_appointment(
            clinic.professional.user_id, clinic.client.user_id, at(10), 0
        )


@pytest.mark.asyncio
async def test_unknown_professional(clinic):
    with pytest.raises(NotFoundError):
        await clinic.appointments(clinic.secretary).book_appointment(
            clinic.client.user_id, clinic.client.user_id, at(10), 60
        )
    assert not await clinic.resolver().is_available(clinic.client.user_id, at(10), at(11))


@pytest.mark.asyncio
async def test_open_windows_skip_booked_time(clinic):
    await _book(clinic, at(10))
    windows = await clinic.resolver().open_windows(clinic.professional.user_id, MONDAY)
    starts = [start.hour for start, _ in windows]
    assert starts == [9, 11, 12, 13, 14, 15, 16]
    assert await clinic.resolver().open_windows(clinic.professional.user_id, MONDAY + timedelta(days=1)) == []


@pytest.mark.asyncio
async def test_overlapping_rules_are_rejected(clinic, db_session):
    resolver = clinic.resolver()
    with pytest.raises(ValidationError):
        async with unit_of_work(db_session):
            await resolver.create_rule(await clinic.get_profile(), int(Weekday.MONDAY), time(16, 0), time(18, 0))
    async with unit_of_work(db_session):
        rule = await resolver.create_rule(await clinic.get_profile(), int(Weekday.TUESDAY), time(9, 0), time(12, 0))
    assert rule.day_of_week == 2


@pytest.mark.asyncio
async def test_rules_from_availability_map(clinic, db_session):
    profile = await clinic.get_profile()
    profile.availability = {"wednesday": {"start": "08:00", "end": "12:00"}, "friday": None}
    async with unit_of_work(db_session):
        rules = await clinic.resolver().rules_from_availability_map(profile)
    assert [(r.day_of_week, r.start_time, r.end_time) for r in rules] == [(3, time(8, 0), time(12, 0))]

    profile.availability = {"someday": {"start": "08:00", "end": "12:00"}}
    with pytest.raises(ValidationError):
        await clinic.resolver().rules_from_availability_map(profile)


@pytest.mark.asyncio
async def test_time_slot_is_linked_and_released(clinic, db_session):
    resolver = clinic.resolver()
    async with unit_of_work(db_session):
        slot = await resolver.create_slot(await clinic.get_profile(), MONDAY, time(10, 0), time(11, 0))

    appointment = await _book(clinic, at(10))
    result = await db_session.execute(select(TimeSlot).where(TimeSlot.slot_id == slot.slot_id))
    slot = result.scalar_one()
    assert slot.appointment_id == appointment.appointment_id
    assert slot.available is False

    await clinic.appointments(clinic.secretary).transition_appointment(appointment.appointment_id, "cancel")
    await db_session.refresh(slot)
    assert slot.appointment_id is None
    assert slot.available is True


@pytest.mark.asyncio
async def test_booked_slot_cannot_be_booked_twice(clinic, db_session):
    resolver = clinic.resolver()
    async with unit_of_work(db_session):
        slot = await resolver.create_slot(await clinic.get_profile(), MONDAY, time(14, 0), time(15, 0))
    slot_id = slot.slot_id
    appointment = await _book(clinic, at(14))
    other = await _book(clinic, at(16))
    other_id = other.appointment_id

    result = await db_session.execute(select(TimeSlot).where(TimeSlot.slot_id == slot_id))
    slot = result.scalar_one()
    with pytest.raises(SchedulingConflict) as exc_info:
        await resolver.book_slot(slot, other)
    assert exc_info.value.conflicting_ids == [appointment.appointment_id]

    async with unit_of_work(db_session):
        await resolver.release_slot(slot)
        await resolver.book_slot(slot, other)
    assert slot.appointment_id == other_id
    assert slot.available is False
