"""Availability and conflict resolution for professionals."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import NotFoundError, SchedulingConflict, ValidationError
from src.core.tenancy import TenantContext
from src.modules.appointments.models import Appointment
from src.modules.organizations.models import Organization
from src.modules.schedule.models import AvailabilityRule, TimeSlot
from src.modules.users.models import Professional
from src.shared.clock import as_utc, localize, utcnow
from src.shared.enums import AppointmentState, Weekday

logger = logging.getLogger(__name__)

# States that do not occupy the professional's time.
NON_BLOCKING_STATES = (AppointmentState.CANCELLED, AppointmentState.DRAFT)


def validate_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """Normalize a booking window to UTC, rejecting empty or inverted ranges."""
    if start.tzinfo is None or end.tzinfo is None:
        raise ValidationError("scheduled_at", "must be timezone-aware")
    start, end = as_utc(start), as_utc(end)
    if end <= start:
        raise ValidationError("duration_minutes", "end must be after start")
    return start, end


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: adjacent intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def _parse_clock(value: str) -> time:
    return time.fromisoformat(value)


class AvailabilityResolver:
    def __init__(self, db: AsyncSession, tenant: TenantContext, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.tenant = tenant
        self.clock = clock
        self._timezone: str | None = None

    async def timezone_name(self) -> str:
        if self._timezone is None:
            result = await self.db.execute(
                self.tenant.scoped(select(Organization.settings), Organization)
            )
            org_settings = result.scalar_one_or_none() or {}
            self._timezone = org_settings.get("timezone") or settings.default_timezone
        return self._timezone

    async def professional_for_user(self, professional_user_id: str, *, lock: bool = False) -> Professional | None:
        """Resolve the professional profile of a user. ``lock`` serializes bookings per professional."""
        stmt = self.tenant.scoped(
            select(Professional).where(
                Professional.user_id == professional_user_id,
                Professional.active.is_(True),
            ),
            Professional,
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def active_rules(self, professional: Professional, weekday: Weekday) -> list[AvailabilityRule]:
        stmt = self.tenant.scoped(
            select(AvailabilityRule)
            .where(
                AvailabilityRule.professional_id == professional.professional_id,
                AvailabilityRule.day_of_week == int(weekday),
                AvailabilityRule.active.is_(True),
            )
            .order_by(AvailabilityRule.start_time),
            AvailabilityRule,
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def within_rules(self, professional: Professional, start: datetime, end: datetime) -> bool:
        """True when one active weekly rule contains the whole window (time of day only)."""
        tz_name = await self.timezone_name()
        local_start = localize(start, tz_name)
        local_end = localize(end, tz_name)
        if local_end.date() != local_start.date():
            return False
        rules = await self.active_rules(professional, Weekday.from_date(local_start.date()))
        start_clock, end_clock = local_start.time(), local_end.time()
        return any(rule.start_time <= start_clock and end_clock <= rule.end_time for rule in rules)

    async def find_conflicts(
        self,
        professional_user_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> list[Appointment]:
        start, end = validate_window(start, end)
        stmt = self.tenant.scoped(
            select(Appointment)
            .where(
                Appointment.professional_id == professional_user_id,
                Appointment.state.not_in(NON_BLOCKING_STATES),
                Appointment.scheduled_at < end,
                Appointment.ends_at > start,
            )
            .order_by(Appointment.scheduled_at),
            Appointment,
        )
        if exclude_appointment_id:
            stmt = stmt.where(Appointment.appointment_id != exclude_appointment_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def is_available(
        self,
        professional_user_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> bool:
        start, end = validate_window(start, end)
        professional = await self.professional_for_user(professional_user_id)
        if professional is None:
            return False
        if not await self.within_rules(professional, start, end):
            return False
        conflicts = await self.find_conflicts(professional_user_id, start, end, exclude_appointment_id)
        return not conflicts

    async def ensure_bookable(
        self,
        professional_user_id: str,
        start: datetime,
        end: datetime,
        *,
        at_creation: bool,
        exclude_appointment_id: str | None = None,
        lock: bool = True,
    ) -> Professional:
        """Raise unless the window can be booked. Creation also enforces lead time."""
        start, end = validate_window(start, end)
        if at_creation:
            now = self.clock()
            if start <= now:
                raise ValidationError("scheduled_at", "must be in the future")
            if start - now < timedelta(hours=settings.min_advance_booking_hours):
                raise ValidationError(
                    "scheduled_at",
                    f"must be at least {settings.min_advance_booking_hours} hours in advance",
                )

        professional = await self.professional_for_user(professional_user_id, lock=lock)
        if professional is None:
            raise NotFoundError("Professional")
        if not await self.within_rules(professional, start, end):
            raise SchedulingConflict(detail="Professional is not available at this time")
        conflicts = await self.find_conflicts(professional_user_id, start, end, exclude_appointment_id)
        if conflicts:
            raise SchedulingConflict(
                [appointment.appointment_id for appointment in conflicts],
                detail="Professional has a conflicting appointment",
            )
        return professional

    async def create_rule(
        self,
        professional: Professional,
        day_of_week: int,
        start_time: time,
        end_time: time,
    ) -> AvailabilityRule:
        self.tenant.ensure_owned(professional, "Professional")
        if not 0 <= day_of_week <= 6:
            raise ValidationError("day_of_week", "must be between 0 and 6")
        if end_time <= start_time:
            raise ValidationError("end_time", "must be after start time")

        rule = self.tenant.stamp(
            AvailabilityRule(
                professional_id=professional.professional_id,
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                active=True,
            )
        )
        for existing in await self.active_rules(professional, Weekday(day_of_week)):
            if existing.overlaps(rule):
                raise ValidationError("start_time", "overlaps an existing availability rule")
        self.db.add(rule)
        await self.db.flush()
        return rule

    async def rules_from_availability_map(self, professional: Professional) -> list[AvailabilityRule]:
        """Create weekly rules from the profile's ``{"monday": {"start": .., "end": ..}}`` map."""
        created: list[AvailabilityRule] = []
        for day_name, window in sorted((professional.availability or {}).items()):
            if not window:
                continue
            try:
                weekday = Weekday.from_name(day_name)
                start_time = _parse_clock(window["start"])
                end_time = _parse_clock(window["end"])
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError("availability", f"invalid entry for '{day_name}'") from exc
            created.append(await self.create_rule(professional, int(weekday), start_time, end_time))
        return created

    async def create_slot(self, professional: Professional, slot_date: date, start_time: time, end_time: time) -> TimeSlot:
        self.tenant.ensure_owned(professional, "Professional")
        if end_time <= start_time:
            raise ValidationError("end_time", "must be after start time")
        existing = await self.db.execute(
            self.tenant.scoped(
                select(TimeSlot.slot_id).where(
                    TimeSlot.professional_id == professional.professional_id,
                    TimeSlot.slot_date == slot_date,
                    TimeSlot.start_time < end_time,
                    TimeSlot.end_time > start_time,
                ),
                TimeSlot,
            )
        )
        if existing.first() is not None:
            raise ValidationError("start_time", "overlaps an existing time slot")
        slot = self.tenant.stamp(
            TimeSlot(
                professional_id=professional.professional_id,
                slot_date=slot_date,
                start_time=start_time,
                end_time=end_time,
                available=True,
            )
        )
        self.db.add(slot)
        await self.db.flush()
        return slot

    async def slot_for(self, professional: Professional, start: datetime) -> TimeSlot | None:
        local_start = localize(start, await self.timezone_name())
        result = await self.db.execute(
            self.tenant.scoped(
                select(TimeSlot)
                .where(
                    TimeSlot.professional_id == professional.professional_id,
                    TimeSlot.slot_date == local_start.date(),
                    TimeSlot.start_time == local_start.time().replace(tzinfo=None),
                )
                .with_for_update(),
                TimeSlot,
            )
        )
        return result.scalar_one_or_none()

    async def book_slot(self, slot: TimeSlot, appointment: Appointment) -> TimeSlot:
        self.tenant.ensure_owned(slot, "Time slot")
        if slot.appointment_id is not None or not slot.available:
            raise SchedulingConflict([slot.appointment_id] if slot.appointment_id else [], detail="Time slot already booked")
        slot.appointment_id = appointment.appointment_id
        slot.available = False
        await self.db.flush()
        return slot

    async def release_slot(self, slot: TimeSlot) -> TimeSlot:
        self.tenant.ensure_owned(slot, "Time slot")
        slot.appointment_id = None
        slot.available = True
        await self.db.flush()
        return slot

    async def release_slots(self, appointment_id: str) -> int:
        """Free every slot held by the appointment."""
        result = await self.db.execute(
            self.tenant.scoped(select(TimeSlot).where(TimeSlot.appointment_id == appointment_id), TimeSlot)
        )
        slots = list(result.scalars().all())
        for slot in slots:
            await self.release_slot(slot)
        return len(slots)

    async def open_windows(
        self,
        professional_user_id: str,
        target_date: date,
        duration_minutes: int | None = None,
    ) -> list[tuple[datetime, datetime]]:
        """Bookable windows on ``target_date`` (organization-local), stepping by session length."""
        professional = await self.professional_for_user(professional_user_id)
        if professional is None:
            raise NotFoundError("Professional")
        duration = timedelta(minutes=duration_minutes or professional.session_duration_minutes)
        if duration <= timedelta(0):
            raise ValidationError("duration_minutes", "must be greater than 0")

        tz = ZoneInfo(await self.timezone_name())
        day_start = datetime.combine(target_date, time.min, tz)
        rules = await self.active_rules(professional, Weekday.from_date(target_date))
        candidates: list[tuple[datetime, datetime]] = []
        for rule in rules:
            candidates.extend(
                _generate_windows(
                    as_utc(datetime.combine(target_date, rule.start_time, tz)),
                    as_utc(datetime.combine(target_date, rule.end_time, tz)),
                    duration,
                )
            )
        if not candidates:
            return []

        busy = await self.find_conflicts(professional_user_id, as_utc(day_start), as_utc(day_start + timedelta(days=1)))
        earliest = self.clock() + timedelta(hours=settings.min_advance_booking_hours)
        return [
            (start, end)
            for start, end in candidates
            if start >= earliest
            and not any(overlaps(start, end, as_utc(b.scheduled_at), as_utc(b.ends_at)) for b in busy)
        ]


def _generate_windows(start: datetime, end: datetime, duration: timedelta) -> list[tuple[datetime, datetime]]:
    windows: list[tuple[datetime, datetime]] = []
    cursor = start
    while cursor + duration <= end:
        windows.append((cursor, cursor + duration))
        cursor += duration
    return windows
