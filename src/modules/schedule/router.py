"""Schedule routes.

Professionals are addressed by their user id, the same id appointments carry.
"""

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db, unit_of_work
from src.core.deps import get_tenant
from src.core.exceptions import NotFoundError
from src.core.tenancy import TenantContext
from src.modules.authz.policy import ensure_authorized
from src.modules.schedule.models import AvailabilityRule, TimeSlot
from src.modules.schedule.schemas import (
    AvailabilityCheck,
    AvailabilityRuleCreate,
    AvailabilityRulePublic,
    AvailabilityWindow,
    TimeSlotCreate,
    TimeSlotPublic,
)
from src.modules.schedule.service import AvailabilityResolver, validate_window
from src.modules.users.models import Professional

router = APIRouter(prefix="/api/v1/schedule", tags=["schedule"])


def get_resolver(
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
) -> AvailabilityResolver:
    return AvailabilityResolver(db, tenant)


async def _professional(resolver: AvailabilityResolver, user_id: str, action: str) -> Professional:
    professional = await resolver.professional_for_user(user_id)
    if professional is None:
        raise NotFoundError("Professional")
    ensure_authorized(resolver.tenant.actor, action, professional)
    return professional


@router.get("/availability", response_model=AvailabilityCheck)
async def availability(
    professional_id: str = Query(...),
    start: datetime = Query(...),
    end: datetime = Query(...),
    resolver: AvailabilityResolver = Depends(get_resolver),
) -> AvailabilityCheck:
    professional = await _professional(resolver, professional_id, "show")
    start, end = validate_window(start, end)
    conflicts = await resolver.find_conflicts(professional_id, start, end)
    within = await resolver.within_rules(professional, start, end)
    return AvailabilityCheck(
        professional_id=professional_id,
        start=start,
        end=end,
        available=within and not conflicts,
        conflicting_ids=[appointment.appointment_id for appointment in conflicts],
    )


@router.get("/professionals/{professional_id}/windows", response_model=list[AvailabilityWindow])
async def open_windows(
    professional_id: str,
    date_value: date = Query(..., alias="date"),
    duration_minutes: int | None = Query(None, gt=0),
    resolver: AvailabilityResolver = Depends(get_resolver),
) -> list[AvailabilityWindow]:
    await _professional(resolver, professional_id, "show")
    windows = await resolver.open_windows(professional_id, date_value, duration_minutes)
    return [AvailabilityWindow(start=start, end=end) for start, end in windows]


@router.post(
    "/professionals/{professional_id}/rules",
    response_model=AvailabilityRulePublic,
    status_code=status.HTTP_201_CREATED,
)
async def create_rule(
    professional_id: str,
    payload: AvailabilityRuleCreate,
    resolver: AvailabilityResolver = Depends(get_resolver),
) -> AvailabilityRule:
    professional = await _professional(resolver, professional_id, "update")
    async with unit_of_work(resolver.db):
        rule = await resolver.create_rule(professional, payload.day_of_week, payload.start_time, payload.end_time)
    return rule


@router.post(
    "/professionals/{professional_id}/slots",
    response_model=TimeSlotPublic,
    status_code=status.HTTP_201_CREATED,
)
async def create_slot(
    professional_id: str,
    payload: TimeSlotCreate,
    resolver: AvailabilityResolver = Depends(get_resolver),
) -> TimeSlot:
    professional = await _professional(resolver, professional_id, "update")
    async with unit_of_work(resolver.db):
        slot = await resolver.create_slot(professional, payload.slot_date, payload.start_time, payload.end_time)
    return slot


@router.post(
    "/professionals/{professional_id}/rules/from-profile",
    response_model=list[AvailabilityRulePublic],
    status_code=status.HTTP_201_CREATED,
)
async def create_rules_from_profile(
    professional_id: str,
    resolver: AvailabilityResolver = Depends(get_resolver),
) -> list[AvailabilityRule]:
    professional = await _professional(resolver, professional_id, "update")
    async with unit_of_work(resolver.db):
        rules = await resolver.rules_from_availability_map(professional)
    return rules
