"""Appointments API routes."""

from datetime import datetime

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db
from src.core.deps import get_tenant
from src.core.tenancy import TenantContext
from src.modules.appointments.models import Appointment
from src.modules.appointments.schemas import (
    AppointmentCreate,
    AppointmentPublic,
    AppointmentUpdate,
    TransitionRequest,
)
from src.modules.appointments.service import AppointmentService
from src.modules.jobs.queue import JobQueue, get_job_queue
from src.shared.enums import AppointmentEvent, AppointmentState

router = APIRouter(prefix="/api/v1/appointments", tags=["appointments"])


def get_service(
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
    jobs: JobQueue = Depends(get_job_queue),
) -> AppointmentService:
    return AppointmentService(db, tenant, jobs)


@router.get("", response_model=list[AppointmentPublic])
async def list_appointments(
    state: AppointmentState | None = None,
    professional_id: str | None = None,
    start_from: datetime | None = None,
    start_until: datetime | None = None,
    service: AppointmentService = Depends(get_service),
) -> list[Appointment]:
    return await service.list_appointments(
        state=state,
        professional_id=professional_id,
        start_from=start_from,
        start_until=start_until,
    )


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    payload: AppointmentCreate,
    service: AppointmentService = Depends(get_service),
) -> Appointment:
    create = service.book_appointment if payload.pre_confirm else service.create_appointment
    return await create(
        payload.professional_id,
        payload.client_id,
        payload.scheduled_at,
        payload.duration_minutes,
        payload.student_id,
        price=payload.price,
        uses_credits=payload.uses_credits,
        credits_used=payload.credits_used,
        notes=payload.notes,
    )


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_appointment(
    appointment_id: str,
    service: AppointmentService = Depends(get_service),
) -> Appointment:
    return await service.get_appointment(appointment_id)


@router.patch("/{appointment_id}", response_model=AppointmentPublic)
async def update_appointment(
    appointment_id: str,
    payload: AppointmentUpdate,
    service: AppointmentService = Depends(get_service),
) -> Appointment:
    return await service.update_appointment(
        appointment_id,
        start=payload.scheduled_at,
        duration_minutes=payload.duration_minutes,
        notes=payload.notes,
    )


@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
    appointment_id: str,
    service: AppointmentService = Depends(get_service),
) -> None:
    await service.delete_appointment(appointment_id)


@router.post("/{appointment_id}/transitions/{event}", response_model=AppointmentPublic)
async def transition_appointment(
    appointment_id: str,
    event: AppointmentEvent,
    payload: TransitionRequest | None = Body(None),
    service: AppointmentService = Depends(get_service),
) -> Appointment:
    metadata = payload.metadata() if payload else {}
    return await service.transition_appointment(appointment_id, event, metadata)
