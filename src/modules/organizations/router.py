"""Organization provisioning routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db
from src.core.deps import get_platform_actor
from src.modules.authz.actor import Actor
from src.modules.organizations.models import Organization
from src.modules.organizations.schemas import OrganizationCreate, OrganizationPublic
from src.modules.organizations.service import create_organization

router = APIRouter(prefix="/api/v1/organizations", tags=["organizations"])


@router.post("", response_model=OrganizationPublic, status_code=status.HTTP_201_CREATED)
async def provision_organization(
    payload: OrganizationCreate,
    actor: Actor = Depends(get_platform_actor),
    db: AsyncSession = Depends(get_db),
) -> Organization:
    return await create_organization(
        db,
        actor,
        payload.name,
        payload.subdomain,
        email=payload.email,
        settings=payload.settings,
        admin=payload.admin.model_dump() if payload.admin else None,
    )
