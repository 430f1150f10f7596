"""User, role, student and professional routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db
from src.core.deps import get_current_user, get_tenant
from src.core.tenancy import TenantContext
from src.modules.users.models import Professional, Student, User
from src.modules.users.schemas import (
    ProfessionalCreate,
    ProfessionalPublic,
    RoleAssignment,
    RoleAssignmentResult,
    StudentCreate,
    StudentPublic,
    UserCreate,
    UserPublic,
)
from src.modules.users.service import UserService
from src.shared.enums import RoleKey

router = APIRouter(prefix="/api/v1/users", tags=["users"])


def get_service(
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
) -> UserService:
    return UserService(db, tenant)


@router.get("/me", response_model=UserPublic)
async def get_me(current_user: User = Depends(get_current_user)) -> User:
    return current_user


@router.get("", response_model=list[UserPublic])
async def list_users(service: UserService = Depends(get_service)) -> list[User]:
    return await service.list_users()


@router.post("", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, service: UserService = Depends(get_service)) -> User:
    return await service.create_user(
        payload.email,
        payload.first_name,
        payload.last_name,
        phone_number=payload.phone_number,
        role_key=payload.role,
    )


@router.get("/students", response_model=list[StudentPublic])
async def list_students(service: UserService = Depends(get_service)) -> list[Student]:
    return await service.list_students()


@router.post("/students", response_model=StudentPublic, status_code=status.HTTP_201_CREATED)
async def create_student(payload: StudentCreate, service: UserService = Depends(get_service)) -> Student:
    return await service.create_student(
        payload.parent_id,
        payload.first_name,
        payload.last_name,
        payload.date_of_birth,
    )


@router.get("/{user_id}", response_model=UserPublic)
async def get_user(user_id: str, service: UserService = Depends(get_service)) -> User:
    return await service.get_user(user_id)


@router.post("/{user_id}/roles", response_model=RoleAssignmentResult)
async def assign_role(
    user_id: str,
    payload: RoleAssignment,
    service: UserService = Depends(get_service),
) -> RoleAssignmentResult:
    changed = await service.assign_role(user_id, payload.role)
    return RoleAssignmentResult(user_id=user_id, role=payload.role, changed=changed)


@router.delete("/{user_id}/roles/{role_key}", response_model=RoleAssignmentResult)
async def revoke_role(
    user_id: str,
    role_key: RoleKey,
    service: UserService = Depends(get_service),
) -> RoleAssignmentResult:
    changed = await service.revoke_role(user_id, role_key)
    return RoleAssignmentResult(user_id=user_id, role=role_key, changed=changed)


@router.post("/{user_id}/professional", response_model=ProfessionalPublic, status_code=status.HTTP_201_CREATED)
async def create_professional(
    user_id: str,
    payload: ProfessionalCreate,
    service: UserService = Depends(get_service),
) -> Professional:
    return await service.create_professional(user_id, **payload.model_dump())
