"""Credit balance routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db
from src.core.deps import get_tenant
from src.core.tenancy import TenantContext
from src.modules.credits.models import CreditBalance, CreditTransaction
from src.modules.credits.schemas import (
    CreditAdjustment,
    CreditBalancePublic,
    CreditPurchase,
    CreditTransactionPublic,
)
from src.modules.credits.service import CreditService

router = APIRouter(prefix="/api/v1/credits", tags=["credits"])


def get_service(
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
) -> CreditService:
    return CreditService(db, tenant)


@router.get("", response_model=list[CreditBalancePublic])
async def list_balances(service: CreditService = Depends(get_service)) -> list[CreditBalance]:
    return await service.list_balances()


@router.get("/me", response_model=CreditBalancePublic)
async def my_balance(service: CreditService = Depends(get_service)) -> CreditBalance:
    return await service.get_balance(service.actor.user_id)


@router.get("/{user_id}", response_model=CreditBalancePublic)
async def user_balance(user_id: str, service: CreditService = Depends(get_service)) -> CreditBalance:
    return await service.get_balance(user_id)


@router.get("/{user_id}/transactions", response_model=list[CreditTransactionPublic])
async def user_transactions(user_id: str, service: CreditService = Depends(get_service)) -> list[CreditTransaction]:
    return await service.transactions_for(user_id)


@router.post("/{user_id}/purchase", response_model=CreditTransactionPublic, status_code=status.HTTP_201_CREATED)
async def purchase(
    user_id: str,
    payload: CreditPurchase,
    service: CreditService = Depends(get_service),
) -> CreditTransaction:
    metadata = {"reference": payload.reference} if payload.reference else None
    return await service.purchase_credits(user_id, payload.amount, metadata)


@router.post("/{user_id}/adjust", response_model=CreditTransactionPublic, status_code=status.HTTP_201_CREATED)
async def adjust(
    user_id: str,
    payload: CreditAdjustment,
    service: CreditService = Depends(get_service),
) -> CreditTransaction:
    metadata = {"note": payload.note} if payload.note else None
    return await service.adjust_credits(user_id, payload.amount, metadata)
