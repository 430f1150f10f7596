"""FastAPI dependencies for authentication and tenant resolution."""

from collections.abc import AsyncIterator
from typing import Any

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db
from src.core.security import TokenDecodeError, decode_access_token
from src.core.tenancy import TenantContext, bind_tenant
from src.modules.authz.actor import Actor, load_actor
from src.modules.users.models import User

bearer_scheme = HTTPBearer(auto_error=False)


def _token_payload(credentials: HTTPAuthorizationCredentials | None) -> dict[str, Any]:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing authentication")
    try:
        payload = decode_access_token(credentials.credentials)
    except TokenDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
    if not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return payload


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> dict[str, Any]:
    return _token_payload(credentials)


async def get_current_user(
    payload: dict[str, Any] = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the token's user, restricted to the organization the token was issued for."""
    organization_id = payload.get("organization_id")
    if not organization_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no organization")
    result = await db.execute(
        select(User).where(User.user_id == payload["sub"], User.organization_id == organization_id)
    )
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User disabled")
    return user


async def get_actor(
    payload: dict[str, Any] = Depends(get_token_payload),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    return await load_actor(db, user, platform_operator=bool(payload.get("platform")))


async def get_tenant(actor: Actor = Depends(get_actor)) -> AsyncIterator[TenantContext]:
    with bind_tenant(TenantContext(organization_id=actor.organization_id, actor=actor)) as tenant:
        yield tenant


async def get_platform_actor(payload: dict[str, Any] = Depends(get_token_payload)) -> Actor:
    """Platform operators act outside any tenant; only the token claim is consulted."""
    if not payload.get("platform"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return Actor(
        user_id=payload["sub"],
        organization_id=payload.get("organization_id") or "",
        platform_operator=True,
    )
