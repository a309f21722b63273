"""
DeliveryScore API Dependencies

Dependency injection for DB sessions, auth, tenant context and the
scoring coordinator.
"""

import uuid
from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.session import AsyncSessionLocal
from scoring.coordinator import ScoringCoordinator

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

DEV_TENANT_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": "dev-user",
            "email": "dev@deliveryscore.local",
            "tenant_id": DEV_TENANT_ID,
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def get_tenant_id(user: dict = Depends(get_current_user)) -> uuid.UUID:
    """Every query below the API is scoped by this explicit tenant id."""
    raw = user.get("tenant_id")
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No tenant context",
        )
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Malformed tenant context",
        )


@lru_cache
def get_scoring_coordinator() -> ScoringCoordinator:
    return ScoringCoordinator.from_settings(AsyncSessionLocal, get_settings())
