"""Shared router dependencies: admin token and API key scopes."""
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.config import settings
from distro.core.database import get_db
from distro.models import ApiKey, ApiKeyScope
from distro.services import api_keys as api_key_service


async def verify_admin_token(x_admin_token: Annotated[str, Header()]) -> str:
    """Verify the admin token from header."""
    if x_admin_token != settings.ADMIN_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )
    return x_admin_token


def require_scope(scope: ApiKeyScope):
    """Dependency factory: the X-API-Key header must grant ``scope``."""

    async def dependency(
        db: Annotated[AsyncSession, Depends(get_db)],
        x_api_key: Annotated[Optional[str], Header()] = None,
    ) -> ApiKey:
        decision = await api_key_service.validate_api_key(db, x_api_key, scope)
        if not decision.granted:
            code = (
                status.HTTP_403_FORBIDDEN
                if decision.reason == "missing_scope"
                else status.HTTP_401_UNAUTHORIZED
            )
            raise HTTPException(status_code=code, detail=f"API key rejected: {decision.reason}")
        return decision.api_key

    return dependency
