"""
API Keys Router

Issue, list, revoke and check scoped API keys.
"""
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.database import get_db
from distro.routers.deps import verify_admin_token
from distro.schemas.api_keys import (
    AccessDecisionResponse,
    ApiKeyCreate,
    ApiKeyCreated,
    ApiKeyResponse,
    ApiKeyValidate,
)
from distro.services import api_keys as api_key_service

router = APIRouter(prefix="/api-keys", tags=["api-keys"])

Db = Annotated[AsyncSession, Depends(get_db)]
AdminToken = Annotated[str, Depends(verify_admin_token)]


@router.post("", response_model=ApiKeyCreated, status_code=status.HTTP_201_CREATED)
async def create_api_key(data: ApiKeyCreate, db: Db, _token: AdminToken):
    """Issue a key. The secret is only returned here."""
    api_key, secret = await api_key_service.issue_api_key(
        db,
        data.user_id,
        data.name,
        [s.value for s in data.scopes],
        ttl_days=data.ttl_days,
    )
    return ApiKeyCreated(
        **ApiKeyResponse.model_validate(api_key).model_dump(),
        secret=secret,
    )


@router.get("", response_model=list[ApiKeyResponse])
async def list_api_keys(
    user_id: UUID,
    db: Db,
    _token: AdminToken,
    include_inactive: bool = False,
):
    return await api_key_service.list_api_keys(db, user_id, include_inactive=include_inactive)


@router.post("/{key_id}/revoke", response_model=ApiKeyResponse)
async def revoke_api_key(key_id: UUID, db: Db, _token: AdminToken):
    return await api_key_service.revoke_api_key(db, key_id)


@router.post("/validate", response_model=AccessDecisionResponse)
async def validate_api_key(data: ApiKeyValidate, db: Db, _token: AdminToken):
    """Check a secret against a scope without calling a protected endpoint."""
    decision = await api_key_service.validate_api_key(db, data.secret, data.scope)
    return AccessDecisionResponse(
        granted=decision.granted,
        reason=decision.reason,
        key_id=decision.api_key.id if decision.api_key else None,
        user_id=decision.api_key.user_id if decision.api_key else None,
    )
