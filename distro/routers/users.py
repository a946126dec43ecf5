"""
Users Router

Accounts, verification, payout details and advances.
"""
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.config import settings
from distro.core.database import get_db
from distro.models import ApiKey, ApiKeyScope
from distro.routers.deps import require_scope, verify_admin_token
from distro.schemas.users import (
    AdvanceBalanceResponse,
    AdvanceCreate,
    AdvanceEntryResponse,
    RecipientResponse,
    RecipientUpsert,
    UserCreate,
    UserResponse,
    UserUpdate,
    VerificationUpdate,
)
from distro.services import payouts as payout_service
from distro.services import royalties as royalty_service
from distro.services import users as user_service

router = APIRouter(prefix="/users", tags=["users"])

Db = Annotated[AsyncSession, Depends(get_db)]
AdminToken = Annotated[str, Depends(verify_admin_token)]


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(data: UserCreate, db: Db, _token: AdminToken):
    """Create an account."""
    return await user_service.create_user(
        db,
        email=data.email,
        display_name=data.display_name,
        role=data.role,
        first_name=data.first_name,
        last_name=data.last_name,
        country=data.country,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(
    db: Db,
    api_key: Annotated[ApiKey, Depends(require_scope(ApiKeyScope.PROFILE_READ))],
):
    """Profile of the API key's owner."""
    return await user_service.get_user(db, api_key.user_id)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: UUID, db: Db, _token: AdminToken):
    return await user_service.get_user(db, user_id)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(user_id: UUID, data: UserUpdate, db: Db, _token: AdminToken):
    return await user_service.update_profile(db, user_id, **data.model_dump(exclude_unset=True))


@router.post("/{user_id}/verification", response_model=UserResponse)
async def set_verification(user_id: UUID, data: VerificationUpdate, db: Db, _token: AdminToken):
    """Move the user's verification status (unverified -> pending -> verified | rejected)."""
    return await user_service.set_verification(db, user_id, data.status, data.notes)


@router.delete("/{user_id}", response_model=UserResponse)
async def delete_user(user_id: UUID, db: Db, _token: AdminToken):
    """Soft delete. The account row is kept."""
    return await user_service.soft_delete_user(db, user_id)


@router.post("/{user_id}/recipient", response_model=RecipientResponse)
async def upsert_recipient(user_id: UUID, data: RecipientUpsert, db: Db, _token: AdminToken):
    """Create or update payout details."""
    return await payout_service.upsert_recipient(db, user_id, **data.model_dump(exclude_unset=True))


@router.post(
    "/{user_id}/advances",
    response_model=AdvanceEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_advance(user_id: UUID, data: AdvanceCreate, db: Db, _token: AdminToken):
    """Record an advance, recouped from future recoupable splits."""
    return await royalty_service.record_advance(
        db,
        user_id,
        data.amount,
        description=data.description,
        reference=data.reference,
    )


@router.get("/{user_id}/advances/balance", response_model=AdvanceBalanceResponse)
async def get_advance_balance(user_id: UUID, db: Db, _token: AdminToken):
    await user_service.get_user(db, user_id)
    balance = await royalty_service.get_advance_balance(db, user_id)
    return AdvanceBalanceResponse(
        recipient_id=user_id,
        balance=balance,
        currency=settings.SYSTEM_CURRENCY,
    )
