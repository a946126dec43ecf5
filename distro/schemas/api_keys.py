"""Schemas for API keys."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from distro.models import ApiKeyScope


class ApiKeyCreate(BaseModel):
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    scopes: List[ApiKeyScope] = Field(..., min_length=1)
    ttl_days: Optional[int] = Field(None, gt=0, description="Days until expiry; never expires when omitted")


class ApiKeyResponse(BaseModel):
    id: UUID
    prefix: str
    name: str
    user_id: UUID
    scopes: List[str]
    last_used: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool
    revoked_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApiKeyCreated(ApiKeyResponse):
    """Returned once at issuance; the secret is not stored."""
    secret: str


class ApiKeyValidate(BaseModel):
    secret: str
    scope: ApiKeyScope


class AccessDecisionResponse(BaseModel):
    granted: bool
    reason: Optional[str] = None
    key_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
