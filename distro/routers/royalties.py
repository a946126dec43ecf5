"""
Royalties Router

Ingests store-report lines and drives royalties through their statuses.
"""
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.database import get_db
from distro.models import Royalty, RoyaltyStatus
from distro.routers.deps import verify_admin_token
from distro.schemas.royalties import (
    MonthlyReportResponse,
    RoyaltyCreate,
    RoyaltyProcess,
    RoyaltyResponse,
    RoyaltyStatusUpdate,
    SplitCreate,
)
from distro.services import royalties as royalty_service
from distro.services.royalties import SplitSpec

router = APIRouter(prefix="/royalties", tags=["royalties"])

Db = Annotated[AsyncSession, Depends(get_db)]
AdminToken = Annotated[str, Depends(verify_admin_token)]


def _to_specs(splits: List[SplitCreate]) -> List[SplitSpec]:
    return [
        SplitSpec(
            recipient_id=s.recipient_id,
            percentage=s.percentage,
            recipient_type=s.recipient_type,
            is_recoupable=s.is_recoupable,
            tax_rate=s.tax_rate,
            name=s.name,
            email=s.email,
        )
        for s in splits
    ]


@router.post("", response_model=RoyaltyResponse, status_code=status.HTTP_201_CREATED)
async def create_royalty(data: RoyaltyCreate, db: Db, _token: AdminToken):
    """Ingest a royalty; the gross amount is converted to the system currency."""
    royalty = await royalty_service.create_royalty(
        db,
        track_id=data.track_id,
        store_id=data.store_id,
        store_name=data.store_name,
        royalty_type=data.type,
        quantity=data.quantity,
        rate=data.rate,
        amount=data.amount,
        currency=data.currency,
        tax_rate=data.tax_rate,
        period_start=data.period_start,
        period_end=data.period_end,
        reporting_date=data.reporting_date,
        notes=data.notes,
    )
    await db.refresh(royalty, attribute_names=["splits"])
    return royalty


@router.get("", response_model=list[RoyaltyResponse])
async def list_royalties(
    db: Db,
    _token: AdminToken,
    status_filter: Optional[RoyaltyStatus] = None,
    track_id: Optional[UUID] = None,
    limit: int = 50,
    offset: int = 0,
):
    """
    List royalties with optional filters.

    Query params:
    - status_filter: pending, processed, hold, disputed, void
    - track_id: Filter by track
    """
    query = select(Royalty).order_by(Royalty.period_end.desc(), Royalty.created_at.desc())
    if status_filter:
        query = query.where(Royalty.status == status_filter)
    if track_id:
        query = query.where(Royalty.track_id == track_id)
    result = await db.execute(query.limit(limit).offset(offset))
    return result.scalars().all()


@router.get("/monthly", response_model=MonthlyReportResponse)
async def get_monthly_report(
    recipient_id: UUID,
    year: Annotated[int, Query(ge=1, le=9999)],
    month: Annotated[int, Query(ge=1, le=12)],
    db: Db,
    _token: AdminToken,
):
    """A recipient's royalty shares for one month, by track and store, with per-currency totals."""
    return await royalty_service.monthly_report(db, recipient_id, year, month)


@router.get("/{royalty_id}", response_model=RoyaltyResponse)
async def get_royalty(royalty_id: UUID, db: Db, _token: AdminToken):
    return await royalty_service.get_royalty(db, royalty_id)


@router.post("/{royalty_id}/process", response_model=RoyaltyResponse)
async def process_royalty(royalty_id: UUID, data: RoyaltyProcess, db: Db, _token: AdminToken):
    """Split a pending royalty between recipients and mark it processed."""
    return await royalty_service.process_royalty(db, royalty_id, _to_specs(data.splits))


@router.post("/{royalty_id}/status", response_model=RoyaltyResponse)
async def update_royalty_status(
    royalty_id: UUID,
    data: RoyaltyStatusUpdate,
    db: Db,
    _token: AdminToken,
):
    specs = _to_specs(data.splits) if data.splits else None
    return await royalty_service.transition_royalty(db, royalty_id, data.status, specs)
