"""
Analytics Router

Event ingestion and per-day summaries.
"""
from datetime import date, timedelta
from typing import Annotated, Any, List, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.database import get_db, utcnow
from distro.models import ApiKey, ApiKeyScope
from distro.routers.deps import require_scope, verify_admin_token
from distro.schemas.analytics import AnalyticsSummaryResponse, IngestResponse, MalformedEventResponse
from distro.services import analytics as analytics_service

router = APIRouter(prefix="/analytics", tags=["analytics"])

Db = Annotated[AsyncSession, Depends(get_db)]
AdminToken = Annotated[str, Depends(verify_admin_token)]


@router.post("/events", response_model=IngestResponse)
async def ingest_events(
    db: Db,
    _token: AdminToken,
    events: Annotated[List[Any], Body(description="Raw event payloads")],
):
    """
    Ingest raw events.

    Payloads are validated one by one: malformed ones are stored and
    reported, they do not fail the request.
    """
    report = await analytics_service.ingest_events(db, events)
    return IngestResponse(
        accepted=report.accepted,
        duplicates=report.duplicates,
        malformed=[
            MalformedEventResponse(index=m.index, event_id=m.event_id, error=m.error)
            for m in report.malformed
        ],
        days=report.days,
    )


@router.get("/summaries", response_model=list[AnalyticsSummaryResponse])
async def list_summaries(
    db: Db,
    _api_key: Annotated[ApiKey, Depends(require_scope(ApiKeyScope.ANALYTICS_READ))],
    start: Optional[date] = None,
    end: Optional[date] = None,
):
    """
    Daily summaries between start and end (inclusive).

    Query params:
    - start: Defaults to 30 days before end
    - end: Defaults to today (UTC)
    """
    end = end or utcnow().date()
    start = start or end - timedelta(days=30)
    return await analytics_service.list_summaries(db, start, end)


@router.get("/summaries/{day}", response_model=AnalyticsSummaryResponse)
async def get_summary(
    day: date,
    db: Db,
    _api_key: Annotated[ApiKey, Depends(require_scope(ApiKeyScope.ANALYTICS_READ))],
):
    return await analytics_service.get_summary(db, day)


@router.post("/summaries/{day}/rebuild", response_model=AnalyticsSummaryResponse)
async def rebuild_summary(day: date, db: Db, _token: AdminToken):
    """Recompute a day's summary from its stored events."""
    return await analytics_service.rebuild_summary(db, day)
