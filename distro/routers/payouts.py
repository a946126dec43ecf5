"""
Payouts Router

Aggregation of processed royalties into payouts, the payout status
machine, payment execution and batch runs.
"""
from typing import Annotated, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.database import get_db
from distro.core.errors import ThresholdSkip
from distro.models import PayoutStatus
from distro.routers.deps import verify_admin_token
from distro.schemas.payouts import (
    AggregateRequest,
    ExecuteRequest,
    PayoutBatchResponse,
    PayoutResponse,
    ThresholdSkipResponse,
    TransitionRequest,
)
from distro.services import batches as batch_service
from distro.services import payouts as payout_service
from distro.services.payment_gateway import HttpPaymentGateway, ManualPaymentGateway

router = APIRouter(prefix="/payouts", tags=["payouts"])
batches_router = APIRouter(prefix="/payout-batches", tags=["payouts"])

Db = Annotated[AsyncSession, Depends(get_db)]
AdminToken = Annotated[str, Depends(verify_admin_token)]


@router.post("/aggregate", response_model=Union[PayoutResponse, ThresholdSkipResponse])
async def aggregate_payout(data: AggregateRequest, db: Db, _token: AdminToken):
    """
    Build a draft payout from the recipient's eligible royalties.

    Returns a skip result instead of a payout when the eligible total is
    below the minimum payout amount.
    """
    outcome = await payout_service.aggregate_payout(
        db,
        data.recipient_id,
        payout_currency=data.payout_currency,
        minimum_payout_amount=data.minimum_payout_amount,
    )
    if isinstance(outcome, ThresholdSkip):
        return ThresholdSkipResponse(
            recipient_id=outcome.recipient_id,
            candidate_amount=outcome.candidate_amount,
            minimum_payout_amount=outcome.minimum_payout_amount,
            currency=outcome.currency,
        )
    return outcome


@router.get("", response_model=list[PayoutResponse])
async def list_payouts(
    db: Db,
    _token: AdminToken,
    recipient_id: Optional[UUID] = None,
    status_filter: Optional[PayoutStatus] = None,
    limit: int = 50,
    offset: int = 0,
):
    return await payout_service.list_payouts(
        db,
        recipient_id=recipient_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )


@router.get("/{payout_id}", response_model=PayoutResponse)
async def get_payout(payout_id: UUID, db: Db, _token: AdminToken):
    return await payout_service.get_payout(db, payout_id)


@router.post("/{payout_id}/transition", response_model=PayoutResponse)
async def transition_payout(payout_id: UUID, data: TransitionRequest, db: Db, _token: AdminToken):
    """Move a payout to another status. Failed, cancelled and reversed release its royalties."""
    return await payout_service.transition_payout(
        db,
        payout_id,
        data.status,
        actor_id=data.actor_id,
        payment_reference=data.payment_reference,
        reason=data.reason,
    )


@router.post("/{payout_id}/execute", response_model=PayoutResponse)
async def execute_payout(payout_id: UUID, data: ExecuteRequest, db: Db, _token: AdminToken):
    """Pay a pending payout through the manual or HTTP gateway."""
    gateway = HttpPaymentGateway() if data.gateway == "http" else ManualPaymentGateway()
    return await payout_service.execute_payout(db, payout_id, gateway, actor_id=data.actor_id)


@batches_router.post("", response_model=PayoutBatchResponse, status_code=status.HTTP_201_CREATED)
async def create_batch(db: Db, _token: AdminToken):
    return await batch_service.create_batch(db)


@batches_router.get("/{batch_id}", response_model=PayoutBatchResponse)
async def get_batch(batch_id: UUID, db: Db, _token: AdminToken):
    return await batch_service.get_batch(db, batch_id)


@batches_router.post("/{batch_id}/run", response_model=PayoutBatchResponse)
async def run_batch(batch_id: UUID, db: Db, _token: AdminToken):
    """Aggregate payouts for every recipient with eligible royalties."""
    return await batch_service.run_payout_batch(db, batch_id)


@batches_router.post("/{batch_id}/requeue", response_model=PayoutBatchResponse)
async def requeue_batch(batch_id: UUID, db: Db, _token: AdminToken):
    return await batch_service.requeue_batch(db, batch_id)


@batches_router.get("", response_model=list[PayoutBatchResponse])
async def list_batches(db: Db, _token: AdminToken, limit: int = 50):
    return await batch_service.list_batches(db, limit=limit)
