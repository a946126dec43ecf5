"""
Payout batch runs.

A batch aggregates a payout for every recipient that has eligible royalty
splits. Exchange-rate or other external failures are retried with backoff;
when retries run out the batch is marked failed and can be requeued.
Payouts created before the failure are kept, their splits are no longer
eligible so a requeued run only picks up the remaining recipients.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.config import settings
from distro.core.database import utcnow
from distro.core.errors import (
    ConflictError,
    ExternalDependencyError,
    InvalidTransition,
    NotFoundError,
    ThresholdSkip,
)
from distro.models import PayoutBatch, PayoutBatchStatus
from distro.services.fx import FXService, fx_service as default_fx_service
from distro.services.payouts import aggregate_payout, recipients_with_eligible_splits
from distro.services.retry import run_with_retries

logger = logging.getLogger(__name__)


async def create_batch(db: AsyncSession) -> PayoutBatch:
    batch = PayoutBatch(
        status=PayoutBatchStatus.PENDING,
        system_currency=settings.SYSTEM_CURRENCY,
        payout_ids=[],
    )
    db.add(batch)
    await db.flush()
    return batch


async def get_batch(db: AsyncSession, batch_id: UUID) -> PayoutBatch:
    result = await db.execute(select(PayoutBatch).where(PayoutBatch.id == batch_id))
    batch = result.scalar_one_or_none()
    if batch is None:
        raise NotFoundError("PayoutBatch", batch_id)
    return batch


async def list_batches(db: AsyncSession, limit: int = 50) -> List[PayoutBatch]:
    result = await db.execute(
        select(PayoutBatch).order_by(PayoutBatch.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def run_payout_batch(
    db: AsyncSession,
    batch_id: UUID,
    fx: Optional[FXService] = None,
    now: Optional[datetime] = None,
) -> PayoutBatch:
    """
    Execute a pending payout batch.

    Args:
        db: Database session
        batch_id: Batch to run, must be 'pending'
        fx: FX service used for every aggregation

    Returns:
        The batch, 'completed' or 'failed'
    """
    fx = fx or default_fx_service
    now = now or utcnow()
    batch = await get_batch(db, batch_id)
    if batch.status != PayoutBatchStatus.PENDING:
        raise InvalidTransition("PayoutBatch", batch.status.value, PayoutBatchStatus.PROCESSING.value)

    batch.status = PayoutBatchStatus.PROCESSING
    batch.attempts += 1
    batch.started_at = now
    batch.error_message = None
    await db.flush()

    recipient_ids = await recipients_with_eligible_splits(db, now=now)
    logger.info(f"Payout batch {batch.id}: {len(recipient_ids)} recipients with eligible royalties")

    payout_ids = list(batch.payout_ids or [])
    try:
        for recipient_id in recipient_ids:
            try:
                outcome = await run_with_retries(
                    lambda: aggregate_payout(db, recipient_id, fx, batch_id=batch.id, now=now),
                    label=f"Aggregation for {recipient_id}",
                    retry_on=(ExternalDependencyError,),
                )
            except ConflictError as e:
                logger.warning(f"Payout batch {batch.id}: skipping {recipient_id}: {e}")
                batch.recipients_conflicted += 1
                continue
            except NotFoundError as e:
                logger.warning(f"Payout batch {batch.id}: {recipient_id} has no payout details: {e}")
                batch.recipients_skipped += 1
                continue

            if isinstance(outcome, ThresholdSkip):
                batch.recipients_skipped += 1
                continue

            batch.payouts_created += 1
            batch.total_amount = Decimal(batch.total_amount) + outcome.amount_in_system_currency
            payout_ids.append(str(outcome.id))

    except ExternalDependencyError as e:
        logger.error(f"Payout batch {batch.id} failed: {e}")
        batch.status = PayoutBatchStatus.FAILED
        batch.error_message = str(e)
        batch.payout_ids = payout_ids
        await db.flush()
        return batch

    batch.payout_ids = payout_ids
    batch.status = PayoutBatchStatus.COMPLETED
    batch.completed_at = utcnow()
    await db.flush()

    logger.info(
        f"Payout batch {batch.id} completed: {batch.payouts_created} payouts, "
        f"{batch.recipients_skipped} skipped, {batch.recipients_conflicted} conflicted, "
        f"total={batch.total_amount} {batch.system_currency}"
    )
    return batch


async def requeue_batch(db: AsyncSession, batch_id: UUID) -> PayoutBatch:
    """Put a failed batch back in the queue."""
    batch = await get_batch(db, batch_id)
    if batch.status != PayoutBatchStatus.FAILED:
        raise InvalidTransition("PayoutBatch", batch.status.value, PayoutBatchStatus.PENDING.value)
    batch.status = PayoutBatchStatus.PENDING
    await db.flush()
    logger.info(f"Requeued payout batch {batch.id} after {batch.attempts} attempt(s)")
    return batch
