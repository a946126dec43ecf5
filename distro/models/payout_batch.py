"""PayoutBatch model for tracking aggregation runs across recipients."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, DateTime, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from distro.core.database import Base, str_enum, utcnow


class PayoutBatchStatus(str, Enum):
    """Status of a payout batch."""
    PENDING = "pending"        # Queued, can be run
    PROCESSING = "processing"  # Aggregation in progress
    COMPLETED = "completed"    # Every recipient handled
    FAILED = "failed"          # Retries exhausted, can be requeued


class PayoutBatch(Base):
    """
    A batch aggregation over every recipient with eligible royalties.

    Audit trail:
    - Records how many attempts were needed and the last error
    - Stores aggregated totals for quick access
    """

    __tablename__ = "payout_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    status: Mapped[PayoutBatchStatus] = mapped_column(
        str_enum(PayoutBatchStatus),
        default=PayoutBatchStatus.PENDING,
        nullable=False,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Aggregated totals (system currency)
    payouts_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    recipients_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    recipients_conflicted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    system_currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    payout_ids: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<PayoutBatch {self.id} status={self.status} payouts={self.payouts_created}>"
