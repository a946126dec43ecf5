"""Royalty and RoyaltySplit models."""
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distro.core.database import Base, str_enum, utcnow


class RoyaltyType(str, Enum):
    STREAM = "stream"
    DOWNLOAD = "download"
    YOUTUBE = "youtube"
    SYNCHRONIZATION = "sync"
    PERFORMANCE = "performance"
    MECHANICAL = "mechanical"
    PRINT = "print"
    OTHER = "other"


class RoyaltyStatus(str, Enum):
    PENDING = "pending"       # Ingested from a store report, splits not computed
    PROCESSED = "processed"   # Splits computed, eligible for payouts
    HOLD = "hold"             # Temporarily withheld
    DISPUTED = "disputed"     # Absorbing
    VOID = "void"             # Absorbing


class RecipientType(str, Enum):
    USER = "user"
    RIGHTS_HOLDER = "rights_holder"
    LABEL = "label"
    PUBLISHER = "publisher"


ROYALTY_TRANSITIONS: dict[RoyaltyStatus, frozenset[RoyaltyStatus]] = {
    RoyaltyStatus.PENDING: frozenset(
        {RoyaltyStatus.PROCESSED, RoyaltyStatus.HOLD, RoyaltyStatus.DISPUTED, RoyaltyStatus.VOID}
    ),
    RoyaltyStatus.HOLD: frozenset(
        {RoyaltyStatus.PENDING, RoyaltyStatus.DISPUTED, RoyaltyStatus.VOID}
    ),
    RoyaltyStatus.PROCESSED: frozenset(
        {RoyaltyStatus.HOLD, RoyaltyStatus.DISPUTED, RoyaltyStatus.VOID}
    ),
    RoyaltyStatus.DISPUTED: frozenset(),
    RoyaltyStatus.VOID: frozenset(),
}


class Royalty(Base):
    """
    One unit of earned revenue: one track, one store, one reporting period.

    Immutable once ingested except for status and the splits written by
    the processing step.
    """

    __tablename__ = "royalties"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    track_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    store_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    store_name: Mapped[str] = mapped_column(String(100), nullable=False)

    type: Mapped[RoyaltyType] = mapped_column(
        str_enum(RoyaltyType),
        default=RoyaltyType.STREAM,
        nullable=False,
    )
    status: Mapped[RoyaltyStatus] = mapped_column(
        str_enum(RoyaltyStatus),
        default=RoyaltyStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Source figures
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    # Converted to system currency
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("1"),
        nullable=False,
    )
    amount_in_system_currency: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        nullable=False,
    )
    system_currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    # Tax (system currency)
    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=7, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    net_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        nullable=False,
    )
    is_tax_processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_recouped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Period
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    reporting_date: Mapped[date] = mapped_column(Date, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    splits: Mapped[List["RoyaltySplit"]] = relationship(
        "RoyaltySplit",
        back_populates="royalty",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RoyaltySplit.position",
    )

    def __repr__(self) -> str:
        return f"<Royalty {self.id} store={self.store_name} net={self.net_amount} status={self.status}>"


class RoyaltySplit(Base):
    """
    A recipient's percentage share of a royalty.

    Attachment lives here: payout_id is set while the split is claimed by a
    live payout and cleared when that payout fails, is cancelled or reversed.
    """

    __tablename__ = "royalty_splits"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    royalty_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("royalties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    recipient_type: Mapped[RecipientType] = mapped_column(
        str_enum(RecipientType),
        default=RecipientType.USER,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    percentage: Mapped[Decimal] = mapped_column(
        Numeric(precision=7, scale=4),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    is_recoupable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    advance_recouped: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )

    tax_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=7, scale=6), nullable=True)
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    net_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )

    # Attachment state
    payout_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payouts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    attached_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Set after a reversal; the split stays out of aggregation until then
    eligible_after: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    royalty: Mapped["Royalty"] = relationship(
        "Royalty",
        back_populates="splits",
    )

    @property
    def is_attached(self) -> bool:
        return self.payout_id is not None

    def __repr__(self) -> str:
        return f"<RoyaltySplit {self.id} recipient={self.recipient_id} pct={self.percentage} net={self.net_amount}>"
