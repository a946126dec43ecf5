"""Payout, PayoutItem and PayoutRecipient models."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distro.core.database import Base, str_enum, utcnow

if TYPE_CHECKING:
    from distro.models.user import User


class PayoutMethod(str, Enum):
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    WISE = "wise"
    PAYONEER = "payoneer"
    CRYPTO = "crypto"
    CHECK = "check"
    OTHER = "other"


class PayoutStatus(str, Enum):
    DRAFT = "draft"             # Built by aggregation, items still mutable
    PENDING = "pending"         # Submitted for approval
    PROCESSING = "processing"   # Payment initiated
    PAID = "paid"               # Payment confirmed
    FAILED = "failed"           # Payment rejected, royalties released
    CANCELLED = "cancelled"     # Manually cancelled, royalties released
    REVERSED = "reversed"       # Clawback after payment, royalties released


class PayoutCurrency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"


PAYOUT_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.DRAFT: frozenset({PayoutStatus.PENDING, PayoutStatus.CANCELLED}),
    PayoutStatus.PENDING: frozenset(
        {PayoutStatus.PROCESSING, PayoutStatus.FAILED, PayoutStatus.CANCELLED}
    ),
    PayoutStatus.PROCESSING: frozenset(
        {PayoutStatus.PAID, PayoutStatus.FAILED, PayoutStatus.CANCELLED}
    ),
    PayoutStatus.PAID: frozenset({PayoutStatus.REVERSED}),
    # Terminal states
    PayoutStatus.FAILED: frozenset(),
    PayoutStatus.CANCELLED: frozenset(),
    PayoutStatus.REVERSED: frozenset(),
}

# Statuses that release royalty attachment on entry
RELEASING_STATUSES = frozenset(
    {PayoutStatus.FAILED, PayoutStatus.CANCELLED, PayoutStatus.REVERSED}
)


class PayoutRecipient(Base):
    """Payment details and payout policy for one user."""

    __tablename__ = "payout_recipients"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    tax_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    tax_form_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Applied to every payout item, e.g. backup withholding without a tax form
    withholding_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=7, scale=6),
        default=Decimal("0"),
        nullable=False,
    )

    payment_method: Mapped[PayoutMethod] = mapped_column(
        str_enum(PayoutMethod),
        default=PayoutMethod.PAYPAL,
        nullable=False,
    )
    payout_currency: Mapped[PayoutCurrency] = mapped_column(
        str_enum(PayoutCurrency),
        default=PayoutCurrency.USD,
        nullable=False,
    )
    minimum_payout_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )

    bank_account: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    paypal: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    user: Mapped["User"] = relationship("User", back_populates="payout_recipient")

    def __repr__(self) -> str:
        return f"<PayoutRecipient user={self.user_id} method={self.payment_method}>"


class Payout(Base):
    """
    One payment to one recipient in one currency.

    amount = sum(items.amount_in_payout_currency)
    net_amount = amount - fee_amount - tax_amount
    """

    __tablename__ = "payouts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payout_batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    reference: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)

    status: Mapped[PayoutStatus] = mapped_column(
        str_enum(PayoutStatus),
        default=PayoutStatus.DRAFT,
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    currency: Mapped[PayoutCurrency] = mapped_column(
        str_enum(PayoutCurrency),
        nullable=False,
    )
    # Effective rate: amount / system-currency amount
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("1"),
        nullable=False,
    )
    amount_in_system_currency: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    fee_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
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
        default=Decimal("0"),
        nullable=False,
    )

    payment_method: Mapped[PayoutMethod] = mapped_column(
        str_enum(PayoutMethod),
        nullable=False,
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    items: Mapped[List["PayoutItem"]] = relationship(
        "PayoutItem",
        back_populates="payout",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Payout {self.reference} amount={self.amount} {self.currency} status={self.status}>"


class PayoutItem(Base):
    """Contribution of one royalty to a payout."""

    __tablename__ = "payout_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    payout_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payouts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    royalty_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("royalties.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Split net amount(s) in their own currency
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=6), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("1"),
        nullable=False,
    )
    amount_in_payout_currency: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        nullable=False,
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    fee_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    net_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=6), nullable=False)
    split_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    payout: Mapped["Payout"] = relationship("Payout", back_populates="items")

    def __repr__(self) -> str:
        return f"<PayoutItem royalty={self.royalty_id} amount={self.amount_in_payout_currency}>"
