"""
Advance Ledger model for tracking advances and recoupments.

LEDGER CONVENTION:
- ADVANCE entries: positive amount (money given to a recipient up front)
- RECOUPMENT entries: positive amount (money recovered from royalty splits)

BALANCE CALCULATION:
  advance_balance = sum(advances) - sum(recoupments)

  - balance > 0: recipient has an unrecouped advance
  - balance = 0: fully recouped

RECOUPMENT RULE:
  When a royalty is processed, for each recoupable split:
  recouped = min(split.amount - split.tax_amount, advance_balance)
  split.net_amount = split.amount - split.tax_amount - recouped
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distro.core.database import Base, str_enum, utcnow

if TYPE_CHECKING:
    from distro.models.user import User


class LedgerEntryType(str, Enum):
    """Type of ledger entry."""
    ADVANCE = "advance"         # Money given to recipient
    RECOUPMENT = "recoupment"   # Money recovered from royalties


class AdvanceLedgerEntry(Base):
    """
    Ledger entry for tracking advances and recoupments.

    Each entry is a positive amount with a type indicating
    whether it's an advance or recoupment.
    """

    __tablename__ = "advance_ledger"

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

    entry_type: Mapped[LedgerEntryType] = mapped_column(
        str_enum(LedgerEntryType),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    # Split that triggered a recoupment
    royalty_split_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("royalty_splits.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    effective_date: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
    )

    recipient: Mapped["User"] = relationship(
        "User",
        back_populates="advance_entries",
    )

    def __repr__(self) -> str:
        return f"<AdvanceLedgerEntry {self.id} type={self.entry_type} amount={self.amount}>"
