"""User model: identity, role, account status and balance stats."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distro.core.database import Base, str_enum, utcnow

if TYPE_CHECKING:
    from distro.models.advance_ledger import AdvanceLedgerEntry
    from distro.models.api_key import ApiKey
    from distro.models.payout import PayoutRecipient


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    ARTIST = "artist"
    MANAGER = "manager"
    LABEL = "label"
    PUBLISHER = "publisher"
    USER = "user"


class UserStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class User(Base):
    """
    Platform account.

    Balance stats are kept in the system currency:
    - total_earnings: every split net amount ever credited
    - available_balance: credited but not yet claimed by a payout
    - pending_payouts: claimed by a live, unpaid payout

    available_balance + pending_payouts <= total_earnings always holds;
    see services.users.apply_stats_delta.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)

    role: Mapped[UserRole] = mapped_column(
        str_enum(UserRole),
        default=UserRole.ARTIST,
        nullable=False,
        index=True,
    )
    status: Mapped[UserStatus] = mapped_column(
        str_enum(UserStatus),
        default=UserStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    verification_status: Mapped[VerificationStatus] = mapped_column(
        str_enum(VerificationStatus),
        default=VerificationStatus.UNVERIFIED,
        nullable=False,
    )
    verification_notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Stats (system currency)
    total_earnings: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    available_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    pending_payouts: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    last_payout_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Timestamps
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

    # Relationships
    advance_entries: Mapped[List["AdvanceLedgerEntry"]] = relationship(
        "AdvanceLedgerEntry",
        back_populates="recipient",
    )
    api_keys: Mapped[List["ApiKey"]] = relationship(
        "ApiKey",
        back_populates="user",
    )
    payout_recipient: Mapped[Optional["PayoutRecipient"]] = relationship(
        "PayoutRecipient",
        back_populates="user",
        uselist=False,
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE and not self.is_deleted

    def __repr__(self) -> str:
        return f"<User {self.id} email={self.email} role={self.role}>"
