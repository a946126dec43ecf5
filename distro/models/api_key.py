"""ApiKey model: scoped capability credential bound to one user."""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distro.core.database import Base, utcnow

if TYPE_CHECKING:
    from distro.models.user import User


class ApiKeyScope(str, Enum):
    TRACKS_READ = "tracks:read"
    TRACKS_WRITE = "tracks:write"
    ANALYTICS_READ = "analytics:read"
    PROFILE_READ = "profile:read"
    PROFILE_WRITE = "profile:write"


class ApiKey(Base):
    """
    Issued API key.

    Only the SHA-256 of the secret is stored. Rows are deactivated on
    revocation or expiry but never deleted, so a hash can not be reissued.
    """

    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    prefix: Mapped[str] = mapped_column(String(8), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scopes: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    last_used: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    user: Mapped["User"] = relationship("User", back_populates="api_keys")

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def __repr__(self) -> str:
        return f"<ApiKey {self.prefix}... user={self.user_id} active={self.is_active}>"
