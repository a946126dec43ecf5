from distro.models.user import User, UserRole, UserStatus, VerificationStatus
from distro.models.advance_ledger import AdvanceLedgerEntry, LedgerEntryType
from distro.models.royalty import (
    Royalty,
    RoyaltySplit,
    RoyaltyStatus,
    RoyaltyType,
    RecipientType,
    ROYALTY_TRANSITIONS,
)
from distro.models.payout_batch import PayoutBatch, PayoutBatchStatus
from distro.models.payout import (
    Payout,
    PayoutItem,
    PayoutRecipient,
    PayoutStatus,
    PayoutMethod,
    PayoutCurrency,
    PAYOUT_TRANSITIONS,
    RELEASING_STATUSES,
)
from distro.models.analytics import (
    AnalyticsEvent,
    AnalyticsEventType,
    AnalyticsSummary,
    DeviceType,
)
from distro.models.api_key import ApiKey, ApiKeyScope

__all__ = [
    # Accounts
    "User",
    "UserRole",
    "UserStatus",
    "VerificationStatus",
    "ApiKey",
    "ApiKeyScope",
    # Royalty models
    "AdvanceLedgerEntry",
    "LedgerEntryType",
    "Royalty",
    "RoyaltySplit",
    "RoyaltyStatus",
    "RoyaltyType",
    "RecipientType",
    "ROYALTY_TRANSITIONS",
    # Payout models
    "Payout",
    "PayoutItem",
    "PayoutRecipient",
    "PayoutStatus",
    "PayoutMethod",
    "PayoutCurrency",
    "PayoutBatch",
    "PayoutBatchStatus",
    "PAYOUT_TRANSITIONS",
    "RELEASING_STATUSES",
    # Analytics
    "AnalyticsEvent",
    "AnalyticsEventType",
    "AnalyticsSummary",
    "DeviceType",
]
