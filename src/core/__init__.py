"""
Core module - outcome types shared by every marketplace service.
"""

from src.core.enums import (
    EligibilityReason,
    LeadMarketState,
    UnlockStatus,
    LedgerStatus,
    ReferralOutcome,
    ReportOutcome,
    NotificationType,
)

__all__ = [
    "EligibilityReason",
    "LeadMarketState",
    "UnlockStatus",
    "LedgerStatus",
    "ReferralOutcome",
    "ReportOutcome",
    "NotificationType",
]
