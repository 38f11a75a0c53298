"""
Core Enums - outcome types returned by the marketplace services.

Business outcomes are values, not exceptions: callers branch on them
(offer a top-up on INSUFFICIENT_FUNDS, disable the button on SOLD_OUT).
"""

from enum import Enum


class EligibilityReason(str, Enum):
    """Why a lead cannot be unlocked right now."""

    EXPIRED = "expired"  # Past the freshness window
    INACTIVE = "inactive"  # Paused or closed by an admin
    ALREADY_EXCLUSIVE = "already_exclusive"  # Bought out by another agent
    SOLD_OUT = "sold_out"  # Every slot claimed
    EXCLUSIVE_UNAVAILABLE = "exclusive_unavailable"  # Buyout needs zero claims
    LEAD_NOT_FOUND = "lead_not_found"


class LeadMarketState(str, Enum):
    """Lead position in the open market, evaluated lazily at read time.

    Open(0..2) -> SOLD_OUT once every slot is claimed,
    Open(0) -> EXCLUSIVE (terminal),
    any -> EXPIRED once the freshness window elapses.
    """

    OPEN = "open"
    SOLD_OUT = "sold_out"
    EXCLUSIVE = "exclusive"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class UnlockStatus(str, Enum):
    """Outcome of an unlock attempt."""

    SUCCESS = "success"
    ALREADY_UNLOCKED = "already_unlocked"  # Benign: the agent holds the slot
    NOT_ELIGIBLE = "not_eligible"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NOT_VERIFIED = "not_verified"

    @property
    def grants_access(self) -> bool:
        """Whether the caller should render the contact details."""
        return self in (UnlockStatus.SUCCESS, UnlockStatus.ALREADY_UNLOCKED)


class LedgerStatus(str, Enum):
    """Outcome of a wallet mutation."""

    SUCCESS = "success"
    INSUFFICIENT_FUNDS = "insufficient_funds"


class ReferralOutcome(str, Enum):
    """Outcome of referral registration or settlement."""

    SUCCESS = "success"
    ALREADY_SETTLED = "already_settled"
    SELF_REFERRAL = "self_referral"
    INVALID_CODE = "invalid_code"
    ALREADY_REFERRED = "already_referred"
    NOT_FOUND = "not_found"


class ReportOutcome(str, Enum):
    """Outcome of filing or resolving a bad-lead report."""

    SUCCESS = "success"
    DUPLICATE_REPORT = "duplicate_report"
    NOT_UNLOCKED = "not_unlocked"
    ALREADY_REFUNDED = "already_refunded"
    INVALID_REASON = "invalid_reason"
    REPORT_NOT_FOUND = "report_not_found"
    ALREADY_RESOLVED = "already_resolved"


class NotificationType(str, Enum):
    """Events published for the external delivery subsystem."""

    LEAD_UNLOCKED = "lead_unlocked"
    REFERRAL_CREDITED = "referral_credited"
    REPORT_RESOLVED = "report_resolved"
