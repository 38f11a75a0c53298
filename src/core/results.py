"""
Typed results returned by the marketplace services.
"""

from dataclasses import dataclass
from typing import Optional

from src.core.enums import (
    EligibilityReason,
    LedgerStatus,
    UnlockStatus,
    ReferralOutcome,
    ReportOutcome,
)
from src.database.models import WalletTransaction, LeadUnlock, Referral, LeadReport


@dataclass(frozen=True)
class PricingTier:
    """Slot tier a lead is currently priced at."""
    tier: int
    multiplier: float


@dataclass(frozen=True)
class Eligibility:
    """Whether a lead accepts a new unlock, and why not."""
    eligible: bool
    reason: Optional[EligibilityReason] = None

    @classmethod
    def ok(cls) -> "Eligibility":
        return cls(eligible=True)

    @classmethod
    def denied(cls, reason: EligibilityReason) -> "Eligibility":
        return cls(eligible=False, reason=reason)


@dataclass
class LedgerResult:
    status: LedgerStatus
    new_balance: int
    transaction: Optional[WalletTransaction] = None

    @property
    def success(self) -> bool:
        return self.status == LedgerStatus.SUCCESS


@dataclass
class UnlockResult:
    status: UnlockStatus
    unlock: Optional[LeadUnlock] = None
    price: Optional[int] = None
    new_balance: Optional[int] = None
    reason: Optional[EligibilityReason] = None  # set when NOT_ELIGIBLE

    @property
    def success(self) -> bool:
        return self.status.grants_access


@dataclass
class UnlockQuote:
    """Display-side quote: the price an unlock would be charged right now."""
    lead_id: int
    eligible: bool
    price: Optional[int]
    exclusive_price: Optional[int]
    tier: int
    slots_remaining: int
    reason: Optional[EligibilityReason] = None


@dataclass
class ReferralResult:
    status: ReferralOutcome
    referral: Optional[Referral] = None
    credited: int = 0

    @property
    def success(self) -> bool:
        return self.status == ReferralOutcome.SUCCESS


@dataclass
class ReportResult:
    status: ReportOutcome
    report: Optional[LeadReport] = None
    refunded_amount: int = 0

    @property
    def success(self) -> bool:
        return self.status == ReportOutcome.SUCCESS


@dataclass
class WalletAudit:
    """Balance vs. ledger reconciliation for one wallet."""
    agent_id: int
    balance: int
    ledger_sum: int
    transaction_count: int

    @property
    def drift(self) -> int:
        return self.balance - self.ledger_sum

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0 and self.balance >= 0
