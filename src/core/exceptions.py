"""
Exceptions for failures that are not business outcomes.
"""


class MarketplaceError(Exception):
    """Base class for core failures"""
    pass


class WalletNotFoundError(MarketplaceError):
    """Raised when a ledger primitive targets an agent without a wallet"""

    def __init__(self, agent_id: int):
        super().__init__(f"Agent {agent_id} has no wallet")
        self.agent_id = agent_id


class SlotConflictError(MarketplaceError):
    """Raised when a slot compare-and-set loses a race; the unit is retried"""

    def __init__(self, lead_id: int):
        super().__init__(f"Slot state of lead {lead_id} changed during unlock")
        self.lead_id = lead_id


class LedgerUnavailableError(MarketplaceError):
    """Raised when an unlock keeps failing on infrastructure after all retries"""
    pass
