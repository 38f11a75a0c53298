# coding: utf-8
"""
Lead Slot Allocator

The single source of truth for "is a slot available, and at what price".

Features:
- Tiered pricing that rises as slots fill (early unlockers pay less)
- Exclusive buyout pricing, only while no slot is taken
- Eligibility with an explicit `now` (freshness window, sold out, exclusivity)
- Compare-and-set slot reservation used inside the unlock transaction
"""

from datetime import datetime, timedelta, UTC
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.marketplace_config import (
    SLOT_PRICE_MULTIPLIERS,
    EXCLUSIVE_TIER_FACTOR,
    EXCLUSIVE_DISCOUNT,
    LEAD_FRESHNESS_HOURS,
)
from src.core.enums import EligibilityReason, LeadMarketState
from src.core.exceptions import SlotConflictError
from src.core.results import PricingTier, Eligibility
from src.database.models import Lead, LeadStatus


FRESHNESS_WINDOW = timedelta(hours=LEAD_FRESHNESS_HOURS)


def round_credits(value: Decimal) -> int:
    """Round half away from zero (1062.5 -> 1063)"""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite drops tzinfo) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SlotAllocator:
    """Pricing, eligibility and reservation of lead slots"""

    @staticmethod
    def get_pricing_tier(lead: Lead) -> PricingTier:
        """
        Current price tier of a lead

        Tier is claimed_slots clamped into the multiplier table; slots past
        the table reuse its last multiplier.
        """
        tier = min(max(lead.claimed_slots, 0), len(SLOT_PRICE_MULTIPLIERS) - 1)
        return PricingTier(tier=tier, multiplier=SLOT_PRICE_MULTIPLIERS[tier])

    @staticmethod
    def compute_price(lead: Lead, exclusive: bool = False) -> int:
        """
        Credits an unlock of this lead costs right now

        Args:
            lead: Lead to price
            exclusive: Price an exclusive buyout instead of the next slot

        Returns:
            Price in credits

        Raises:
            ValueError: exclusive requested while a slot is taken or the lead
                is already exclusive
        """
        base = Decimal(lead.base_price)

        if exclusive:
            if not SlotAllocator.exclusive_available(lead):
                raise ValueError(
                    f"Exclusive buyout unavailable for lead {lead.id} "
                    f"(claimed={lead.claimed_slots}, exclusive={lead.is_exclusive})"
                )
            return round_credits(
                base * Decimal(str(EXCLUSIVE_TIER_FACTOR)) * Decimal(str(EXCLUSIVE_DISCOUNT))
            )

        tier = SlotAllocator.get_pricing_tier(lead)
        return round_credits(base * Decimal(str(tier.multiplier)))

    @staticmethod
    def exclusive_available(lead: Lead) -> bool:
        return lead.claimed_slots == 0 and not lead.is_exclusive

    @staticmethod
    def is_expired(lead: Lead, now: datetime) -> bool:
        if lead.status == LeadStatus.EXPIRED.value:
            return True
        return as_utc(now) - as_utc(lead.created_at) > FRESHNESS_WINDOW

    @staticmethod
    def expires_at(lead: Lead) -> datetime:
        return as_utc(lead.created_at) + FRESHNESS_WINDOW

    @staticmethod
    def is_eligible_for_unlock(
        lead: Lead,
        now: datetime,
        agent_id: Optional[int] = None,
        exclusive: bool = False,
    ) -> Eligibility:
        """
        Decide whether a new unlock may be sold on this lead

        Checks run in order: freshness window, admin status, exclusivity,
        slot supply, then buyout availability when exclusive is requested.

        Args:
            lead: Lead to check
            now: Evaluation time (passed explicitly, never read from the clock)
            agent_id: Caller; the exclusive holder is not shut out by its own buyout
            exclusive: Whether the caller wants an exclusive buyout

        Returns:
            Eligibility with the first failing reason
        """
        if SlotAllocator.is_expired(lead, now):
            return Eligibility.denied(EligibilityReason.EXPIRED)

        if lead.status != LeadStatus.ACTIVE.value:
            return Eligibility.denied(EligibilityReason.INACTIVE)

        if lead.is_exclusive:
            if agent_id is None or lead.exclusive_agent_id != agent_id:
                return Eligibility.denied(EligibilityReason.ALREADY_EXCLUSIVE)
            # The holder re-requesting: nothing more to sell
            return Eligibility.denied(EligibilityReason.EXCLUSIVE_UNAVAILABLE)

        if lead.claimed_slots >= lead.max_slots:
            return Eligibility.denied(EligibilityReason.SOLD_OUT)

        if exclusive and lead.claimed_slots > 0:
            return Eligibility.denied(EligibilityReason.EXCLUSIVE_UNAVAILABLE)

        return Eligibility.ok()

    @staticmethod
    def market_state(lead: Lead, now: datetime) -> LeadMarketState:
        """
        Lead position in the market, evaluated lazily at read time
        """
        if SlotAllocator.is_expired(lead, now):
            return LeadMarketState.EXPIRED
        if lead.is_exclusive:
            return LeadMarketState.EXCLUSIVE
        if lead.status != LeadStatus.ACTIVE.value:
            return LeadMarketState.INACTIVE
        if lead.claimed_slots >= lead.max_slots:
            return LeadMarketState.SOLD_OUT
        return LeadMarketState.OPEN

    @staticmethod
    async def reserve_slot(
        session: AsyncSession,
        lead: Lead,
        exclusive: bool,
        agent_id: int,
    ) -> int:
        """
        Claim a slot (or the buyout) on a lead inside the caller's unit of work

        The UPDATE restates what the price was computed against: a slot is
        taken only if claimed_slots still equals the observed value and is
        below max_slots; a buyout only if no slot is taken. Existing slot
        holders keep their slots when a buyout lands.

        Args:
            session: Session holding the open unlock transaction
            lead: Lead as observed when the price was computed
            exclusive: Reserve the exclusive buyout instead of a slot
            agent_id: Agent receiving the slot

        Returns:
            claimed_slots after the reservation

        Raises:
            SlotConflictError: slot state changed since it was observed
        """
        observed = lead.claimed_slots

        stmt = update(Lead).where(
            Lead.id == lead.id,
            Lead.status == LeadStatus.ACTIVE.value,
            Lead.is_exclusive.is_(False),
            Lead.claimed_slots == observed,
        )

        if exclusive:
            stmt = stmt.where(Lead.claimed_slots == 0).values(
                is_exclusive=True,
                exclusive_agent_id=agent_id,
                contacts=Lead.contacts + 1,
            )
        else:
            stmt = stmt.where(Lead.claimed_slots < Lead.max_slots).values(
                claimed_slots=Lead.claimed_slots + 1,
                contacts=Lead.contacts + 1,
            )

        result = await session.execute(stmt.execution_options(synchronize_session=False))

        if result.rowcount != 1:
            logger.debug(
                f"Slot conflict on lead {lead.id}: observed claimed={observed}, "
                f"exclusive={exclusive}, agent={agent_id}"
            )
            raise SlotConflictError(lead.id)

        claimed_after = observed if exclusive else observed + 1
        logger.info(
            f"Reserved {'exclusive buyout' if exclusive else 'slot'} on lead {lead.id} "
            f"for agent {agent_id} (claimed {claimed_after}/{lead.max_slots})"
        )
        return claimed_after


def utc_now() -> datetime:
    return datetime.now(UTC)
