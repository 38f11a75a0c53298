# coding: utf-8
"""
Unlock Orchestrator

The single transactional entry point that sells a lead slot: verification,
idempotency, eligibility, pricing, then debit + slot reservation + unlock
record in one unit of work.

Concurrency model:
- Every mutation is a conditional UPDATE restating its precondition, so two
  requests racing for the last slot cannot both succeed
- The (agent, lead) unique constraint makes a duplicate click a no-op
- A lost race, a lock timeout or a per-attempt timeout rolls the whole unit
  back and the attempt is retried (bounded, exponential backoff)
"""

import asyncio
from datetime import datetime
from typing import Optional, List, Dict

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryError,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)
from loguru import logger

from config.marketplace_config import (
    UNLOCK_MAX_ATTEMPTS,
    UNLOCK_ATTEMPT_TIMEOUT_SECONDS,
    UNLOCK_RETRY_WAIT_MIN,
    UNLOCK_RETRY_WAIT_MAX,
)
from config.sentry import capture_exception
from src.core.enums import EligibilityReason, UnlockStatus, NotificationType
from src.core.exceptions import SlotConflictError, LedgerUnavailableError
from src.core.results import UnlockResult, UnlockQuote
from src.database import crud
from src.database.engine import atomic
from src.database.models import (
    LeadUnlock,
    ContactType,
    WalletTransactionType,
)
from src.services.slot_allocator import SlotAllocator, utc_now
from src.services.wallet_service import WalletLedger
from src.services.notification_service import NotificationDispatcher, notification_dispatcher


class DuplicateUnlockError(Exception):
    """A concurrent request by the same agent inserted the unlock first"""
    pass


RETRYABLE_ERRORS = (SlotConflictError, DuplicateUnlockError, OperationalError, TimeoutError)


class UnlockService:
    """Sells lead slots atomically"""

    def __init__(
        self,
        notifier: Optional[NotificationDispatcher] = None,
        max_attempts: int = UNLOCK_MAX_ATTEMPTS,
        attempt_timeout: float = UNLOCK_ATTEMPT_TIMEOUT_SECONDS,
    ):
        self.notifier = notifier or notification_dispatcher
        self.max_attempts = max_attempts
        self.attempt_timeout = attempt_timeout

    async def unlock(
        self,
        session: AsyncSession,
        agent_id: int,
        lead_id: int,
        exclusive: bool = False,
        now: Optional[datetime] = None,
    ) -> UnlockResult:
        """
        Unlock a lead's contact details for an agent

        Args:
            session: Session owned by this request
            agent_id: Paying agent
            lead_id: Lead to unlock
            exclusive: Buy the lead out exclusively instead of taking a slot
            now: Evaluation time for the freshness window (defaults to now)

        Returns:
            UnlockResult; business outcomes are statuses, never exceptions

        Raises:
            LedgerUnavailableError: infrastructure kept failing after retries
        """
        now = now or utc_now()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=UNLOCK_RETRY_WAIT_MIN, max=UNLOCK_RETRY_WAIT_MAX),
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.debug(
                            f"Retrying unlock agent={agent_id} lead={lead_id} "
                            f"(attempt {attempt.retry_state.attempt_number})"
                        )
                    result = await self._attempt(session, agent_id, lead_id, exclusive, now)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(
                f"Unlock agent={agent_id} lead={lead_id} failed after "
                f"{self.max_attempts} attempts: {cause!r}"
            )
            capture_exception(cause, agent_id=agent_id, lead_id=lead_id, exclusive=exclusive)
            raise LedgerUnavailableError(
                f"Unlock of lead {lead_id} for agent {agent_id} could not complete"
            ) from cause

        # 6. Fire-and-forget, outside the unit of work
        if result.status == UnlockStatus.SUCCESS:
            self.notifier.publish(
                NotificationType.LEAD_UNLOCKED,
                agentId=agent_id,
                leadId=lead_id,
                exclusive=exclusive,
                costPaid=result.price,
            )

        return result

    async def _attempt(
        self,
        session: AsyncSession,
        agent_id: int,
        lead_id: int,
        exclusive: bool,
        now: datetime,
    ) -> UnlockResult:
        # Steps 1-5 form one unit; an early return commits a read-only unit
        async with asyncio.timeout(self.attempt_timeout), atomic(session):
            # 1. Verification gate (read-only input from the verification flow)
            agent = await crud.get_agent(session, agent_id)
            if agent is None or not agent.is_verified:
                logger.info(f"Unlock refused: agent {agent_id} is not verified")
                return UnlockResult(status=UnlockStatus.NOT_VERIFIED)

            # 2. Idempotency: the agent already holds this lead
            existing = await crud.get_unlock(session, agent_id, lead_id)
            if existing is not None:
                logger.debug(f"Agent {agent_id} already unlocked lead {lead_id}")
                balance = await WalletLedger.get_balance(session, agent_id)
                return UnlockResult(
                    status=UnlockStatus.ALREADY_UNLOCKED,
                    unlock=existing,
                    price=0,
                    new_balance=balance,
                )

            # 3. Eligibility
            lead = await crud.get_lead(session, lead_id)
            if lead is None:
                return UnlockResult(
                    status=UnlockStatus.NOT_ELIGIBLE,
                    reason=EligibilityReason.LEAD_NOT_FOUND,
                )

            eligibility = SlotAllocator.is_eligible_for_unlock(
                lead, now, agent_id=agent_id, exclusive=exclusive
            )
            if not eligibility.eligible:
                logger.info(
                    f"Lead {lead_id} not eligible for agent {agent_id}: {eligibility.reason.value}"
                )
                return UnlockResult(status=UnlockStatus.NOT_ELIGIBLE, reason=eligibility.reason)

            # 4. Price against the observed slot state
            price = SlotAllocator.compute_price(lead, exclusive)

            # 5. Debit, reserve, record; any failure rolls all three back
            debit = await WalletLedger.debit(
                session,
                agent_id,
                price,
                reason=f"Lead {'Exclusive' if exclusive else 'Unlock'} - #{lead_id}",
                transaction_type=WalletTransactionType.UNLOCK_DEBIT,
                related_lead_id=lead_id,
            )
            if not debit.success:
                return UnlockResult(
                    status=UnlockStatus.INSUFFICIENT_FUNDS,
                    price=price,
                    new_balance=debit.new_balance,
                )

            await SlotAllocator.reserve_slot(session, lead, exclusive, agent_id)

            unlock = LeadUnlock(
                agent_id=agent_id,
                lead_id=lead_id,
                cost_paid=price,
                is_exclusive=exclusive,
                contact_type=(ContactType.EXCLUSIVE if exclusive else ContactType.UNLOCK).value,
            )
            session.add(unlock)
            try:
                await session.flush()
            except IntegrityError as e:
                raise DuplicateUnlockError(str(e)) from e

        logger.info(
            f"Agent {agent_id} unlocked lead {lead_id} "
            f"({'exclusive' if exclusive else 'slot'}, paid {price}, balance {debit.new_balance})"
        )
        return UnlockResult(
            status=UnlockStatus.SUCCESS,
            unlock=unlock,
            price=price,
            new_balance=debit.new_balance,
        )

    async def quote(
        self,
        session: AsyncSession,
        lead_id: int,
        agent_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[UnlockQuote]:
        """
        What an unlock would cost right now, for display

        Read-only; UIs call this instead of re-deriving prices.

        Returns:
            UnlockQuote or None if the lead does not exist
        """
        now = now or utc_now()
        lead = await crud.get_lead(session, lead_id)
        if lead is None:
            return None

        eligibility = SlotAllocator.is_eligible_for_unlock(lead, now, agent_id=agent_id)
        tier = SlotAllocator.get_pricing_tier(lead)

        exclusive_price = None
        if eligibility.eligible and SlotAllocator.exclusive_available(lead):
            exclusive_price = SlotAllocator.compute_price(lead, exclusive=True)

        return UnlockQuote(
            lead_id=lead.id,
            eligible=eligibility.eligible,
            price=SlotAllocator.compute_price(lead) if eligibility.eligible else None,
            exclusive_price=exclusive_price,
            tier=tier.tier,
            slots_remaining=0 if lead.is_exclusive else lead.slots_remaining,
            reason=eligibility.reason,
        )

    @staticmethod
    async def get_unlocked_leads(session: AsyncSession, agent_id: int) -> List[int]:
        """Lead IDs the agent holds, refunded ones included"""
        unlocks = await crud.get_unlocks_for_agent(session, agent_id)
        return [unlock.lead_id for unlock in unlocks]

    @staticmethod
    async def get_lead_unlocks(session: AsyncSession, lead_id: int) -> List[Dict]:
        """Slot holders of a lead, in purchase order"""
        unlocks = await crud.get_unlocks_for_lead(session, lead_id)
        return [
            {
                "agent_id": unlock.agent_id,
                "cost_paid": unlock.cost_paid,
                "is_exclusive": unlock.is_exclusive,
                "refunded": unlock.refunded,
                "created_at": unlock.created_at.isoformat(),
            }
            for unlock in unlocks
        ]


# Global instance
unlock_service = UnlockService()
