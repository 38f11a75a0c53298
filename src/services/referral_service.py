# coding: utf-8
"""
Referral Settlement

Links referred agents to their referrer at signup and credits the referrer
exactly once, when the referred agent's account is confirmed active.
"""

from datetime import datetime, UTC
from typing import Optional, Dict

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.marketplace_config import REFERRAL_BONUS, REFERRAL_WELCOME_BONUS
from src.core.enums import ReferralOutcome, NotificationType
from src.core.results import ReferralResult
from src.database import crud
from src.database.engine import atomic
from src.database.models import Referral, WalletTransactionType
from src.services.wallet_service import WalletLedger
from src.services.notification_service import NotificationDispatcher, notification_dispatcher


class ReferralService:
    """One-time referral credits"""

    def __init__(
        self,
        notifier: Optional[NotificationDispatcher] = None,
        bonus: int = REFERRAL_BONUS,
        welcome_bonus: int = REFERRAL_WELCOME_BONUS,
    ):
        self.notifier = notifier or notification_dispatcher
        self.bonus = bonus
        self.welcome_bonus = welcome_bonus

    async def register_referral(
        self,
        session: AsyncSession,
        referred_id: int,
        referral_code: str,
    ) -> ReferralResult:
        """
        Link a newly onboarded agent to the owner of a referral code

        No credits move here; settle_referral pays out later.

        Args:
            session: Database session
            referred_id: The new agent
            referral_code: Code entered at signup

        Returns:
            ReferralResult (INVALID_CODE, SELF_REFERRAL, ALREADY_REFERRED)
        """
        referrer = await crud.get_agent_by_referral_code(session, referral_code)
        if referrer is None:
            logger.info(f"Invalid referral code {referral_code!r} for agent {referred_id}")
            return ReferralResult(status=ReferralOutcome.INVALID_CODE)

        if referrer.id == referred_id:
            logger.warning(f"Self-referral blocked: agent {referred_id} used own code")
            return ReferralResult(status=ReferralOutcome.SELF_REFERRAL)

        existing = await crud.get_referral_for_referred(session, referred_id)
        if existing is not None:
            return ReferralResult(status=ReferralOutcome.ALREADY_REFERRED, referral=existing)

        try:
            async with atomic(session):
                referral = Referral(
                    referrer_id=referrer.id,
                    referred_id=referred_id,
                    referral_code=referrer.referral_code,
                    bonus_awarded=False,
                )
                session.add(referral)
                await session.flush()
        except IntegrityError:
            logger.warning(f"Duplicate referral blocked: {referrer.id} -> {referred_id}")
            existing = await crud.get_referral_for_referred(session, referred_id)
            return ReferralResult(status=ReferralOutcome.ALREADY_REFERRED, referral=existing)

        logger.info(f"Referral registered: {referrer.id} -> {referred_id} with code {referrer.referral_code}")
        return ReferralResult(status=ReferralOutcome.SUCCESS, referral=referral)

    async def settle_referral(
        self,
        session: AsyncSession,
        referrer_id: int,
        referred_id: int,
    ) -> ReferralResult:
        """
        Pay out a referral once the referred agent is confirmed active

        Credits the referrer the referral bonus and the referred agent the
        welcome bonus. bonus_awarded flips through a conditional update, so
        a second (or concurrent) call is a no-op returning ALREADY_SETTLED.

        Args:
            session: Database session
            referrer_id: Agent who referred
            referred_id: Agent who was referred

        Returns:
            ReferralResult (NOT_FOUND unless register_referral linked the pair)
        """
        if referrer_id == referred_id:
            logger.warning(f"Self-referral blocked: agent {referrer_id}")
            return ReferralResult(status=ReferralOutcome.SELF_REFERRAL)

        # Only the referral recorded at signup pays out
        referral = await crud.get_referral(session, referrer_id, referred_id)
        if referral is None:
            logger.warning(f"No registered referral {referrer_id} -> {referred_id}, settlement refused")
            return ReferralResult(status=ReferralOutcome.NOT_FOUND)

        if referral.bonus_awarded:
            return ReferralResult(status=ReferralOutcome.ALREADY_SETTLED, referral=referral)

        async with atomic(session):
            stmt = (
                update(Referral)
                .where(Referral.id == referral.id, Referral.bonus_awarded.is_(False))
                .values(
                    bonus_awarded=True,
                    credits_earned=self.bonus,
                    welcome_credits=self.welcome_bonus,
                    settled_at=datetime.now(UTC),
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)

            if result.rowcount != 1:
                logger.info(f"Referral {referrer_id} -> {referred_id} already settled")
                settled = ReferralOutcome.ALREADY_SETTLED
            else:
                settled = ReferralOutcome.SUCCESS
                # Fixed order keeps concurrent settlements from locking wallets crosswise
                credits = sorted(
                    [
                        (referrer_id, self.bonus, "Referral Bonus"),
                        (referred_id, self.welcome_bonus, "Welcome Bonus"),
                    ]
                )
                for agent_id, amount, reason in credits:
                    if amount > 0:
                        await WalletLedger.credit(
                            session,
                            agent_id,
                            amount,
                            reason=reason,
                            transaction_type=WalletTransactionType.REFERRAL_CREDIT,
                        )

        referral = await crud.get_referral(session, referrer_id, referred_id)

        if settled == ReferralOutcome.SUCCESS:
            logger.info(
                f"Referral settled: {referrer_id} +{self.bonus}, {referred_id} +{self.welcome_bonus}"
            )
            self.notifier.publish(
                NotificationType.REFERRAL_CREDITED,
                referrerId=referrer_id,
                referredId=referred_id,
                credits=self.bonus,
            )

        return ReferralResult(
            status=settled,
            referral=referral,
            credited=self.bonus if settled == ReferralOutcome.SUCCESS else 0,
        )

    @staticmethod
    async def get_referral_stats(session: AsyncSession, agent_id: int) -> Dict:
        """
        Referral totals for an agent

        Returns:
            Dict with total, settled and credits earned
        """
        stmt = select(
            func.count(Referral.id),
            func.count(Referral.id).filter(Referral.bonus_awarded.is_(True)),
            func.coalesce(func.sum(Referral.credits_earned), 0),
        ).where(Referral.referrer_id == agent_id)
        total, settled, earned = (await session.execute(stmt)).one()

        agent = await crud.get_agent(session, agent_id)
        return {
            "referral_code": agent.referral_code if agent else None,
            "total_referrals": total,
            "settled_referrals": settled,
            "pending_referrals": total - settled,
            "credits_earned": int(earned),
        }


# Global instance
referral_service = ReferralService()
