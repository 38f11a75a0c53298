# coding: utf-8
"""
Agent Onboarding

Creates an agent together with its wallet (starting balance included) in
one unit of work, and links a referral code when one was entered.
"""

from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from src.core.results import ReferralResult
from src.database import crud
from src.database.engine import atomic
from src.database.models import Agent, VerificationStatus
from src.services.wallet_service import WalletLedger
from src.services.referral_service import referral_service


async def onboard_agent(
    session: AsyncSession,
    name: str,
    email: str,
    referral_code: Optional[str] = None,
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED,
) -> Tuple[Agent, Optional[ReferralResult]]:
    """
    Create an agent and open its wallet

    Args:
        session: Database session
        name: Agent display name
        email: Unique email
        referral_code: Code of the referring agent, if any
        verification_status: Initial status (normally unverified)

    Returns:
        (agent, referral result or None when no code was given)

    Raises:
        IntegrityError: email already registered
    """
    async with atomic(session):
        agent = await crud.create_agent(
            session, name, email, verification_status=verification_status.value
        )
        await WalletLedger.open_wallet(session, agent.id)

    logger.info(f"Agent {agent.id} onboarded with referral code {agent.referral_code}")

    referral = None
    if referral_code:
        # A bad code never blocks signup
        referral = await referral_service.register_referral(session, agent.id, referral_code)

    return agent, referral
