"""
CRUD operations for the Lead Marketplace core

Async database operations using SQLAlchemy 2.0. Slot counters, exclusivity
and balances are NOT written here; see SlotAllocator and WalletLedger.
"""

import logging
import random
import string
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.marketplace_config import REFERRAL_CODE_LENGTH
from src.database.models import (
    Agent,
    Lead,
    LeadStatus,
    LeadUnlock,
    LeadReport,
    Referral,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


# ===========================
# AGENT OPERATIONS
# ===========================


async def get_agent(session: AsyncSession, agent_id: int) -> Optional[Agent]:
    """
    Get agent by ID (always re-read from the database)

    Args:
        session: Database session
        agent_id: Agent ID

    Returns:
        Agent model or None
    """
    stmt = (
        select(Agent)
        .where(Agent.id == agent_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_agent_by_referral_code(
    session: AsyncSession, referral_code: str
) -> Optional[Agent]:
    stmt = select(Agent).where(Agent.referral_code == referral_code.strip().upper())
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def generate_referral_code(session: AsyncSession) -> str:
    """
    Generate unique referral code

    Returns:
        Unique referral code (REFERRAL_CODE_LENGTH characters)
    """
    while True:
        code = ''.join(
            random.choices(string.ascii_uppercase + string.digits, k=REFERRAL_CODE_LENGTH)
        )

        stmt = select(Agent.id).where(Agent.referral_code == code)
        result = await session.execute(stmt)
        if not result.scalar_one_or_none():
            return code


async def create_agent(
    session: AsyncSession,
    name: str,
    email: str,
    verification_status: str = VerificationStatus.UNVERIFIED.value,
) -> Agent:
    """
    Create agent with a fresh referral code

    Flushes but does not commit; onboarding opens the wallet in the same
    unit of work.

    Args:
        session: Database session
        name: Display name
        email: Unique email
        verification_status: Initial verification status

    Returns:
        Created Agent model
    """
    agent = Agent(
        name=name,
        email=email.strip().lower(),
        verification_status=verification_status,
        referral_code=await generate_referral_code(session),
    )
    session.add(agent)
    await session.flush()

    logger.info(f"Agent created: {agent.id} ({agent.email})")
    return agent


async def set_verification_status(
    session: AsyncSession, agent_id: int, status: VerificationStatus
) -> bool:
    """
    Record the verification flow's decision for an agent

    Returns:
        True if the agent exists
    """
    stmt = (
        update(Agent)
        .where(Agent.id == agent_id)
        .values(verification_status=status.value)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    if result.rowcount == 0:
        logger.warning(f"Verification update for unknown agent {agent_id}")
        return False

    logger.info(f"Agent {agent_id} verification status -> {status.value}")
    return True


# ===========================
# LEAD OPERATIONS
# ===========================


async def get_lead(session: AsyncSession, lead_id: int) -> Optional[Lead]:
    """
    Get lead by ID (always re-read from the database)

    Args:
        session: Database session
        lead_id: Lead ID

    Returns:
        Lead model or None
    """
    stmt = (
        select(Lead)
        .where(Lead.id == lead_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def add_lead(session: AsyncSession, lead: Lead) -> Lead:
    """
    Persist a normalized lead

    Args:
        session: Database session
        lead: Lead built by lead intake

    Returns:
        Persisted Lead
    """
    session.add(lead)
    await session.commit()
    await session.refresh(lead)

    logger.info(f"Lead created: {lead.id} (base price {lead.base_price}, {lead.max_slots} slots)")
    return lead


async def update_lead_status(
    session: AsyncSession, lead_id: int, status: LeadStatus
) -> Optional[Lead]:
    """
    Administrative status change (pause, close, reopen)

    Returns:
        Updated Lead or None if not found
    """
    stmt = (
        update(Lead)
        .where(Lead.id == lead_id)
        .values(status=status.value)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    if result.rowcount == 0:
        return None

    logger.info(f"Lead {lead_id} status -> {status.value}")
    return await get_lead(session, lead_id)


async def increment_lead_views(session: AsyncSession, lead_id: int) -> None:
    """
    Bump the display-only view counter

    Best effort: a failure is logged and swallowed, views never block reads.
    """
    try:
        stmt = (
            update(Lead)
            .where(Lead.id == lead_id)
            .values(views=Lead.views + 1)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.warning(f"Could not count view for lead {lead_id}: {e}")


# ===========================
# UNLOCK (CONTACT HISTORY) OPERATIONS
# ===========================


async def get_unlock(
    session: AsyncSession, agent_id: int, lead_id: int
) -> Optional[LeadUnlock]:
    """
    Get the unlock record an agent holds on a lead

    Args:
        session: Database session
        agent_id: Agent ID
        lead_id: Lead ID

    Returns:
        LeadUnlock or None
    """
    stmt = (
        select(LeadUnlock)
        .where(LeadUnlock.agent_id == agent_id, LeadUnlock.lead_id == lead_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_unlocks_for_agent(
    session: AsyncSession, agent_id: int, include_refunded: bool = True
) -> List[LeadUnlock]:
    stmt = select(LeadUnlock).where(LeadUnlock.agent_id == agent_id)
    if not include_refunded:
        stmt = stmt.where(LeadUnlock.refunded.is_(False))
    stmt = stmt.order_by(LeadUnlock.created_at.desc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_unlocks_for_lead(session: AsyncSession, lead_id: int) -> List[LeadUnlock]:
    stmt = (
        select(LeadUnlock)
        .where(LeadUnlock.lead_id == lead_id)
        .order_by(LeadUnlock.created_at.asc(), LeadUnlock.id.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ===========================
# REFERRAL OPERATIONS
# ===========================


async def get_referral(
    session: AsyncSession, referrer_id: int, referred_id: int
) -> Optional[Referral]:
    stmt = (
        select(Referral)
        .where(Referral.referrer_id == referrer_id, Referral.referred_id == referred_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_referral_for_referred(
    session: AsyncSession, referred_id: int
) -> Optional[Referral]:
    """The referral (if any) that brought an agent in"""
    stmt = select(Referral).where(Referral.referred_id == referred_id).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


# ===========================
# REPORT OPERATIONS
# ===========================


async def get_report(session: AsyncSession, report_id: int) -> Optional[LeadReport]:
    stmt = (
        select(LeadReport)
        .where(LeadReport.id == report_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_open_report(
    session: AsyncSession, reporter_id: int, lead_id: int
) -> Optional[LeadReport]:
    stmt = select(LeadReport).where(
        LeadReport.open_key == LeadReport.make_open_key(reporter_id, lead_id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_reports(
    session: AsyncSession,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[LeadReport]:
    """
    List bad-lead reports, newest first

    Args:
        session: Database session
        status: Optional status filter (pending/approved/rejected)
        limit: Page size
        offset: Pagination offset
    """
    stmt = select(LeadReport)
    if status:
        stmt = stmt.where(LeadReport.status == status)
    stmt = stmt.order_by(LeadReport.created_at.desc(), LeadReport.id.desc()).limit(limit).offset(offset)

    result = await session.execute(stmt)
    return list(result.scalars().all())
