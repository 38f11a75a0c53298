"""
Tests for referral registration and one-time settlement
"""

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import create_test_agent
from src.core.enums import ReferralOutcome, NotificationType
from src.database import crud
from src.database.models import Referral, WalletTransactionType
from src.services.notification_service import NotificationDispatcher
from src.services.onboarding_service import onboard_agent
from src.services.referral_service import ReferralService
from src.services.wallet_service import WalletLedger


@pytest.fixture
def service(notifier):
    return ReferralService(notifier=notifier)


# ============================================================================
# SETTLEMENT
# ============================================================================


@pytest.mark.asyncio
async def test_settle_credits_both_agents_once(db_session, make_agent, service, notifier):
    """Referrer +5, referred +2; the second call is a no-op"""
    referrer = await make_agent(balance=2)
    referred = await make_agent(balance=2)
    await service.register_referral(db_session, referred.id, referrer.referral_code)

    first = await service.settle_referral(db_session, referrer.id, referred.id)
    second = await service.settle_referral(db_session, referrer.id, referred.id)

    assert first.status == ReferralOutcome.SUCCESS
    assert first.credited == 5
    assert first.referral.bonus_awarded
    assert second.status == ReferralOutcome.ALREADY_SETTLED
    assert second.credited == 0

    assert await WalletLedger.get_balance(db_session, referrer.id) == 7
    assert await WalletLedger.get_balance(db_session, referred.id) == 4

    credits = await WalletLedger.get_transaction_history(
        db_session, referrer.id, transaction_type=WalletTransactionType.REFERRAL_CREDIT.value
    )
    assert len(credits) == 1
    assert credits[0]["amount"] == 5

    events = notifier.drain_nowait()
    assert [e.type for e in events] == [NotificationType.REFERRAL_CREDITED]
    assert events[0].payload["referrerId"] == referrer.id


@pytest.mark.asyncio
async def test_only_the_registered_referrer_is_paid(db_session, make_agent, service):
    """Another agent cannot claim a bonus for someone they did not refer"""
    referrer = await make_agent(balance=0)
    outsider = await make_agent(balance=0)
    referred = await make_agent(balance=0)
    await service.register_referral(db_session, referred.id, referrer.referral_code)

    settled = await service.settle_referral(db_session, referrer.id, referred.id)
    claimed = await service.settle_referral(db_session, outsider.id, referred.id)

    assert settled.status == ReferralOutcome.SUCCESS
    assert claimed.status == ReferralOutcome.NOT_FOUND
    assert claimed.credited == 0

    assert await WalletLedger.get_balance(db_session, referrer.id) == 5
    assert await WalletLedger.get_balance(db_session, outsider.id) == 0
    assert await WalletLedger.get_balance(db_session, referred.id) == 2
    assert await crud.get_referral(db_session, outsider.id, referred.id) is None


@pytest.mark.asyncio
async def test_unregistered_pair_not_settled(db_session, make_agent, service):
    referrer = await make_agent(balance=0)
    referred = await make_agent(balance=0)

    result = await service.settle_referral(db_session, referrer.id, referred.id)

    assert result.status == ReferralOutcome.NOT_FOUND
    assert await WalletLedger.get_balance(db_session, referred.id) == 0


@pytest.mark.asyncio
async def test_second_referrer_row_rejected(db_session, make_agent):
    """At most one referral row per referred agent"""
    first = await make_agent()
    second = await make_agent()
    referred = await make_agent()
    db_session.add(Referral(referrer_id=first.id, referred_id=referred.id, bonus_awarded=False))
    await db_session.commit()

    db_session.add(Referral(referrer_id=second.id, referred_id=referred.id, bonus_awarded=False))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_self_referral_blocked(db_session, make_agent, service):
    agent = await make_agent(balance=2)

    result = await service.settle_referral(db_session, agent.id, agent.id)

    assert result.status == ReferralOutcome.SELF_REFERRAL
    assert await WalletLedger.get_balance(db_session, agent.id) == 2


@pytest.mark.asyncio
async def test_settle_unknown_agent(db_session, make_agent, service):
    referrer = await make_agent()

    result = await service.settle_referral(db_session, referrer.id, 9999)

    assert result.status == ReferralOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_concurrent_settlements_credit_once(file_session_maker):
    async with file_session_maker() as session:
        referrer = await create_test_agent(session, balance=0)
        referred = await create_test_agent(session, balance=0)

    service = ReferralService(notifier=NotificationDispatcher(maxsize=100))
    async with file_session_maker() as session:
        await service.register_referral(session, referred.id, referrer.referral_code)

    async def settle():
        async with file_session_maker() as session:
            return await service.settle_referral(session, referrer.id, referred.id)

    results = await asyncio.gather(*(settle() for _ in range(4)))

    outcomes = [r.status for r in results]
    assert outcomes.count(ReferralOutcome.SUCCESS) == 1
    assert outcomes.count(ReferralOutcome.ALREADY_SETTLED) == 3

    async with file_session_maker() as session:
        assert await WalletLedger.get_balance(session, referrer.id) == 5
        assert await WalletLedger.get_balance(session, referred.id) == 2


# ============================================================================
# REGISTRATION
# ============================================================================


@pytest.mark.asyncio
async def test_register_referral_by_code(db_session, make_agent, service):
    referrer = await make_agent()
    referred = await make_agent()

    result = await service.register_referral(db_session, referred.id, referrer.referral_code.lower())

    assert result.status == ReferralOutcome.SUCCESS
    assert result.referral.referrer_id == referrer.id
    assert not result.referral.bonus_awarded

    again = await service.register_referral(db_session, referred.id, referrer.referral_code)
    assert again.status == ReferralOutcome.ALREADY_REFERRED


@pytest.mark.asyncio
async def test_register_rejects_bad_codes(db_session, make_agent, service):
    agent = await make_agent()

    invalid = await service.register_referral(db_session, agent.id, "NOPE0000")
    own = await service.register_referral(db_session, agent.id, agent.referral_code)

    assert invalid.status == ReferralOutcome.INVALID_CODE
    assert own.status == ReferralOutcome.SELF_REFERRAL


@pytest.mark.asyncio
async def test_onboarding_links_referral_and_settles_later(db_session, make_agent, service):
    referrer = await make_agent(balance=2)

    agent, referral = await onboard_agent(
        db_session, "New Agent", "New.Agent@Example.com", referral_code=referrer.referral_code
    )

    assert agent.email == "new.agent@example.com"
    assert agent.referral_code
    assert referral.status == ReferralOutcome.SUCCESS
    assert await WalletLedger.get_balance(db_session, agent.id) == 2

    settled = await service.settle_referral(db_session, referrer.id, agent.id)
    assert settled.status == ReferralOutcome.SUCCESS

    stats = await service.get_referral_stats(db_session, referrer.id)
    assert stats["total_referrals"] == 1
    assert stats["settled_referrals"] == 1
    assert stats["pending_referrals"] == 0
    assert stats["credits_earned"] == 5

    stored = await crud.get_referral(db_session, referrer.id, agent.id)
    assert stored.settled_at is not None
    assert stored.welcome_credits == 2
