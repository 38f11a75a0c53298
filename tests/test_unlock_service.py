"""
Tests for the unlock transaction: outcomes, idempotency, atomicity
"""

import pytest
from datetime import datetime, timedelta, UTC

from sqlalchemy.exc import OperationalError

from src.core.enums import EligibilityReason, UnlockStatus, NotificationType
from src.core.exceptions import LedgerUnavailableError
from src.database import crud
from src.database.models import LeadStatus, WalletTransactionType
from src.services.notification_service import NotificationDispatcher
from src.services.slot_allocator import SlotAllocator
from src.services.unlock_service import UnlockService
from src.services.wallet_service import WalletLedger


@pytest.fixture
def service(notifier):
    return UnlockService(notifier=notifier)


# ============================================================================
# HAPPY PATH
# ============================================================================


@pytest.mark.asyncio
async def test_first_unlock_charges_base_price(db_session, make_agent, make_lead, service, notifier):
    agent = await make_agent(balance=1000)
    lead = await make_lead()

    result = await service.unlock(db_session, agent.id, lead.id)

    assert result.status == UnlockStatus.SUCCESS
    assert result.success
    assert result.price == 250
    assert result.new_balance == 750
    assert result.unlock.cost_paid == 250
    assert not result.unlock.is_exclusive

    lead = await crud.get_lead(db_session, lead.id)
    assert lead.claimed_slots == 1
    assert lead.contacts == 1

    events = notifier.drain_nowait()
    assert [e.type for e in events] == [NotificationType.LEAD_UNLOCKED]
    assert events[0].payload == {
        "agentId": agent.id,
        "leadId": lead.id,
        "exclusive": False,
        "costPaid": 250,
    }


@pytest.mark.asyncio
async def test_price_tiers_across_slots(db_session, make_agent, make_lead, service):
    """Three agents pay 250, 375, 625; a fourth finds the lead sold out"""
    lead = await make_lead()
    agents = [await make_agent(balance=1000) for _ in range(4)]

    results = [await service.unlock(db_session, agent.id, lead.id) for agent in agents]

    assert [r.price for r in results[:3]] == [250, 375, 625]
    assert results[3].status == UnlockStatus.NOT_ELIGIBLE
    assert results[3].reason == EligibilityReason.SOLD_OUT
    assert await WalletLedger.get_balance(db_session, agents[3].id) == 1000

    lead = await crud.get_lead(db_session, lead.id)
    assert lead.claimed_slots == 3
    assert SlotAllocator.market_state(lead, datetime.now(UTC)).value == "sold_out"


# ============================================================================
# IDEMPOTENCY
# ============================================================================


@pytest.mark.asyncio
async def test_repeat_unlock_is_free(db_session, make_agent, make_lead, service, notifier):
    """Second call returns the existing record and charges nothing"""
    agent = await make_agent(balance=1000)
    lead = await make_lead()

    first = await service.unlock(db_session, agent.id, lead.id)
    second = await service.unlock(db_session, agent.id, lead.id)

    assert first.status == UnlockStatus.SUCCESS
    assert second.status == UnlockStatus.ALREADY_UNLOCKED
    assert second.success
    assert second.price == 0
    assert second.unlock.id == first.unlock.id
    assert second.new_balance == 750

    lead = await crud.get_lead(db_session, lead.id)
    assert lead.claimed_slots == 1
    assert len(notifier.drain_nowait()) == 1

    debits = await WalletLedger.get_transaction_history(
        db_session, agent.id, transaction_type=WalletTransactionType.UNLOCK_DEBIT.value
    )
    assert len(debits) == 1


@pytest.mark.asyncio
async def test_holder_of_sold_out_lead_gets_already_unlocked(db_session, make_agent, make_lead, service):
    """Idempotency is checked before eligibility"""
    lead = await make_lead(max_slots=1)
    agent = await make_agent()

    await service.unlock(db_session, agent.id, lead.id)
    again = await service.unlock(db_session, agent.id, lead.id)

    assert again.status == UnlockStatus.ALREADY_UNLOCKED


# ============================================================================
# REFUSALS
# ============================================================================


@pytest.mark.asyncio
async def test_unverified_agent_refused(db_session, make_agent, make_lead, service):
    agent = await make_agent(verified=False)
    lead = await make_lead()

    result = await service.unlock(db_session, agent.id, lead.id)

    assert result.status == UnlockStatus.NOT_VERIFIED
    assert not result.success
    assert (await crud.get_lead(db_session, lead.id)).claimed_slots == 0


@pytest.mark.asyncio
async def test_unknown_agent_treated_as_unverified(db_session, make_lead, service):
    lead = await make_lead()

    result = await service.unlock(db_session, 424242, lead.id)

    assert result.status == UnlockStatus.NOT_VERIFIED


@pytest.mark.asyncio
async def test_insufficient_funds_leaves_everything_untouched(db_session, make_agent, make_lead, service, notifier):
    agent = await make_agent(balance=100)
    lead = await make_lead()

    result = await service.unlock(db_session, agent.id, lead.id)

    assert result.status == UnlockStatus.INSUFFICIENT_FUNDS
    assert result.price == 250
    assert result.new_balance == 100
    assert await WalletLedger.get_balance(db_session, agent.id) == 100
    assert (await crud.get_lead(db_session, lead.id)).claimed_slots == 0
    assert await crud.get_unlock(db_session, agent.id, lead.id) is None
    assert notifier.pending() == 0


@pytest.mark.asyncio
async def test_missing_lead(db_session, make_agent, service):
    agent = await make_agent()

    result = await service.unlock(db_session, agent.id, 999)

    assert result.status == UnlockStatus.NOT_ELIGIBLE
    assert result.reason == EligibilityReason.LEAD_NOT_FOUND


@pytest.mark.asyncio
async def test_expired_lead_refused(db_session, make_agent, make_lead, service):
    agent = await make_agent()
    lead = await make_lead(created_at=datetime.now(UTC) - timedelta(hours=49))

    result = await service.unlock(db_session, agent.id, lead.id)

    assert result.status == UnlockStatus.NOT_ELIGIBLE
    assert result.reason == EligibilityReason.EXPIRED


@pytest.mark.asyncio
async def test_explicit_now_controls_freshness(db_session, make_agent, make_lead, service):
    created = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    agent = await make_agent()
    lead = await make_lead(created_at=created)

    result = await service.unlock(db_session, agent.id, lead.id, now=created + timedelta(hours=47))

    assert result.status == UnlockStatus.SUCCESS


@pytest.mark.asyncio
async def test_paused_lead_refused(db_session, make_agent, make_lead, service):
    agent = await make_agent()
    lead = await make_lead(status=LeadStatus.PAUSED.value)

    result = await service.unlock(db_session, agent.id, lead.id)

    assert result.reason == EligibilityReason.INACTIVE


# ============================================================================
# EXCLUSIVE BUYOUT
# ============================================================================


@pytest.mark.asyncio
async def test_exclusive_buyout_forecloses_lead(db_session, make_agent, make_lead, service):
    buyer = await make_agent(balance=2000)
    other = await make_agent(balance=2000)
    lead = await make_lead()

    bought = await service.unlock(db_session, buyer.id, lead.id, exclusive=True)
    refused = await service.unlock(db_session, other.id, lead.id)

    assert bought.status == UnlockStatus.SUCCESS
    assert bought.price == 1063
    assert bought.new_balance == 937
    assert bought.unlock.is_exclusive
    assert bought.unlock.contact_type == "exclusive"

    assert refused.status == UnlockStatus.NOT_ELIGIBLE
    assert refused.reason == EligibilityReason.ALREADY_EXCLUSIVE
    assert await WalletLedger.get_balance(db_session, other.id) == 2000

    lead = await crud.get_lead(db_session, lead.id)
    assert lead.is_exclusive
    assert lead.exclusive_agent_id == buyer.id


@pytest.mark.asyncio
async def test_exclusive_unavailable_once_slot_taken(db_session, make_agent, make_lead, service):
    first = await make_agent()
    second = await make_agent()
    lead = await make_lead()

    await service.unlock(db_session, first.id, lead.id)
    result = await service.unlock(db_session, second.id, lead.id, exclusive=True)

    assert result.status == UnlockStatus.NOT_ELIGIBLE
    assert result.reason == EligibilityReason.EXCLUSIVE_UNAVAILABLE
    assert await WalletLedger.get_balance(db_session, second.id) == 10_000


# ============================================================================
# NOTIFICATIONS & INFRASTRUCTURE
# ============================================================================


@pytest.mark.asyncio
async def test_full_notification_queue_does_not_undo_unlock(db_session, make_agent, make_lead):
    """A dropped event is logged; the paid unlock stays committed"""
    notifier = NotificationDispatcher(maxsize=1)
    notifier.publish(NotificationType.REPORT_RESOLVED, reportId=0)
    service = UnlockService(notifier=notifier)

    agent = await make_agent(balance=1000)
    lead = await make_lead()

    result = await service.unlock(db_session, agent.id, lead.id)

    assert result.status == UnlockStatus.SUCCESS
    assert notifier.dropped == 1
    assert await crud.get_unlock(db_session, agent.id, lead.id) is not None
    assert await WalletLedger.get_balance(db_session, agent.id) == 750


@pytest.mark.asyncio
async def test_persistent_infrastructure_failure_raises(db_session, make_agent, make_lead, notifier, monkeypatch):
    """Retries are bounded; nothing is charged when they run out"""
    service = UnlockService(notifier=notifier, max_attempts=3)
    agent = await make_agent(balance=1000)
    lead = await make_lead()
    # Rollback expires loaded objects; keep plain ids for the checks
    agent_id, lead_id = agent.id, lead.id

    calls = {"count": 0}

    async def failing_reserve(*args, **kwargs):
        calls["count"] += 1
        raise OperationalError("UPDATE leads", {}, Exception("database is locked"))

    monkeypatch.setattr(SlotAllocator, "reserve_slot", staticmethod(failing_reserve))

    with pytest.raises(LedgerUnavailableError):
        await service.unlock(db_session, agent_id, lead_id)

    assert calls["count"] == 3
    assert await WalletLedger.get_balance(db_session, agent_id) == 1000
    assert await crud.get_unlock(db_session, agent_id, lead_id) is None
    assert (await crud.get_lead(db_session, lead_id)).claimed_slots == 0
    assert notifier.pending() == 0


@pytest.mark.asyncio
async def test_transient_failure_is_retried(db_session, make_agent, make_lead, notifier, monkeypatch):
    service = UnlockService(notifier=notifier)
    agent = await make_agent(balance=1000)
    lead = await make_lead()

    original = SlotAllocator.reserve_slot
    agent_id, lead_id = agent.id, lead.id
    calls = {"count": 0}

    async def flaky_reserve(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("UPDATE leads", {}, Exception("database is locked"))
        return await original(*args, **kwargs)

    monkeypatch.setattr(SlotAllocator, "reserve_slot", staticmethod(flaky_reserve))

    result = await service.unlock(db_session, agent_id, lead_id)

    assert result.status == UnlockStatus.SUCCESS
    assert calls["count"] == 2
    assert await WalletLedger.get_balance(db_session, agent_id) == 750
    debits = await WalletLedger.get_transaction_history(
        db_session, agent_id, transaction_type=WalletTransactionType.UNLOCK_DEBIT.value
    )
    assert len(debits) == 1


# ============================================================================
# QUOTES & LISTINGS
# ============================================================================


@pytest.mark.asyncio
async def test_quote_matches_charge(db_session, make_agent, make_lead, service):
    agent = await make_agent()
    lead = await make_lead()

    quote = await service.quote(db_session, lead.id)
    assert quote.eligible
    assert quote.price == 250
    assert quote.exclusive_price == 1063
    assert quote.slots_remaining == 3

    result = await service.unlock(db_session, agent.id, lead.id)
    assert result.price == quote.price

    quote = await service.quote(db_session, lead.id)
    assert quote.price == 375
    assert quote.exclusive_price is None
    assert quote.tier == 1
    assert quote.slots_remaining == 2

    assert await service.quote(db_session, 999) is None


@pytest.mark.asyncio
async def test_unlock_listings(db_session, make_agent, make_lead, service):
    agent = await make_agent()
    other = await make_agent()
    lead_a = await make_lead()
    lead_b = await make_lead()

    await service.unlock(db_session, agent.id, lead_a.id)
    await service.unlock(db_session, agent.id, lead_b.id)
    await service.unlock(db_session, other.id, lead_a.id)

    assert sorted(await service.get_unlocked_leads(db_session, agent.id)) == sorted([lead_a.id, lead_b.id])

    holders = await service.get_lead_unlocks(db_session, lead_a.id)
    assert [h["agent_id"] for h in holders] == [agent.id, other.id]
    assert [h["cost_paid"] for h in holders] == [250, 375]
