"""
Tests for the wallet ledger: conditional debits, audit trail, top-ups
"""

import pytest
from loguru import logger

from src.core.enums import LedgerStatus
from src.core.exceptions import WalletNotFoundError
from src.database import crud
from src.database.engine import atomic
from src.database.models import WalletTransactionType
from src.services.wallet_service import WalletLedger


@pytest.mark.asyncio
async def test_open_wallet_logs_starting_balance(db_session):
    """Onboarding balance is a signup_credit so the ledger sums to the balance"""
    async with atomic(db_session):
        agent = await crud.create_agent(db_session, "New Agent", "new@example.com")
        await WalletLedger.open_wallet(db_session, agent.id)

    assert await WalletLedger.get_balance(db_session, agent.id) == 2

    history = await WalletLedger.get_transaction_history(db_session, agent.id)
    assert len(history) == 1
    assert history[0]["type"] == WalletTransactionType.SIGNUP_CREDIT.value
    assert history[0]["amount"] == 2


@pytest.mark.asyncio
async def test_debit_appends_signed_entry(db_session, make_agent):
    agent = await make_agent(balance=500)

    async with atomic(db_session):
        result = await WalletLedger.debit(db_session, agent.id, 375, "Lead Unlock - #1", related_lead_id=None)

    assert result.success
    assert result.new_balance == 125
    assert result.transaction.amount == -375
    assert result.transaction.balance_before == 500
    assert result.transaction.balance_after == 125


@pytest.mark.asyncio
async def test_debit_refused_when_balance_too_low(db_session, make_agent):
    """Insufficient funds leaves balance and ledger untouched"""
    agent = await make_agent(balance=100)

    async with atomic(db_session):
        result = await WalletLedger.debit(db_session, agent.id, 250, "Lead Unlock - #1")

    assert result.status == LedgerStatus.INSUFFICIENT_FUNDS
    assert result.transaction is None
    assert result.new_balance == 100
    assert await WalletLedger.get_balance(db_session, agent.id) == 100

    history = await WalletLedger.get_transaction_history(db_session, agent.id)
    assert len(history) == 1  # starting balance only


@pytest.mark.asyncio
async def test_debit_of_exact_balance_reaches_zero(db_session, make_agent):
    agent = await make_agent(balance=250)

    async with atomic(db_session):
        result = await WalletLedger.debit(db_session, agent.id, 250, "Lead Unlock - #1")

    assert result.success
    assert result.new_balance == 0


@pytest.mark.asyncio
async def test_non_positive_amounts_rejected(db_session, make_agent):
    agent = await make_agent()

    with pytest.raises(ValueError):
        await WalletLedger.debit(db_session, agent.id, 0, "nothing")
    with pytest.raises(ValueError):
        await WalletLedger.credit(db_session, agent.id, -5, "negative")


@pytest.mark.asyncio
async def test_missing_wallet_raises(db_session):
    with pytest.raises(WalletNotFoundError):
        await WalletLedger.get_balance(db_session, 9999)

    with pytest.raises(WalletNotFoundError):
        await WalletLedger.debit(db_session, 9999, 10, "no wallet")


@pytest.mark.asyncio
async def test_top_up_records_purchase(db_session, make_agent):
    agent = await make_agent(balance=0)

    result = await WalletLedger.top_up(
        db_session, agent.id, 1000, payment_method="M-Pesa", confirmation_code="QWE123"
    )

    assert result.new_balance == 1000
    history = await WalletLedger.get_transaction_history(
        db_session, agent.id, transaction_type=WalletTransactionType.PURCHASE.value
    )
    assert len(history) == 1
    assert history[0]["reason"] == "Credit purchase via M-Pesa - QWE123"


@pytest.mark.asyncio
async def test_admin_adjust_cannot_overdraw(db_session, make_agent):
    agent = await make_agent(balance=50)

    refused = await WalletLedger.admin_adjust(db_session, agent.id, -100, "Chargeback")
    applied = await WalletLedger.admin_adjust(db_session, agent.id, -30, "Chargeback")

    assert refused.status == LedgerStatus.INSUFFICIENT_FUNDS
    assert applied.success
    assert applied.new_balance == 20

    with pytest.raises(ValueError):
        await WalletLedger.admin_adjust(db_session, agent.id, 0, "Nothing")


@pytest.mark.asyncio
async def test_audit_has_no_drift_after_mixed_activity(db_session, make_agent):
    """Balance always equals the sum of the ledger"""
    agent = await make_agent(balance=300)

    await WalletLedger.top_up(db_session, agent.id, 700)
    async with atomic(db_session):
        await WalletLedger.debit(db_session, agent.id, 625, "Lead Unlock - #3")
        await WalletLedger.credit(
            db_session, agent.id, 125, "Refund", transaction_type=WalletTransactionType.REFUND_CREDIT
        )
    async with atomic(db_session):
        await WalletLedger.debit(db_session, agent.id, 9999, "Too much")

    audit = await WalletLedger.audit_wallet(db_session, agent.id)

    assert audit.balance == 500
    assert audit.ledger_sum == 500
    assert audit.drift == 0
    assert audit.is_consistent
    assert audit.transaction_count == 4


@pytest.mark.asyncio
async def test_rollback_discards_debit_and_entry(db_session, make_agent):
    """A failure later in the unit takes the debit back out"""
    agent = await make_agent(balance=400)
    agent_id = agent.id

    with pytest.raises(RuntimeError):
        async with atomic(db_session):
            await WalletLedger.debit(db_session, agent_id, 250, "Lead Unlock - #1")
            raise RuntimeError("slot reservation failed")

    assert await WalletLedger.get_balance(db_session, agent_id) == 400
    audit = await WalletLedger.audit_wallet(db_session, agent_id)
    assert audit.transaction_count == 1


@pytest.fixture
def ledger_lines():
    """Messages that reach the ledger audit log"""
    lines = []
    handler_id = logger.add(
        lambda message: lines.append(message.record["message"]),
        filter=lambda record: record["extra"].get("ledger") is True,
        level="INFO",
    )
    yield lines
    logger.remove(handler_id)


@pytest.mark.asyncio
async def test_ledger_log_only_records_committed_units(db_session, make_agent, ledger_lines):
    """A rolled-back debit never shows up in the ledger audit log"""
    agent = await make_agent(balance=1000)
    agent_id = agent.id
    ledger_lines.clear()

    for _ in range(3):
        with pytest.raises(RuntimeError):
            async with atomic(db_session):
                await WalletLedger.debit(db_session, agent_id, 250, "Lead Unlock - #1")
                raise RuntimeError("slot reservation failed")

    assert ledger_lines == []

    async with atomic(db_session):
        await WalletLedger.debit(db_session, agent_id, 250, "Lead Unlock - #1")

    assert len(ledger_lines) == 1
    assert ledger_lines[0].startswith(f"Debited 250 from agent {agent_id}")
