# coding: utf-8
"""
Wallet Ledger

The only code allowed to change an agent's credit balance.

Features:
- Conditional debit (UPDATE ... WHERE balance >= amount) so concurrent
  debits can never overdraw a wallet
- Exactly one immutable WalletTransaction per mutation, in the same unit
- Primitives flush but never commit, so they compose into the caller's
  transaction (unlock, refund, referral)
- Audit that recomputes balance from the ledger
- Ledger log lines are written only once their unit commits
"""

from typing import Optional, Dict, List

from sqlalchemy import select, update, func, event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session
from loguru import logger

from config.marketplace_config import STARTING_BALANCE
from src.core.enums import LedgerStatus
from src.core.exceptions import WalletNotFoundError
from src.core.results import LedgerResult, WalletAudit
from src.database.engine import atomic
from src.database.models import Wallet, WalletTransaction, WalletTransactionType


ledger_log = logger.bind(ledger=True)

# Ledger lines wait in session.info until the unit commits
PENDING_LEDGER_LINES = "pending_ledger_lines"


def _queue_ledger_line(session: AsyncSession, line: str) -> None:
    session.info.setdefault(PENDING_LEDGER_LINES, []).append(line)


@event.listens_for(Session, "after_commit")
def _write_ledger_lines(session: Session) -> None:
    for line in session.info.pop(PENDING_LEDGER_LINES, []):
        ledger_log.info(line)


@event.listens_for(Session, "after_rollback")
def _discard_ledger_lines(session: Session) -> None:
    discarded = session.info.pop(PENDING_LEDGER_LINES, [])
    if discarded:
        logger.debug(f"Discarded {len(discarded)} ledger lines from a rolled-back unit")


class WalletLedger:
    """Atomic, non-negative balance mutation with an audit trail"""

    @staticmethod
    async def _wallet_id(session: AsyncSession, agent_id: int) -> int:
        stmt = select(Wallet.id).where(Wallet.agent_id == agent_id)
        wallet_id = (await session.execute(stmt)).scalar_one_or_none()
        if wallet_id is None:
            raise WalletNotFoundError(agent_id)
        return wallet_id

    @staticmethod
    async def _append(
        session: AsyncSession,
        wallet_id: int,
        agent_id: int,
        transaction_type: WalletTransactionType,
        amount: int,
        balance_after: int,
        reason: str,
        related_lead_id: Optional[int],
    ) -> WalletTransaction:
        transaction = WalletTransaction(
            wallet_id=wallet_id,
            agent_id=agent_id,
            transaction_type=transaction_type.value,
            amount=amount,
            balance_before=balance_after - amount,
            balance_after=balance_after,
            reason=reason,
            related_lead_id=related_lead_id,
        )
        session.add(transaction)
        await session.flush()
        return transaction

    @staticmethod
    async def open_wallet(
        session: AsyncSession,
        agent_id: int,
        starting_balance: int = STARTING_BALANCE,
    ) -> Wallet:
        """
        Open an agent's wallet with the configured starting balance

        The starting balance is logged as a signup_credit so the ledger sums
        to the balance from the first entry. Flushes, does not commit.

        Args:
            session: Database session
            agent_id: Agent ID
            starting_balance: Credits granted on onboarding

        Returns:
            Wallet model
        """
        if starting_balance < 0:
            raise ValueError(f"Starting balance must not be negative, got {starting_balance}")

        wallet = Wallet(agent_id=agent_id, balance=0, lifetime_credited=0, lifetime_debited=0)
        session.add(wallet)
        await session.flush()

        if starting_balance > 0:
            await WalletLedger.credit(
                session,
                agent_id,
                starting_balance,
                reason="Starting balance",
                transaction_type=WalletTransactionType.SIGNUP_CREDIT,
            )

        logger.info(f"Opened wallet for agent {agent_id} (starting balance: {starting_balance})")
        return wallet

    @staticmethod
    async def debit(
        session: AsyncSession,
        agent_id: int,
        amount: int,
        reason: str,
        transaction_type: WalletTransactionType = WalletTransactionType.UNLOCK_DEBIT,
        related_lead_id: Optional[int] = None,
    ) -> LedgerResult:
        """
        Take credits from a wallet

        Args:
            session: Session holding the caller's transaction
            agent_id: Agent ID
            amount: Credits to take (positive)
            reason: Human-readable reason stored on the ledger entry
            transaction_type: Ledger entry type
            related_lead_id: Lead the debit pays for

        Returns:
            LedgerResult; INSUFFICIENT_FUNDS leaves balance and ledger untouched

        Raises:
            ValueError: amount is not positive
            WalletNotFoundError: agent has no wallet
        """
        if amount <= 0:
            raise ValueError(f"Debit amount must be positive, got {amount}")

        wallet_id = await WalletLedger._wallet_id(session, agent_id)

        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet_id, Wallet.balance >= amount)
            .values(
                balance=Wallet.balance - amount,
                lifetime_debited=Wallet.lifetime_debited + amount,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)

        balance = await WalletLedger.get_balance(session, agent_id)

        if result.rowcount != 1:
            logger.warning(
                f"Agent {agent_id} has insufficient balance: {balance} < {amount}"
            )
            return LedgerResult(status=LedgerStatus.INSUFFICIENT_FUNDS, new_balance=balance)

        transaction = await WalletLedger._append(
            session, wallet_id, agent_id, transaction_type, -amount, balance, reason, related_lead_id
        )

        _queue_ledger_line(
            session,
            f"Debited {amount} from agent {agent_id} ({transaction_type.value}, balance: {balance})",
        )
        return LedgerResult(status=LedgerStatus.SUCCESS, new_balance=balance, transaction=transaction)

    @staticmethod
    async def credit(
        session: AsyncSession,
        agent_id: int,
        amount: int,
        reason: str,
        transaction_type: WalletTransactionType = WalletTransactionType.PURCHASE,
        related_lead_id: Optional[int] = None,
    ) -> LedgerResult:
        """
        Add credits to a wallet; never fails on balance grounds

        Args:
            session: Session holding the caller's transaction
            agent_id: Agent ID
            amount: Credits to add (positive)
            reason: Human-readable reason stored on the ledger entry
            transaction_type: purchase, refund_credit, referral_credit, ...
            related_lead_id: Lead the credit relates to (refunds)

        Returns:
            LedgerResult with the new balance

        Raises:
            ValueError: amount is not positive
            WalletNotFoundError: agent has no wallet
        """
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        wallet_id = await WalletLedger._wallet_id(session, agent_id)

        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet_id)
            .values(
                balance=Wallet.balance + amount,
                lifetime_credited=Wallet.lifetime_credited + amount,
            )
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)

        balance = await WalletLedger.get_balance(session, agent_id)
        transaction = await WalletLedger._append(
            session, wallet_id, agent_id, transaction_type, amount, balance, reason, related_lead_id
        )

        _queue_ledger_line(
            session,
            f"Credited {amount} to agent {agent_id} ({transaction_type.value}, balance: {balance})",
        )
        return LedgerResult(status=LedgerStatus.SUCCESS, new_balance=balance, transaction=transaction)

    @staticmethod
    async def get_balance(session: AsyncSession, agent_id: int) -> int:
        """
        Current balance of an agent's wallet

        Raises:
            WalletNotFoundError: agent has no wallet
        """
        stmt = select(Wallet.balance).where(Wallet.agent_id == agent_id)
        balance = (await session.execute(stmt)).scalar_one_or_none()
        if balance is None:
            raise WalletNotFoundError(agent_id)
        return balance

    @staticmethod
    async def top_up(
        session: AsyncSession,
        agent_id: int,
        credits: int,
        payment_method: str = "Payment",
        confirmation_code: str = "",
    ) -> LedgerResult:
        """
        Credit a confirmed payment-gateway purchase (commits)

        Args:
            session: Database session
            agent_id: Agent ID
            credits: Credits bought
            payment_method: Gateway name for the ledger reason
            confirmation_code: Gateway receipt reference
        """
        reason = f"Credit purchase via {payment_method}"
        if confirmation_code:
            reason = f"{reason} - {confirmation_code}"

        async with atomic(session):
            result = await WalletLedger.credit(
                session, agent_id, credits, reason, WalletTransactionType.PURCHASE
            )

        return result

    @staticmethod
    async def admin_adjust(
        session: AsyncSession,
        agent_id: int,
        delta: int,
        reason: str,
    ) -> LedgerResult:
        """
        Signed manual correction by an admin (commits)

        A negative delta goes through the conditional debit and is refused
        with INSUFFICIENT_FUNDS rather than driving the balance below zero.
        """
        if delta == 0:
            raise ValueError("Adjustment must be non-zero")

        async with atomic(session):
            if delta > 0:
                result = await WalletLedger.credit(
                    session, agent_id, delta, reason, WalletTransactionType.ADMIN_ADJUSTMENT
                )
            else:
                result = await WalletLedger.debit(
                    session, agent_id, -delta, reason, WalletTransactionType.ADMIN_ADJUSTMENT
                )

        logger.info(f"Admin adjustment {delta:+d} for agent {agent_id}: {result.status.value}")
        return result

    @staticmethod
    async def get_transaction_history(
        session: AsyncSession,
        agent_id: int,
        limit: int = 50,
        offset: int = 0,
        transaction_type: Optional[str] = None,
    ) -> List[Dict]:
        """
        Get agent's ledger entries, newest first

        Args:
            session: Database session
            agent_id: Agent ID
            limit: Number of transactions to return
            offset: Pagination offset
            transaction_type: Optional type filter

        Returns:
            List of transaction dicts
        """
        stmt = select(WalletTransaction).where(WalletTransaction.agent_id == agent_id)
        if transaction_type:
            stmt = stmt.where(WalletTransaction.transaction_type == transaction_type)
        stmt = stmt.order_by(WalletTransaction.id.desc()).limit(limit).offset(offset)

        result = await session.execute(stmt)
        transactions = result.scalars().all()

        return [
            {
                "id": tx.id,
                "type": tx.transaction_type,
                "amount": tx.amount,
                "balance_before": tx.balance_before,
                "balance_after": tx.balance_after,
                "reason": tx.reason,
                "related_lead_id": tx.related_lead_id,
                "created_at": tx.created_at.isoformat(),
            }
            for tx in transactions
        ]

    @staticmethod
    async def audit_wallet(session: AsyncSession, agent_id: int) -> WalletAudit:
        """
        Recompute an agent's balance from the ledger

        Returns:
            WalletAudit; drift != 0 means balance and ledger diverged
        """
        balance = await WalletLedger.get_balance(session, agent_id)

        stmt = select(
            func.coalesce(func.sum(WalletTransaction.amount), 0),
            func.count(WalletTransaction.id),
        ).where(WalletTransaction.agent_id == agent_id)
        ledger_sum, count = (await session.execute(stmt)).one()

        audit = WalletAudit(
            agent_id=agent_id,
            balance=balance,
            ledger_sum=int(ledger_sum),
            transaction_count=count,
        )
        if not audit.is_consistent:
            logger.error(
                f"Wallet drift for agent {agent_id}: balance={balance}, ledger={ledger_sum}"
            )
        return audit
