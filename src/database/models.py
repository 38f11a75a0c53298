"""
Database models for the Lead Marketplace core

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, UTC
from typing import Optional
from enum import Enum

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from config.marketplace_config import DEFAULT_MAX_SLOTS, DEFAULT_BASE_PRICE


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


# ===========================
# ENUMS
# ===========================


class VerificationStatus(str, Enum):
    """Agent identity verification status (owned by the verification flow)"""

    VERIFIED = "verified"
    PENDING = "pending"
    UNVERIFIED = "unverified"


class LeadStatus(str, Enum):
    """Administrative lead status"""

    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"
    EXPIRED = "expired"


class WalletTransactionType(str, Enum):
    """Wallet ledger entry types"""

    PURCHASE = "purchase"  # Top-up via payment gateway
    UNLOCK_DEBIT = "unlock_debit"  # Paid for a lead unlock
    REFUND_CREDIT = "refund_credit"  # Approved bad-lead report
    REFERRAL_CREDIT = "referral_credit"  # Referral bonus (referrer or referred)
    ADMIN_ADJUSTMENT = "admin_adjustment"  # Manual correction, signed
    SIGNUP_CREDIT = "signup_credit"  # Starting balance on onboarding


class ContactType(str, Enum):
    """How the agent acquired the lead"""

    UNLOCK = "unlock"  # One of the shared slots
    EXCLUSIVE = "exclusive"  # Exclusive buyout


class ReportStatus(str, Enum):
    """Bad-lead report status"""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReportReason(str, Enum):
    """Why an agent disputes an unlocked lead"""

    UNREACHABLE = "unreachable"
    FAKE_NUMBER = "fake_number"
    ALREADY_CLOSED = "already_closed"
    WRONG_INFO = "wrong_info"
    OTHER = "other"


# ===========================
# MODELS
# ===========================


class Agent(Base):
    """
    Agent model - a paying member of the marketplace

    Tracks:
    - Identity fields used by the core (name, email)
    - Verification status (written by the external verification flow)
    - Referral code handed out to other agents
    """

    __tablename__ = "agents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )

    verification_status: Mapped[str] = mapped_column(
        String(20),
        default=VerificationStatus.UNVERIFIED.value,
        nullable=False,
        comment="verified, pending, unverified",
    )

    referral_code: Mapped[Optional[str]] = mapped_column(
        String(20),
        unique=True,
        index=True,
        nullable=True,
        comment="Code other agents sign up with",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    wallet = relationship("Wallet", back_populates="agent", uselist=False)

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED.value

    def __repr__(self) -> str:
        return f"<Agent(id={self.id}, email={self.email}, verification={self.verification_status})>"


class Lead(Base):
    """
    Lead model - a tenant's rental request

    Slot state (claimed_slots, is_exclusive, exclusive_agent_id) is written
    only by the slot allocator; status only by intake/admin flows.
    """

    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Pricing & slots
    base_price: Mapped[int] = mapped_column(
        Integer,
        default=DEFAULT_BASE_PRICE,
        nullable=False,
        comment="Credits for the first slot",
    )

    claimed_slots: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    max_slots: Mapped[int] = mapped_column(
        Integer,
        default=DEFAULT_MAX_SLOTS,
        nullable=False,
    )

    is_exclusive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    exclusive_agent_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("agents.id", ondelete="SET NULL"),
        nullable=True,
        comment="Agent holding the exclusive buyout",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=LeadStatus.ACTIVE.value,
        nullable=False,
        index=True,
    )

    # Display counters (not authoritative for pricing)
    views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    contacts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Canonical request details (normalized at intake)
    tenant_name: Mapped[str] = mapped_column(String(255), nullable=False)
    tenant_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    tenant_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    property_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    budget: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    move_in_date: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        comment="Start of the freshness window",
    )

    unlocks = relationship("LeadUnlock", back_populates="lead")

    __table_args__ = (
        CheckConstraint("claimed_slots >= 0", name="ck_leads_claimed_slots_min"),
        CheckConstraint("claimed_slots <= max_slots", name="ck_leads_claimed_slots_max"),
        CheckConstraint("base_price > 0", name="ck_leads_base_price_positive"),
    )

    @property
    def slots_remaining(self) -> int:
        return max(self.max_slots - self.claimed_slots, 0)

    def __repr__(self) -> str:
        return (
            f"<Lead(id={self.id}, slots={self.claimed_slots}/{self.max_slots}, "
            f"exclusive={self.is_exclusive}, status={self.status})>"
        )


class Wallet(Base):
    """
    Wallet model - an agent's credit balance

    Mutated only through WalletLedger; balance can never go below zero.
    """

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    agent_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("agents.id", ondelete="CASCADE"),
        unique=True,
        index=True,
        nullable=False,
    )

    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    lifetime_credited: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_debited: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    agent = relationship("Agent", back_populates="wallet")
    transactions = relationship(
        "WalletTransaction",
        back_populates="wallet",
        order_by="WalletTransaction.id",
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Wallet(agent_id={self.agent_id}, balance={self.balance})>"


class WalletTransaction(Base):
    """
    Wallet transaction - immutable ledger entry

    amount is signed: positive for credits, negative for debits, so
    wallet.balance == sum(amount) at all times.
    """

    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    wallet_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("wallets.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    agent_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)

    transaction_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str] = mapped_column(String(255), nullable=False)

    related_lead_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("leads.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    wallet = relationship("Wallet", back_populates="transactions")

    def __repr__(self) -> str:
        return f"<WalletTransaction(id={self.id}, type={self.transaction_type}, amount={self.amount})>"


class LeadUnlock(Base):
    """
    Lead unlock (contact history) - proof that an agent holds a slot

    One row per (agent, lead). Refunds set refunded=True; rows are never
    deleted.
    """

    __tablename__ = "contact_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    agent_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("agents.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    lead_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("leads.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    cost_paid: Mapped[int] = mapped_column(Integer, nullable=False)

    is_exclusive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    contact_type: Mapped[str] = mapped_column(
        String(20),
        default=ContactType.UNLOCK.value,
        nullable=False,
    )

    refunded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    lead = relationship("Lead", back_populates="unlocks")

    __table_args__ = (UniqueConstraint("agent_id", "lead_id", name="uq_contact_agent_lead"),)

    def __repr__(self) -> str:
        return (
            f"<LeadUnlock(agent_id={self.agent_id}, lead_id={self.lead_id}, "
            f"cost={self.cost_paid}, exclusive={self.is_exclusive}, refunded={self.refunded})>"
        )


class Referral(Base):
    """
    Referral model - tracks referrer-referred relationships

    bonus_awarded flips false -> true exactly once, guarded by a
    conditional update.
    """

    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    referrer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("agents.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    referred_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("agents.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    referral_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    bonus_awarded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    credits_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    welcome_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    settled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # One referrer per referred agent
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_id", name="uq_referrer_referred"),
        UniqueConstraint("referred_id", name="uq_referral_referred"),
    )

    def __repr__(self) -> str:
        return (
            f"<Referral(id={self.id}, referrer_id={self.referrer_id}, "
            f"referred_id={self.referred_id}, awarded={self.bonus_awarded})>"
        )


class LeadReport(Base):
    """
    Bad-lead report - a dispute against an unlock

    open_key is "{reporter}:{lead}" while pending and NULL once resolved;
    its unique index allows at most one open report per pair.
    """

    __tablename__ = "lead_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    reporter_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("agents.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    lead_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("leads.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    unlock_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("contact_history.id", ondelete="CASCADE"),
        nullable=False,
    )

    reason_code: Mapped[str] = mapped_column(String(30), nullable=False)

    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ReportStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    credits_paid: Mapped[int] = mapped_column(Integer, nullable=False)

    refunded_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    open_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    admin_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("uq_lead_reports_open_key", "open_key", unique=True),
    )

    @staticmethod
    def make_open_key(reporter_id: int, lead_id: int) -> str:
        return f"{reporter_id}:{lead_id}"

    def __repr__(self) -> str:
        return f"<LeadReport(id={self.id}, reporter_id={self.reporter_id}, lead_id={self.lead_id}, status={self.status})>"
