"""
Pytest configuration and fixtures for the Lead Marketplace core tests
"""

import pytest
from datetime import datetime, timedelta, UTC
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool, NullPool

from src.database import crud
from src.database.engine import atomic
from src.database.models import Base, Lead, LeadStatus, VerificationStatus
from src.services.wallet_service import WalletLedger
from src.services.notification_service import NotificationDispatcher


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Create test database engine
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(test_db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async_session_maker = async_sessionmaker(
        test_db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def file_session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory over a file-backed SQLite database

    Every session gets its own connection, so concurrent tasks contend on
    the database lock like separate request handlers would.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def notifier() -> NotificationDispatcher:
    """Dispatcher private to the test (no worker running)"""
    return NotificationDispatcher(maxsize=100)


# ============================================================================
# FACTORIES
# ============================================================================


_agent_counter = 0


async def create_test_agent(
    session: AsyncSession,
    balance: int = 10_000,
    verified: bool = True,
    name: Optional[str] = None,
):
    """Agent with a wallet holding exactly `balance` credits"""
    global _agent_counter
    _agent_counter += 1

    status = VerificationStatus.VERIFIED if verified else VerificationStatus.PENDING
    async with atomic(session):
        agent = await crud.create_agent(
            session,
            name or f"Agent {_agent_counter}",
            f"agent{_agent_counter}@example.com",
            verification_status=status.value,
        )
        await WalletLedger.open_wallet(session, agent.id, starting_balance=balance)
    return agent


async def create_test_lead(
    session: AsyncSession,
    base_price: int = 250,
    max_slots: int = 3,
    created_at: Optional[datetime] = None,
    **fields,
) -> Lead:
    """Active lead, fresh unless created_at says otherwise"""
    lead = Lead(
        tenant_name=fields.pop("tenant_name", "Jane Tenant"),
        tenant_phone=fields.pop("tenant_phone", "+254712345678"),
        tenant_email=fields.pop("tenant_email", "jane@example.com"),
        location=fields.pop("location", "Kilimani, Nairobi"),
        property_type=fields.pop("property_type", "apartment"),
        base_price=base_price,
        max_slots=max_slots,
        claimed_slots=fields.pop("claimed_slots", 0),
        is_exclusive=fields.pop("is_exclusive", False),
        status=fields.pop("status", LeadStatus.ACTIVE.value),
        created_at=created_at or datetime.now(UTC) - timedelta(minutes=5),
        **fields,
    )
    return await crud.add_lead(session, lead)


@pytest.fixture
def make_agent(db_session):
    async def _make(**kwargs):
        return await create_test_agent(db_session, **kwargs)
    return _make


@pytest.fixture
def make_lead(db_session):
    async def _make(**kwargs):
        return await create_test_lead(db_session, **kwargs)
    return _make
