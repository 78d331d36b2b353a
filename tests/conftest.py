"""Shared test fixtures for the prize-distribution test suite.

Ledger, dispatcher, and scheduler tests run against an in-memory SQLite
database so the compare-and-swap updates execute for real.  External
providers (funds mover, email) are always mocked.  Route tests mock the
session and the service functions entirely.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CONFIRMATION_SIGNING_SECRET", "test-signing-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("BREVO_API_KEY", "brevo-test-key")
os.environ.setdefault("RETRY_CRON_ENABLED", "false")

import uuid
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from prize_distribution.core.database import Base
from prize_distribution.models.challenge import Challenge, User
from prize_distribution.models.ledger import (
    DistributionStatus,
    PrizeAssignment,
    PrizeRecord,
    PrizeRecordStatus,
    PrizeStructure,
)
from prize_distribution.services.funds_client import BalanceSnapshot


# ── Factory helpers ───────────────────────────────────────────────────────────


def make_user(
    user_id: str | None = None,
    email: str | None = "host@example.com",
    username: str | None = "coach_kim",
) -> User:
    return User(id=user_id or uuid.uuid4().hex, email=email, username=username)


def make_challenge(
    challenge_id: str | None = None,
    title: str = "30 Day Squat Challenge",
    owner_ids: list[str] | None = None,
) -> Challenge:
    return Challenge(id=challenge_id or uuid.uuid4().hex, title=title, owner_ids=owner_ids or [])


def make_assignment(
    challenge: Challenge,
    prize_amount: int = 10000,
    status: DistributionStatus = DistributionStatus.FAILED,
    host_confirmed: bool = True,
    structure: PrizeStructure = PrizeStructure.TOP_THREE_SPLIT,
    prize_id: str | None = None,
) -> PrizeAssignment:
    """Create a PrizeAssignment for ``challenge`` (amounts in cents)."""
    return PrizeAssignment(
        id=prize_id or uuid.uuid4().hex,
        challenge_id=challenge.id,
        challenge_title=challenge.title,
        prize_amount=prize_amount,
        prize_structure=structure.value,
        host_confirmed=host_confirmed,
        distribution_status=status.value,
        retry_email_count=0,
    )


def make_record(
    assignment: PrizeAssignment,
    amount: int,
    status: PrizeRecordStatus = PrizeRecordStatus.FAILED,
    username: str = "winner",
) -> PrizeRecord:
    return PrizeRecord(
        id=uuid.uuid4().hex,
        prize_id=assignment.id,
        username=username,
        prize_amount=amount,
        status=status.value,
    )


def balance(available: int, pending: int = 0) -> BalanceSnapshot:
    return BalanceSnapshot(available=available, pending=pending, currency="usd")


async def seed_scenario(
    session: AsyncSession,
    amounts: list[int],
    prize_amount: int = 10000,
    status: DistributionStatus = DistributionStatus.FAILED,
    host_confirmed: bool = True,
    record_status: PrizeRecordStatus = PrizeRecordStatus.FAILED,
    host_email: str | None = "host@example.com",
    title: str = "30 Day Squat Challenge",
) -> PrizeAssignment:
    """Persist a host, a challenge, an assignment, and its winner records."""
    host = make_user(email=host_email)
    challenge = make_challenge(title=title, owner_ids=[host.id])
    assignment = make_assignment(
        challenge, prize_amount=prize_amount, status=status, host_confirmed=host_confirmed
    )
    session.add_all([host, challenge, assignment])
    await session.flush()
    session.add_all([make_record(assignment, a, record_status) for a in amounts])
    await session.commit()
    return assignment


async def reload(session: AsyncSession, assignment_id: str) -> PrizeAssignment:
    return await session.get(PrizeAssignment, assignment_id, populate_existing=True)


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session():
    """A fresh in-memory database per test."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as s:
        yield s

    await engine.dispose()


@pytest.fixture
def mock_session() -> AsyncMock:
    """A mocked AsyncSession for route tests."""
    session = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    return session
