"""Pytest configuration and shared fixtures."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["CACHE_ENABLED"] = "false"
os.environ["DEBUG"] = "false"

import fnmatch
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from flashdeals.models import Base, Deal, Merchant, User
from flashdeals.models.base import utcnow
from flashdeals.models.user import ROLE_CUSTOMER, ROLE_MERCHANT, ROLE_SUPER_MERCHANT
from flashdeals.services.auth_service import Identity, create_access_token, hash_password

TEST_PASSWORD = "Passw0rd!"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


class RecordingSink:
    """Audit sink double that keeps every emitted event in memory."""

    def __init__(self):
        self.events = []

    async def emit(self, action: str, **kwargs) -> bool:
        self.events.append((action, kwargs))
        return True

    def dispatch(self, action: str, **kwargs) -> None:
        self.events.append((action, kwargs))

    async def drain(self) -> None:
        pass

    def actions(self):
        return [action for action, _ in self.events]


class FakeCache:
    """In-memory stand-in for CacheService."""

    def __init__(self):
        self.enabled = True
        self.store = {}

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        self.store[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    async def delete_pattern(self, pattern: str) -> int:
        keys = [k for k in self.store if fnmatch.fnmatch(k, pattern)]
        for key in keys:
            del self.store[key]
        return len(keys)

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest_asyncio.fixture
async def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


async def make_user(db: AsyncSession, username: str, role: str = ROLE_CUSTOMER) -> User:
    user = User(
        email=f"{username}@example.com",
        username=username,
        hashed_password=TEST_PASSWORD_HASH,
        role=role,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_deal(db: AsyncSession, merchant: Merchant, **overrides) -> Deal:
    """Insert a deal directly, live for the next hour unless overridden."""
    now = utcnow()
    fields = dict(
        merchant_id=merchant.id,
        title="Two-for-one pizza",
        description="Any large pizza",
        category="food",
        original_price=Decimal("20.00"),
        discounted_price=Decimal("15.00"),
        discount_percentage=25,
        start_time=now - timedelta(hours=1),
        end_time=now + timedelta(hours=1),
        max_redemptions=100,
        current_redemptions=0,
        is_active=True,
    )
    fields.update(overrides)
    deal = Deal(**fields)
    db.add(deal)
    await db.commit()
    await db.refresh(deal)
    return deal


@pytest_asyncio.fixture
async def customer(test_db: AsyncSession) -> User:
    return await make_user(test_db, "alice")


@pytest_asyncio.fixture
async def other_customer(test_db: AsyncSession) -> User:
    return await make_user(test_db, "bob")


@pytest_asyncio.fixture
async def merchant_user(test_db: AsyncSession) -> User:
    return await make_user(test_db, "mallory", ROLE_MERCHANT)


@pytest_asyncio.fixture
async def super_merchant(test_db: AsyncSession) -> User:
    return await make_user(test_db, "sam", ROLE_SUPER_MERCHANT)


@pytest_asyncio.fixture
async def merchant(test_db: AsyncSession, merchant_user: User) -> Merchant:
    merchant = Merchant(
        owner_id=merchant_user.id,
        name="Luigi's Pizzeria",
        description="Wood-fired pizza",
        category="food",
        latitude=40.7128,
        longitude=-74.0060,
        address="1 Main St, New York, NY",
    )
    test_db.add(merchant)
    await test_db.commit()
    await test_db.refresh(merchant)
    return merchant


@pytest_asyncio.fixture
async def live_deal(test_db: AsyncSession, merchant: Merchant) -> Deal:
    return await make_deal(test_db, merchant)


@pytest.fixture
def identity_of():
    return Identity.of


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _headers


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()
