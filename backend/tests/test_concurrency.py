"""Concurrent claims against a file-backed database.

Each claim runs on its own session and connection so the conditional
capacity update is the only thing serialising them.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from flashdeals.core.exceptions import DealUnavailableError, DuplicateClaimError
from flashdeals.models import Base, Deal, DealClaim, Merchant, User
from flashdeals.models.base import utcnow
from flashdeals.models.user import ROLE_MERCHANT
from flashdeals.services.deal_service import DealService


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'claims.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


async def _seed(factory, customers: int, capacity: int):
    async with factory() as db:
        owner = User(
            email="owner@example.com", username="owner",
            hashed_password="x", role=ROLE_MERCHANT,
        )
        users = [
            User(email=f"user{i}@example.com", username=f"user{i}", hashed_password="x")
            for i in range(customers)
        ]
        db.add(owner)
        db.add_all(users)
        await db.flush()

        merchant = Merchant(
            owner_id=owner.id, name="Corner Cafe", category="food",
            latitude=40.0, longitude=-74.0, address="2 Side St",
        )
        db.add(merchant)
        await db.flush()

        now = utcnow()
        deal = Deal(
            merchant_id=merchant.id,
            title="Free refill",
            category="food",
            original_price=Decimal("4.00"),
            discounted_price=Decimal("2.00"),
            discount_percentage=50,
            start_time=now - timedelta(hours=1),
            end_time=now + timedelta(hours=1),
            max_redemptions=capacity,
            current_redemptions=0,
            is_active=True,
        )
        db.add(deal)
        await db.commit()
        return deal.id, [u.id for u in users]


async def _attempt(factory, user_id, deal_id) -> str:
    async with factory() as db:
        try:
            await DealService(db).claim_deal(user_id, deal_id)
        except DealUnavailableError as e:
            return e.reason
        except DuplicateClaimError:
            return "duplicate"
    return "ok"


class TestConcurrentClaims:

    async def test_capacity_never_oversold(self, file_session_factory):
        deal_id, user_ids = await _seed(file_session_factory, customers=10, capacity=3)

        outcomes = await asyncio.gather(
            *(_attempt(file_session_factory, uid, deal_id) for uid in user_ids)
        )

        assert outcomes.count("ok") == 3
        assert outcomes.count(DealUnavailableError.CAPACITY_EXHAUSTED) == 7

        async with file_session_factory() as db:
            deal = await db.get(Deal, deal_id)
            claims = await db.scalar(
                select(func.count(DealClaim.id)).where(DealClaim.deal_id == deal_id)
            )
        assert deal.current_redemptions == 3
        assert claims == 3

    async def test_same_user_racing_gets_one_claim(self, file_session_factory):
        deal_id, user_ids = await _seed(file_session_factory, customers=1, capacity=5)

        outcomes = await asyncio.gather(
            *(_attempt(file_session_factory, user_ids[0], deal_id) for _ in range(4))
        )

        assert sorted(outcomes) == ["duplicate", "duplicate", "duplicate", "ok"]

        async with file_session_factory() as db:
            deal = await db.get(Deal, deal_id)
        assert deal.current_redemptions == 1
