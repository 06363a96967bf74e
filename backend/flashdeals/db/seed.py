"""Database seeding for development.

Creates a demo merchant account with a few merchants and deals when the
database has no merchants yet.
Run with: python -m flashdeals.db.seed
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.db.session import async_session_factory, engine
from flashdeals.models import Base, Merchant
from flashdeals.models.base import utcnow
from flashdeals.models.deal import INTERVAL_DAILY, INTERVAL_WEEKLY
from flashdeals.models.user import ROLE_MERCHANT
from flashdeals.services.auth_service import AuthService, Identity
from flashdeals.services.deal_service import DealService
from flashdeals.services.merchant_service import MerchantService

logger = structlog.get_logger(__name__)

DEMO_MERCHANT_EMAIL = "merchant@flashdeals.dev"
DEMO_MERCHANT_PASSWORD = "flashdeals123"

MERCHANTS_DATA = [
    {
        "name": "Corner Bakery",
        "description": "Fresh bread and pastries every morning",
        "category": "food",
        "latitude": 40.7306,
        "longitude": -73.9866,
        "address": "112 E 14th St, New York, NY",
        "phone": "+1 212 555 0101",
    },
    {
        "name": "Blue Bottle Bikes",
        "description": "City bikes, repairs and rentals",
        "category": "services",
        "latitude": 40.7265,
        "longitude": -73.9815,
        "address": "45 Avenue A, New York, NY",
    },
]

# (merchant index, deal fields, hours from now until start, duration hours)
DEALS_DATA = [
    (0, {
        "title": "Half-price croissants",
        "description": "Any croissant, all morning",
        "category": "food",
        "original_price": Decimal("4.00"),
        "discounted_price": Decimal("2.00"),
        "max_redemptions": 50,
        "is_recurring": True,
        "recurring_interval": INTERVAL_DAILY,
        "deal_emoji": "🥐",
    }, -1, 4),
    (0, {
        "title": "Sourdough loaf deal",
        "category": "food",
        "original_price": Decimal("8.00"),
        "discounted_price": Decimal("7.00"),
        "max_redemptions": 20,
    }, 2, 6),
    (1, {
        "title": "Tune-up special",
        "description": "Full tune-up including brake adjustment",
        "category": "services",
        "original_price": Decimal("80.00"),
        "discounted_price": Decimal("55.00"),
        "max_redemptions": 10,
        "is_recurring": True,
        "recurring_interval": INTERVAL_WEEKLY,
        "deal_emoji": "🚲",
    }, 0, 48),
]


async def seed_demo_data(db: AsyncSession) -> int:
    """Seed demo merchants and deals. Returns the number of deals created."""
    existing = await db.execute(select(Merchant).limit(1))
    if existing.scalar_one_or_none():
        logger.info("seed_skipped", reason="merchants already present")
        return 0

    auth = AuthService(db)
    user = await auth.authenticate(DEMO_MERCHANT_EMAIL, DEMO_MERCHANT_PASSWORD)
    if not user:
        user = await auth.register(
            email=DEMO_MERCHANT_EMAIL,
            username="demo-merchant",
            password=DEMO_MERCHANT_PASSWORD,
            first_name="Demo",
            last_name="Merchant",
            role=ROLE_MERCHANT,
        )
    identity = Identity.of(user)

    merchant_service = MerchantService(db)
    merchants = [await merchant_service.create_merchant(identity, data) for data in MERCHANTS_DATA]
    await db.commit()

    deal_service = DealService(db)
    now = utcnow()
    for merchant_idx, fields, start_offset, duration in DEALS_DATA:
        start = now + timedelta(hours=start_offset)
        await deal_service.create_deal(
            identity,
            merchants[merchant_idx].id,
            start_time=start,
            end_time=start + timedelta(hours=duration),
            **fields,
        )

    logger.info("seed_completed", merchants=len(merchants), deals=len(DEALS_DATA))
    return len(DEALS_DATA)


async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        created = await seed_demo_data(db)

    print(f"Seeded {created} deals")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
