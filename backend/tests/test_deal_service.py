"""Tests for DealService: creation, claiming, saving, listing and recurrence."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import make_deal, make_user
from flashdeals.core.exceptions import (
    AuthorizationError,
    DealUnavailableError,
    DuplicateClaimError,
    DuplicateSaveError,
    NotFoundError,
    ValidationError,
)
from flashdeals.models import AuditLog, DealClaim, Merchant, Notification
from flashdeals.models.base import utcnow
from flashdeals.models.deal_claim import CLAIM_CLAIMED, CLAIM_EXPIRED, CLAIM_USED
from flashdeals.services.audit_service import AuditSink
from flashdeals.services.auth_service import Identity
from flashdeals.services.deal_service import DealFilter, DealService


def _window(hours_from_now: float = -1, duration_hours: float = 2):
    start = utcnow() + timedelta(hours=hours_from_now)
    return start, start + timedelta(hours=duration_hours)


# ============================================================================
# CREATE / UPDATE
# ============================================================================

class TestCreateDeal:

    async def test_create_computes_percentage_and_defaults(self, test_db, merchant, merchant_user):
        service = DealService(test_db)
        start, end = _window()

        deal = await service.create_deal(
            Identity.of(merchant_user),
            merchant.id,
            title="  Lunch special ",
            original_price=Decimal("20.00"),
            discounted_price=Decimal("15.00"),
            category="food",
            start_time=start,
            end_time=end,
        )

        assert deal.id is not None
        assert deal.title == "Lunch special"
        assert deal.discount_percentage == 25
        assert deal.current_redemptions == 0
        assert deal.max_redemptions == 100
        assert deal.is_active is True
        assert deal.is_recurring is False

    async def test_create_emits_audit_event(self, test_db, merchant, merchant_user, recording_sink):
        service = DealService(test_db, sink=recording_sink)
        start, end = _window()

        await service.create_deal(
            Identity.of(merchant_user), merchant.id,
            title="Deal", original_price=Decimal("10"), discounted_price=Decimal("5"),
            category="food", start_time=start, end_time=end,
        )

        assert recording_sink.actions() == ["deal_created"]

    async def test_rejects_price_ordering(self, test_db, merchant, merchant_user):
        service = DealService(test_db)
        start, end = _window()

        with pytest.raises(ValidationError) as exc_info:
            await service.create_deal(
                Identity.of(merchant_user), merchant.id,
                title="Deal", original_price=Decimal("10"), discounted_price=Decimal("12"),
                category="food", start_time=start, end_time=end,
            )
        assert exc_info.value.field == "discounted_price"

    async def test_rejects_time_ordering(self, test_db, merchant, merchant_user):
        service = DealService(test_db)
        start, _ = _window()

        with pytest.raises(ValidationError):
            await service.create_deal(
                Identity.of(merchant_user), merchant.id,
                title="Deal", original_price=Decimal("10"), discounted_price=Decimal("8"),
                category="food", start_time=start, end_time=start - timedelta(minutes=1),
            )

    async def test_rejects_empty_title(self, test_db, merchant, merchant_user):
        service = DealService(test_db)
        start, end = _window()

        with pytest.raises(ValidationError) as exc_info:
            await service.create_deal(
                Identity.of(merchant_user), merchant.id,
                title="   ", original_price=Decimal("10"), discounted_price=Decimal("8"),
                category="food", start_time=start, end_time=end,
            )
        assert exc_info.value.field == "title"

    async def test_recurring_requires_interval(self, test_db, merchant, merchant_user):
        service = DealService(test_db)
        start, end = _window()

        with pytest.raises(ValidationError):
            await service.create_deal(
                Identity.of(merchant_user), merchant.id,
                title="Deal", original_price=Decimal("10"), discounted_price=Decimal("8"),
                category="food", start_time=start, end_time=end, is_recurring=True,
            )

    async def test_unknown_merchant(self, test_db, merchant_user):
        service = DealService(test_db)
        start, end = _window()

        with pytest.raises(NotFoundError):
            await service.create_deal(
                Identity.of(merchant_user), uuid.uuid4(),
                title="Deal", original_price=Decimal("10"), discounted_price=Decimal("8"),
                category="food", start_time=start, end_time=end,
            )

    async def test_other_merchant_user_not_allowed(self, test_db, merchant):
        intruder = await make_user(test_db, "eve", "merchant")
        service = DealService(test_db)
        start, end = _window()

        with pytest.raises(AuthorizationError):
            await service.create_deal(
                Identity.of(intruder), merchant.id,
                title="Deal", original_price=Decimal("10"), discounted_price=Decimal("8"),
                category="food", start_time=start, end_time=end,
            )

    async def test_customer_not_allowed(self, test_db, merchant, customer):
        service = DealService(test_db)
        start, end = _window()

        with pytest.raises(AuthorizationError):
            await service.create_deal(
                Identity.of(customer), merchant.id,
                title="Deal", original_price=Decimal("10"), discounted_price=Decimal("8"),
                category="food", start_time=start, end_time=end,
            )

    async def test_super_merchant_may_create_for_any_merchant(self, test_db, merchant, super_merchant):
        service = DealService(test_db)
        start, end = _window()

        deal = await service.create_deal(
            Identity.of(super_merchant), merchant.id,
            title="Deal", original_price=Decimal("10"), discounted_price=Decimal("8"),
            category="food", start_time=start, end_time=end, max_redemptions=5,
        )
        assert deal.merchant_id == merchant.id
        assert deal.max_redemptions == 5


class TestUpdateDeal:

    async def test_update_recomputes_percentage(self, test_db, live_deal, merchant_user):
        service = DealService(test_db)

        deal = await service.update_deal(
            Identity.of(merchant_user), live_deal.id, {"discounted_price": Decimal("10.00")}
        )

        assert deal.discount_percentage == 50
        assert deal.merchant.name == "Luigi's Pizzeria"

    async def test_capacity_cannot_drop_below_claimed(self, test_db, merchant, merchant_user):
        deal = await make_deal(test_db, merchant, max_redemptions=5, current_redemptions=3)
        service = DealService(test_db)

        with pytest.raises(ValidationError):
            await service.update_deal(Identity.of(merchant_user), deal.id, {"max_redemptions": 2})

    async def test_deactivate_makes_deal_unclaimable(self, test_db, live_deal, merchant_user, customer):
        service = DealService(test_db)
        await service.deactivate_deal(Identity.of(merchant_user), live_deal.id)

        with pytest.raises(DealUnavailableError) as exc_info:
            await service.claim_deal(customer.id, live_deal.id)
        assert exc_info.value.reason == DealUnavailableError.INACTIVE


# ============================================================================
# CLAIM
# ============================================================================

class TestClaimDeal:

    async def test_claim_increments_counter(self, test_db, live_deal, customer):
        service = DealService(test_db)

        claim = await service.claim_deal(customer.id, live_deal.id)

        assert claim.status == CLAIM_CLAIMED
        assert claim.user_id == customer.id
        await test_db.refresh(live_deal)
        assert live_deal.current_redemptions == 1

    async def test_single_slot_deal(self, test_db, merchant, customer, other_customer):
        deal = await make_deal(test_db, merchant, max_redemptions=1)
        service = DealService(test_db)

        await service.claim_deal(customer.id, deal.id)

        with pytest.raises(DealUnavailableError) as exc_info:
            await service.claim_deal(other_customer.id, deal.id)
        assert exc_info.value.reason == DealUnavailableError.CAPACITY_EXHAUSTED

        with pytest.raises(DuplicateClaimError):
            await service.claim_deal(customer.id, deal.id)

        await test_db.refresh(deal)
        assert deal.current_redemptions == 1

    async def test_duplicate_claim(self, test_db, live_deal, customer):
        service = DealService(test_db)
        await service.claim_deal(customer.id, live_deal.id)

        with pytest.raises(DuplicateClaimError):
            await service.claim_deal(customer.id, live_deal.id)

        await test_db.refresh(live_deal)
        assert live_deal.current_redemptions == 1

    async def test_used_claim_still_blocks(self, test_db, live_deal, customer, merchant_user):
        service = DealService(test_db)
        claim = await service.claim_deal(customer.id, live_deal.id)
        await service.redeem_claim(Identity.of(merchant_user), claim.id)

        with pytest.raises(DuplicateClaimError):
            await service.claim_deal(customer.id, live_deal.id)

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"start_time_offset": 1, "end_time_offset": 2}, DealUnavailableError.NOT_STARTED),
            ({"start_time_offset": -2, "end_time_offset": -1}, DealUnavailableError.EXPIRED),
        ],
    )
    async def test_outside_window(self, test_db, merchant, customer, overrides, reason):
        now = utcnow()
        deal = await make_deal(
            test_db,
            merchant,
            start_time=now + timedelta(hours=overrides["start_time_offset"]),
            end_time=now + timedelta(hours=overrides["end_time_offset"]),
        )

        with pytest.raises(DealUnavailableError) as exc_info:
            await DealService(test_db).claim_deal(customer.id, deal.id)
        assert exc_info.value.reason == reason

    async def test_unknown_deal(self, test_db, customer):
        with pytest.raises(NotFoundError):
            await DealService(test_db).claim_deal(customer.id, uuid.uuid4())

    async def test_unknown_user(self, test_db, live_deal):
        with pytest.raises(NotFoundError):
            await DealService(test_db).claim_deal(uuid.uuid4(), live_deal.id)

    async def test_claim_emits_notification_event(self, test_db, live_deal, customer, recording_sink):
        await DealService(test_db, sink=recording_sink).claim_deal(customer.id, live_deal.id)

        action, kwargs = recording_sink.events[0]
        assert action == "deal_claimed"
        assert kwargs["user_id"] == customer.id
        assert kwargs["notification"]["type"] == "deal_claimed"
        assert kwargs["notification"]["deal_id"] == live_deal.id

    async def test_sink_writes_audit_and_notification(self, test_db, session_factory, live_deal, customer):
        sink = AuditSink(session_factory)
        await DealService(test_db, sink=sink).claim_deal(customer.id, live_deal.id)
        await sink.drain()

        audit_count = await test_db.scalar(
            select(func.count(AuditLog.id)).where(AuditLog.action == "deal_claimed")
        )
        notes = (await test_db.execute(
            select(Notification).where(Notification.user_id == customer.id)
        )).scalars().all()
        assert audit_count == 1
        assert len(notes) == 1
        assert notes[0].deal_id == live_deal.id

    async def test_sink_failure_does_not_undo_claim(self, test_db, live_deal, customer):

        class _BrokenSession:
            def add(self, obj):
                pass

            async def commit(self):
                raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))

            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc):
                return False

        sink = AuditSink(lambda: _BrokenSession(), attempts=2)
        claim = await DealService(test_db, sink=sink).claim_deal(customer.id, live_deal.id)
        await sink.drain()

        stored = await test_db.get(DealClaim, claim.id)
        assert stored is not None
        await test_db.refresh(live_deal)
        assert live_deal.current_redemptions == 1

    async def test_claim_returns_before_event_is_written(self, test_db, live_deal, customer):

        class _GatedSink(AuditSink):
            def __init__(self):
                super().__init__(session_factory=None)
                self.release = asyncio.Event()
                self.written = []

            async def emit(self, action, **kwargs):
                await self.release.wait()
                self.written.append(action)
                return True

        sink = _GatedSink()
        claim = await asyncio.wait_for(
            DealService(test_db, sink=sink).claim_deal(customer.id, live_deal.id), timeout=5
        )

        assert claim.id is not None
        assert sink.written == []

        sink.release.set()
        await sink.drain()
        assert sink.written == ["deal_claimed"]


class TestRedeemClaim:

    async def test_owner_marks_claim_used(self, test_db, live_deal, customer, merchant_user):
        service = DealService(test_db)
        claim = await service.claim_deal(customer.id, live_deal.id)

        redeemed = await service.redeem_claim(Identity.of(merchant_user), claim.id)

        assert redeemed.status == CLAIM_USED
        assert redeemed.used_at is not None

    async def test_cannot_redeem_twice(self, test_db, live_deal, customer, merchant_user):
        service = DealService(test_db)
        claim = await service.claim_deal(customer.id, live_deal.id)
        await service.redeem_claim(Identity.of(merchant_user), claim.id)

        with pytest.raises(ValidationError):
            await service.redeem_claim(Identity.of(merchant_user), claim.id)

    async def test_other_merchant_cannot_redeem(self, test_db, live_deal, customer):
        intruder = await make_user(test_db, "eve", "merchant")
        service = DealService(test_db)
        claim = await service.claim_deal(customer.id, live_deal.id)

        with pytest.raises(AuthorizationError):
            await service.redeem_claim(Identity.of(intruder), claim.id)


# ============================================================================
# SAVE
# ============================================================================

class TestSaveDeal:

    async def test_save_twice_fails(self, test_db, live_deal, customer):
        service = DealService(test_db)
        await service.save_deal(customer.id, live_deal.id)

        with pytest.raises(DuplicateSaveError):
            await service.save_deal(customer.id, live_deal.id)

    async def test_unsave(self, test_db, live_deal, customer):
        service = DealService(test_db)
        await service.save_deal(customer.id, live_deal.id)

        assert await service.unsave_deal(customer.id, live_deal.id) is True
        assert await service.is_deal_saved(customer.id, live_deal.id) is False
        assert await service.unsave_deal(customer.id, live_deal.id) is False

        await service.save_deal(customer.id, live_deal.id)
        assert await service.is_deal_saved(customer.id, live_deal.id) is True

    async def test_save_unknown_deal(self, test_db, customer):
        with pytest.raises(NotFoundError):
            await DealService(test_db).save_deal(customer.id, uuid.uuid4())

    async def test_saved_list_only_shows_active(self, test_db, merchant, customer):
        now = utcnow()
        live = await make_deal(test_db, merchant, title="Live")
        ended = await make_deal(
            test_db, merchant, title="Ended",
            start_time=now - timedelta(hours=3), end_time=now - timedelta(hours=1),
        )
        service = DealService(test_db)
        await service.save_deal(customer.id, live.id)
        await service.save_deal(customer.id, ended.id)

        saved = await service.get_saved_deals(customer.id)

        assert [s.deal.title for s in saved] == ["Live"]


# ============================================================================
# LISTING
# ============================================================================

class TestListing:

    async def test_excludes_past_end_time_even_if_active(self, test_db, merchant):
        now = utcnow()
        await make_deal(test_db, merchant, title="Live")
        await make_deal(test_db, merchant, title="Upcoming",
                        start_time=now + timedelta(hours=1), end_time=now + timedelta(hours=2))
        await make_deal(test_db, merchant, title="Ended",
                        start_time=now - timedelta(hours=2), end_time=now - timedelta(minutes=1))
        await make_deal(test_db, merchant, title="Off", is_active=False)

        deals = await DealService(test_db).list_active_deals()

        assert sorted(d.title for d in deals) == ["Live", "Upcoming"]

    async def test_listing_is_restartable(self, test_db, live_deal):
        service = DealService(test_db)
        first = [d.id for d in await service.list_active_deals()]
        second = [d.id for d in await service.list_active_deals()]
        assert first == second == [live_deal.id]

    async def test_filters(self, test_db, merchant):
        await make_deal(test_db, merchant, title="Pizza night", category="Food")
        await make_deal(test_db, merchant, title="Haircut", description="Includes PIZZA slice",
                        category="beauty")
        await make_deal(test_db, merchant, title="Yoga class", description=None, category="fitness")
        service = DealService(test_db)

        by_category = await service.list_active_deals(DealFilter(category="food"))
        by_text = await service.list_active_deals(DealFilter(q="pizza"))
        both = await service.list_active_deals(DealFilter(category="beauty", q="Pizza"))

        assert [d.title for d in by_category] == ["Pizza night"]
        assert sorted(d.title for d in by_text) == ["Haircut", "Pizza night"]
        assert [d.title for d in both] == ["Haircut"]

    async def test_like_wildcards_are_literal(self, test_db, merchant):
        await make_deal(test_db, merchant, title="100% off")
        await make_deal(test_db, merchant, title="Half off")

        deals = await DealService(test_db).list_active_deals(DealFilter(q="100%"))

        assert [d.title for d in deals] == ["100% off"]

    async def test_inactive_merchant_hidden(self, test_db, merchant, live_deal):
        merchant.is_active = False
        await test_db.commit()

        assert await DealService(test_db).list_active_deals() == []

    async def test_iter_active_deals(self, test_db, merchant):
        await make_deal(test_db, merchant, title="A")
        await make_deal(test_db, merchant, title="B")

        titles = [deal.title async for deal in DealService(test_db).iter_active_deals()]

        assert sorted(titles) == ["A", "B"]

    async def test_search_matches_merchant_name(self, test_db, live_deal):
        service = DealService(test_db)

        assert [d.id for d in await service.search_deals("luigi")] == [live_deal.id]
        assert await service.search_deals("sushi") == []
        assert await service.search_deals("   ") == []

    async def test_location_bounding_box(self, test_db, merchant):
        far = Merchant(
            owner_id=merchant.owner_id, name="Boston Bagels", category="food",
            latitude=42.3601, longitude=-71.0589, address="Boston, MA",
        )
        test_db.add(far)
        await test_db.commit()
        near_deal = await make_deal(test_db, merchant, title="Near")
        await make_deal(test_db, far, title="Far")
        service = DealService(test_db)

        nearby = await service.get_deals_by_location(40.72, -74.00, radius_miles=5)
        wide = await service.get_deals_by_location(40.72, -74.00, radius_miles=300)

        assert [d.id for d in nearby] == [near_deal.id]
        assert len(wide) == 2

    async def test_location_rejects_bad_radius(self, test_db):
        with pytest.raises(ValidationError):
            await DealService(test_db).get_deals_by_location(40.0, -74.0, radius_miles=0)

    async def test_merchant_views(self, test_db, merchant):
        now = utcnow()
        await make_deal(test_db, merchant, title="Live")
        await make_deal(test_db, merchant, title="Ended",
                        start_time=now - timedelta(hours=2), end_time=now - timedelta(hours=1))
        service = DealService(test_db)

        all_deals = await service.get_deals_for_merchant(merchant.id)
        expired = await service.get_expired_deals_for_merchant(merchant.id)

        assert sorted(d.title for d in all_deals) == ["Ended", "Live"]
        assert [d.title for d in expired] == ["Ended"]

    async def test_claimed_deals_for_user(self, test_db, merchant, customer):
        first = await make_deal(test_db, merchant, title="First")
        second = await make_deal(test_db, merchant, title="Second")
        service = DealService(test_db)
        await service.claim_deal(customer.id, first.id, now=utcnow() - timedelta(minutes=5))
        await service.claim_deal(customer.id, second.id)

        claims = await service.get_claimed_deals(customer.id)

        assert [c.deal.title for c in claims] == ["Second", "First"]


# ============================================================================
# RECURRENCE
# ============================================================================

class TestRecurrence:

    async def _elapsed_recurring(self, test_db, merchant, **overrides):
        now = utcnow()
        fields = dict(
            is_recurring=True,
            recurring_interval="daily",
            start_time=now - timedelta(hours=3),
            end_time=now - timedelta(hours=1),
            max_redemptions=2,
            current_redemptions=2,
        )
        fields.update(overrides)
        return await make_deal(test_db, merchant, **fields)

    async def test_advances_one_interval(self, test_db, merchant):
        deal = await self._elapsed_recurring(test_db, merchant)
        old_start, old_end = deal.start_time, deal.end_time
        now = utcnow()

        recurred = await DealService(test_db).process_recurrence(now)

        assert recurred == 1
        assert deal.start_time == old_start + timedelta(days=1)
        assert deal.end_time == old_end + timedelta(days=1)
        assert deal.current_redemptions == 0
        assert deal.last_recurred_at == now

    async def test_second_sweep_is_noop(self, test_db, merchant):
        deal = await self._elapsed_recurring(test_db, merchant)
        service = DealService(test_db)
        now = utcnow()

        assert await service.process_recurrence(now) == 1
        end_after_first = deal.end_time
        assert await service.process_recurrence(now) == 0
        assert await service.process_recurrence(now + timedelta(minutes=30)) == 0

        assert deal.end_time == end_after_first

    async def test_not_due_within_interval(self, test_db, merchant):
        now = utcnow()
        await self._elapsed_recurring(
            test_db, merchant, last_recurred_at=now - timedelta(hours=2)
        )

        assert await DealService(test_db).process_recurrence(now) == 0

    async def test_ignores_non_recurring_and_inactive(self, test_db, merchant):
        await self._elapsed_recurring(test_db, merchant, is_recurring=False, recurring_interval=None)
        await self._elapsed_recurring(test_db, merchant, is_active=False)

        assert await DealService(test_db).process_recurrence() == 0

    async def test_previous_claims_expire_and_user_can_claim_again(self, test_db, merchant, customer):
        now = utcnow()
        deal = await self._elapsed_recurring(
            test_db, merchant,
            start_time=now - timedelta(days=1, hours=1),
            end_time=now - timedelta(minutes=1),
            current_redemptions=1,
        )
        old_claim = DealClaim(
            user_id=customer.id,
            deal_id=deal.id,
            status=CLAIM_CLAIMED,
            claimed_at=deal.start_time + timedelta(minutes=5),
        )
        test_db.add(old_claim)
        await test_db.commit()
        service = DealService(test_db)

        await service.process_recurrence()
        await test_db.refresh(old_claim)
        assert old_claim.status == CLAIM_EXPIRED

        new_claim = await service.claim_deal(customer.id, deal.id)
        assert new_claim.status == CLAIM_CLAIMED

    async def test_sweep_emits_event(self, test_db, merchant, recording_sink):
        await self._elapsed_recurring(test_db, merchant)

        await DealService(test_db, sink=recording_sink).process_recurrence()

        assert recording_sink.actions() == ["deal_recurred"]

    async def test_monthly_window_at_month_end_keeps_its_length(self, test_db, merchant):
        monthly = await make_deal(
            test_db, merchant,
            is_recurring=True, recurring_interval="monthly",
            start_time=datetime(2026, 1, 30, 10, 0, tzinfo=timezone.utc),
            end_time=datetime(2026, 1, 31, 9, 0, tzinfo=timezone.utc),
        )
        daily = await make_deal(
            test_db, merchant,
            is_recurring=True, recurring_interval="daily",
            start_time=datetime(2026, 1, 31, 10, 0, tzinfo=timezone.utc),
            end_time=datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc),
        )

        recurred = await DealService(test_db).process_recurrence(
            datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)
        )

        assert recurred == 2
        assert monthly.start_time == datetime(2026, 2, 28, 10, 0, tzinfo=timezone.utc)
        assert monthly.end_time == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        assert daily.start_time == datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc)
        assert daily.end_time == datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)
