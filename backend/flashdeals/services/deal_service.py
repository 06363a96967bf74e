"""Deal lifecycle service.

Owns deal creation, time-window enforcement, capacity-bounded claiming,
saving, listing and recurrence. Capacity is never checked and incremented
in two steps: the increment is a single conditional UPDATE that only
matches while current_redemptions < max_redemptions, so two claims racing
for the last slot cannot both win.
"""

import json
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from sqlalchemy import Select, and_, or_, select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, selectinload

from flashdeals.config import settings
from flashdeals.core.capabilities import DEALS_MANAGE, require_capability
from flashdeals.core.exceptions import (
    ConcurrencyConflictError,
    DealUnavailableError,
    DuplicateClaimError,
    DuplicateSaveError,
    NotFoundError,
    ValidationError,
)
from flashdeals.models.base import utcnow
from flashdeals.models.deal import Deal
from flashdeals.models.deal_claim import DealClaim, CLAIM_CLAIMED, CLAIM_EXPIRED, CLAIM_USED
from flashdeals.models.merchant import Merchant
from flashdeals.models.saved_deal import SavedDeal
from flashdeals.models.user import User
from flashdeals.services.audit_service import AuditSink, NullAuditSink
from flashdeals.services.auth_service import Identity
from flashdeals.services.lifecycle import (
    compute_discount_percentage,
    is_due_for_recurrence,
    next_window,
    unavailable_reason,
    validate_pricing,
    validate_recurrence,
    validate_window,
)
from flashdeals.services.merchant_service import MerchantService

logger = structlog.get_logger(__name__)

MILES_PER_DEGREE_LATITUDE = 69.0

_UPDATABLE_FIELDS = {
    "title",
    "description",
    "category",
    "original_price",
    "discounted_price",
    "start_time",
    "end_time",
    "max_redemptions",
    "is_active",
    "is_recurring",
    "recurring_interval",
    "cover_color",
    "deal_emoji",
}


@dataclass(frozen=True)
class DealFilter:
    """Optional narrowing for active deal listings.

    ``q`` is a case-insensitive substring matched against title and
    description.
    """

    category: Optional[str] = None
    q: Optional[str] = None


class DealService:
    """Service for the deal lifecycle.

    Args:
        db: Request-scoped async session
        sink: Best-effort audit/notification writer. Defaults to a sink that
            drops events.
    """

    def __init__(self, db: AsyncSession, sink: Optional[AuditSink] = None):
        self.db = db
        self.sink = sink or NullAuditSink()
        self.merchants = MerchantService(db)
        self.logger = logger.bind(service="deal_service")

    # ------------------------------------------------------------------
    # Creation and editing
    # ------------------------------------------------------------------

    async def create_deal(
        self,
        identity: Identity,
        merchant_id: uuid.UUID,
        title: str,
        original_price: Decimal,
        discounted_price: Decimal,
        category: str,
        start_time: datetime,
        end_time: datetime,
        description: Optional[str] = None,
        max_redemptions: Optional[int] = None,
        is_recurring: bool = False,
        recurring_interval: Optional[str] = None,
        cover_color: Optional[str] = None,
        deal_emoji: Optional[str] = None,
    ) -> Deal:
        """Create a deal for a merchant the caller owns.

        Raises:
            NotFoundError: merchant_id is unknown
            AuthorizationError: caller does not own the merchant
            ValidationError: empty title, bad price or time ordering,
                non-positive capacity, unknown recurrence interval
        """
        require_capability(identity.role, DEALS_MANAGE)
        merchant = await self.merchants.get_owned_merchant(identity, merchant_id)

        if not (title or "").strip():
            raise ValidationError("title is required", field="title")
        if not (category or "").strip():
            raise ValidationError("category is required", field="category")
        original_price = Decimal(str(original_price))
        discounted_price = Decimal(str(discounted_price))
        validate_pricing(original_price, discounted_price)
        validate_window(start_time, end_time)
        validate_recurrence(is_recurring, recurring_interval)

        if max_redemptions is None:
            max_redemptions = settings.DEFAULT_MAX_REDEMPTIONS
        if max_redemptions <= 0:
            raise ValidationError("max_redemptions must be positive", field="max_redemptions")

        deal = Deal(
            merchant_id=merchant.id,
            title=title.strip(),
            description=description,
            category=category.strip(),
            original_price=original_price,
            discounted_price=discounted_price,
            discount_percentage=compute_discount_percentage(original_price, discounted_price),
            start_time=start_time,
            end_time=end_time,
            max_redemptions=max_redemptions,
            current_redemptions=0,
            is_active=True,
            is_recurring=is_recurring,
            recurring_interval=recurring_interval if is_recurring else None,
        )
        if cover_color:
            deal.cover_color = cover_color
        if deal_emoji:
            deal.deal_emoji = deal_emoji

        self.db.add(deal)
        await self.db.commit()
        await self.db.refresh(deal)

        self.logger.info(
            "deal_created",
            deal_id=str(deal.id),
            merchant_id=str(merchant.id),
            discount_percentage=deal.discount_percentage,
            max_redemptions=deal.max_redemptions,
        )
        self.sink.dispatch(
            "deal_created",
            user_id=identity.user_id,
            details=json.dumps({"deal_id": str(deal.id), "merchant_id": str(merchant.id)}),
        )
        return deal

    async def update_deal(
        self, identity: Identity, deal_id: uuid.UUID, changes: Dict[str, Any]
    ) -> Deal:
        """Edit a deal the caller manages.

        Pricing and window are re-validated against the merged values, and
        the discount percentage is recomputed. Capacity may not drop below
        the redemptions already handed out.
        """
        deal = await self.get_deal(deal_id)
        if not deal:
            raise NotFoundError("Deal", deal_id)
        await self.merchants.get_owned_merchant(identity, deal.merchant_id)

        changes = {k: v for k, v in changes.items() if k in _UPDATABLE_FIELDS and v is not None}

        original_price = Decimal(str(changes.get("original_price", deal.original_price)))
        discounted_price = Decimal(str(changes.get("discounted_price", deal.discounted_price)))
        validate_pricing(original_price, discounted_price)
        validate_window(
            changes.get("start_time", deal.start_time),
            changes.get("end_time", deal.end_time),
        )
        is_recurring = changes.get("is_recurring", deal.is_recurring)
        interval = changes.get("recurring_interval", deal.recurring_interval)
        validate_recurrence(is_recurring, interval)

        max_redemptions = changes.get("max_redemptions", deal.max_redemptions)
        if max_redemptions <= 0:
            raise ValidationError("max_redemptions must be positive", field="max_redemptions")
        if max_redemptions < deal.current_redemptions:
            raise ValidationError(
                "max_redemptions cannot be lower than redemptions already claimed",
                field="max_redemptions",
            )

        for key, value in changes.items():
            setattr(deal, key, value)
        deal.original_price = original_price
        deal.discounted_price = discounted_price
        deal.discount_percentage = compute_discount_percentage(original_price, discounted_price)
        if not is_recurring:
            deal.recurring_interval = None

        await self.db.commit()

        self.logger.info("deal_updated", deal_id=str(deal_id), fields=sorted(changes))
        return await self.get_deal(deal_id)

    async def deactivate_deal(self, identity: Identity, deal_id: uuid.UUID) -> Deal:
        """Clear is_active; the deal becomes unclaimable from any state."""
        return await self.update_deal(identity, deal_id, {"is_active": False})

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    async def claim_deal(
        self,
        user_id: uuid.UUID,
        deal_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> DealClaim:
        """Claim one unit of a deal's capacity for a user.

        Guards run in order: deal exists, deal is inside its window and
        active, user holds no active claim, capacity remains. The counter
        increment and the claim insert commit together.

        Raises:
            NotFoundError: deal or user does not exist
            DealUnavailableError: not started, expired, inactive or full
            DuplicateClaimError: user already holds a non-expired claim
            ConcurrencyConflictError: the conditional update matched no row
                although the deal still looks claimable
        """
        now = now or utcnow()

        deal = await self.db.get(Deal, deal_id)
        if not deal:
            raise NotFoundError("Deal", deal_id)
        if not await self.db.get(User, user_id):
            raise NotFoundError("User", user_id)

        # Duplicates are reported ahead of capacity_exhausted.
        reason = unavailable_reason(deal, now)
        if reason and reason != DealUnavailableError.CAPACITY_EXHAUSTED:
            self.logger.info("claim_rejected", deal_id=str(deal_id), reason=reason)
            raise DealUnavailableError(reason)

        if await self._has_active_claim(user_id, deal_id):
            raise DuplicateClaimError()

        if reason:
            self.logger.info("claim_rejected", deal_id=str(deal_id), reason=reason)
            raise DealUnavailableError(reason)

        result = await self.db.execute(
            update(Deal)
            .where(
                Deal.id == deal_id,
                Deal.is_active == True,
                Deal.start_time <= now,
                Deal.end_time > now,
                Deal.current_redemptions < Deal.max_redemptions,
            )
            .values(current_redemptions=Deal.current_redemptions + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            await self._raise_lost_race(deal_id, now)

        claim = DealClaim(user_id=user_id, deal_id=deal_id, status=CLAIM_CLAIMED, claimed_at=now)
        self.db.add(claim)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            self.logger.info("claim_duplicate_race", deal_id=str(deal_id), user_id=str(user_id))
            raise DuplicateClaimError()

        await self.db.refresh(deal)

        self.logger.info(
            "deal_claimed",
            deal_id=str(deal_id),
            user_id=str(user_id),
            redemptions=deal.current_redemptions,
            max_redemptions=deal.max_redemptions,
        )
        self.sink.dispatch(
            "deal_claimed",
            user_id=user_id,
            details=json.dumps({"deal_id": str(deal_id), "claim_id": str(claim.id)}),
            notification={
                "type": "deal_claimed",
                "title": "Deal claimed",
                "message": f"You claimed \"{deal.title}\". Show this claim at the merchant to redeem it.",
                "deal_id": deal_id,
            },
        )
        return claim

    async def _has_active_claim(self, user_id: uuid.UUID, deal_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(DealClaim.id).where(
                DealClaim.user_id == user_id,
                DealClaim.deal_id == deal_id,
                DealClaim.status != CLAIM_EXPIRED,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _raise_lost_race(self, deal_id: uuid.UUID, now: datetime) -> None:
        """Explain why the conditional update matched nothing."""
        deal = await self.db.get(Deal, deal_id, populate_existing=True)
        if not deal:
            raise NotFoundError("Deal", deal_id)
        reason = unavailable_reason(deal, now)
        self.logger.info("claim_lost_race", deal_id=str(deal_id), reason=reason)
        if reason:
            raise DealUnavailableError(reason)
        raise ConcurrencyConflictError()

    async def redeem_claim(self, identity: Identity, claim_id: uuid.UUID) -> DealClaim:
        """Merchant marks a claim as used at the point of sale."""
        result = await self.db.execute(
            select(DealClaim)
            .options(selectinload(DealClaim.deal))
            .where(DealClaim.id == claim_id)
        )
        claim = result.scalar_one_or_none()
        if not claim:
            raise NotFoundError("DealClaim", claim_id)
        await self.merchants.get_owned_merchant(identity, claim.deal.merchant_id)

        if claim.status != CLAIM_CLAIMED:
            raise ValidationError(f"Claim is already {claim.status}", field="status")

        claim.status = CLAIM_USED
        claim.used_at = utcnow()
        await self.db.commit()

        self.logger.info("claim_redeemed", claim_id=str(claim_id), deal_id=str(claim.deal_id))
        return claim

    async def get_claimed_deals(self, user_id: uuid.UUID) -> List[DealClaim]:
        """All of a user's claims with their deal and merchant, newest first."""
        result = await self.db.execute(
            select(DealClaim)
            .options(selectinload(DealClaim.deal).selectinload(Deal.merchant))
            .where(DealClaim.user_id == user_id)
            .order_by(DealClaim.claimed_at.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    async def save_deal(self, user_id: uuid.UUID, deal_id: uuid.UUID) -> SavedDeal:
        """Bookmark a deal.

        Raises:
            NotFoundError: deal does not exist
            DuplicateSaveError: the user already saved this deal
        """
        if not await self.db.get(Deal, deal_id):
            raise NotFoundError("Deal", deal_id)

        existing = await self.db.execute(
            select(SavedDeal.id).where(
                SavedDeal.user_id == user_id,
                SavedDeal.deal_id == deal_id,
            )
        )
        if existing.scalar_one_or_none():
            raise DuplicateSaveError()

        saved = SavedDeal(user_id=user_id, deal_id=deal_id)
        self.db.add(saved)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateSaveError()

        self.logger.info("deal_saved", deal_id=str(deal_id), user_id=str(user_id))
        return saved

    async def unsave_deal(self, user_id: uuid.UUID, deal_id: uuid.UUID) -> bool:
        """Remove a bookmark. Returns False when there was nothing to remove."""
        result = await self.db.execute(
            select(SavedDeal).where(
                SavedDeal.user_id == user_id,
                SavedDeal.deal_id == deal_id,
            )
        )
        saved = result.scalar_one_or_none()
        if not saved:
            return False

        await self.db.delete(saved)
        await self.db.commit()

        self.logger.info("deal_unsaved", deal_id=str(deal_id), user_id=str(user_id))
        return True

    async def is_deal_saved(self, user_id: uuid.UUID, deal_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(SavedDeal.id).where(
                SavedDeal.user_id == user_id,
                SavedDeal.deal_id == deal_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def get_saved_deals(
        self, user_id: uuid.UUID, now: Optional[datetime] = None
    ) -> List[SavedDeal]:
        """Saved deals that are still active and not past their end time."""
        now = now or utcnow()
        result = await self.db.execute(
            select(SavedDeal)
            .join(SavedDeal.deal)
            .options(selectinload(SavedDeal.deal).selectinload(Deal.merchant))
            .where(
                SavedDeal.user_id == user_id,
                Deal.is_active == True,
                Deal.end_time > now,
            )
            .order_by(SavedDeal.saved_at.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def get_deal(self, deal_id: uuid.UUID) -> Optional[Deal]:
        """Single deal with its merchant loaded, or None."""
        result = await self.db.execute(
            select(Deal)
            .options(selectinload(Deal.merchant))
            .where(Deal.id == deal_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _active_deals_query(self, now: datetime) -> Select:
        return (
            select(Deal)
            .join(Deal.merchant)
            .options(contains_eager(Deal.merchant))
            .where(
                Deal.is_active == True,
                Deal.end_time > now,
                Merchant.is_active == True,
            )
        )

    def _filtered_active_deals_query(self, filter: Optional[DealFilter], now: datetime) -> Select:
        query = self._active_deals_query(now)
        if filter and filter.category:
            query = query.where(func.lower(Deal.category) == filter.category.strip().lower())
        if filter and filter.q:
            term = filter.q.strip().lower()
            query = query.where(or_(
                func.lower(Deal.title).contains(term, autoescape=True),
                func.lower(func.coalesce(Deal.description, "")).contains(term, autoescape=True),
            ))
        return query.order_by(Deal.end_time.asc(), Deal.id)

    async def list_active_deals(
        self,
        filter: Optional[DealFilter] = None,
        now: Optional[datetime] = None,
    ) -> List[Deal]:
        """Active deals whose end time is still ahead, soonest-ending first.

        Scheduled deals (start_time in the future) are included so they can
        be shown as upcoming.
        """
        query = self._filtered_active_deals_query(filter, now or utcnow())
        result = await self.db.execute(query)
        deals = list(result.scalars().all())

        self.logger.debug(
            "active_deals_listed",
            count=len(deals),
            category=filter.category if filter else None,
            q=filter.q if filter else None,
        )
        return deals

    async def iter_active_deals(
        self,
        filter: Optional[DealFilter] = None,
        now: Optional[datetime] = None,
    ) -> AsyncIterator[Deal]:
        """Stream the same rows as list_active_deals without materialising them."""
        query = self._filtered_active_deals_query(filter, now or utcnow())
        result = await self.db.stream_scalars(query)
        async for deal in result:
            yield deal

    async def search_deals(self, q: str, now: Optional[datetime] = None) -> List[Deal]:
        """Active deals whose title, description, merchant name or category
        contains ``q`` (case-insensitive). Blank queries return nothing.
        """
        term = (q or "").strip().lower()
        if not term:
            return []

        query = (
            self._active_deals_query(now or utcnow())
            .where(or_(
                func.lower(Deal.title).contains(term, autoescape=True),
                func.lower(func.coalesce(Deal.description, "")).contains(term, autoescape=True),
                func.lower(Merchant.name).contains(term, autoescape=True),
                func.lower(Deal.category).contains(term, autoescape=True),
            ))
            .order_by(Deal.end_time.asc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_deals_by_location(
        self,
        latitude: float,
        longitude: float,
        radius_miles: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> List[Deal]:
        """Active deals whose merchant falls inside a bounding box around a point.

        The box is radius/69 degrees of latitude tall and
        radius/(69*cos(lat)) degrees of longitude wide.
        """
        if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
            raise ValidationError("latitude/longitude out of range", field="latitude")
        radius = radius_miles if radius_miles is not None else settings.DEFAULT_SEARCH_RADIUS_MILES
        if radius <= 0:
            raise ValidationError("radius must be positive", field="radius")

        lat_range = radius / MILES_PER_DEGREE_LATITUDE
        cos_lat = max(math.cos(math.radians(latitude)), 1e-6)
        lng_range = radius / (MILES_PER_DEGREE_LATITUDE * cos_lat)

        query = (
            self._active_deals_query(now or utcnow())
            .where(and_(
                Merchant.latitude >= latitude - lat_range,
                Merchant.latitude <= latitude + lat_range,
                Merchant.longitude >= longitude - lng_range,
                Merchant.longitude <= longitude + lng_range,
            ))
            .order_by(Deal.end_time.asc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_deals_for_merchant(self, merchant_id: uuid.UUID) -> List[Deal]:
        """Every deal of a merchant regardless of state, newest first."""
        result = await self.db.execute(
            select(Deal)
            .options(selectinload(Deal.merchant))
            .where(Deal.merchant_id == merchant_id)
            .order_by(Deal.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_expired_deals_for_merchant(
        self, merchant_id: uuid.UUID, now: Optional[datetime] = None
    ) -> List[Deal]:
        """Deals of a merchant whose end time has passed, most recent first."""
        result = await self.db.execute(
            select(Deal)
            .options(selectinload(Deal.merchant))
            .where(Deal.merchant_id == merchant_id, Deal.end_time <= (now or utcnow()))
            .order_by(Deal.end_time.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Recurrence
    # ------------------------------------------------------------------

    async def process_recurrence(self, now: Optional[datetime] = None) -> int:
        """Re-open recurring deals whose window and interval have both elapsed.

        Each due deal moves forward by exactly one interval, its redemption
        counter resets to zero, last_recurred_at becomes ``now`` and the
        claims from the finished window are expired. Running the sweep again
        before another interval passes changes nothing.

        Returns:
            Number of deals that recurred
        """
        now = now or utcnow()
        self.logger.info("recurrence_sweep_started", now=now.isoformat())

        result = await self.db.execute(
            select(Deal).where(
                Deal.is_recurring == True,
                Deal.is_active == True,
                Deal.end_time <= now,
            )
        )
        candidates = [d for d in result.scalars().all() if is_due_for_recurrence(d, now)]

        recurred: List[uuid.UUID] = []
        for deal in candidates:
            new_start, new_end = next_window(deal)
            # Guarding on the old end_time keeps overlapping sweeps from
            # advancing the same window twice.
            advanced = await self.db.execute(
                update(Deal)
                .where(Deal.id == deal.id, Deal.end_time == deal.end_time)
                .values(
                    start_time=new_start,
                    end_time=new_end,
                    current_redemptions=0,
                    last_recurred_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if advanced.rowcount == 0:
                continue

            await self.db.execute(
                update(DealClaim)
                .where(DealClaim.deal_id == deal.id, DealClaim.status != CLAIM_EXPIRED)
                .values(status=CLAIM_EXPIRED)
                .execution_options(synchronize_session=False)
            )
            recurred.append(deal.id)

        await self.db.commit()
        for deal in candidates:
            await self.db.refresh(deal)

        self.logger.info(
            "recurrence_sweep_completed",
            candidates=len(candidates),
            recurred=len(recurred),
        )
        if recurred:
            self.sink.dispatch(
                "deal_recurred",
                details=json.dumps({"deal_ids": [str(d) for d in recurred]}),
            )
        return len(recurred)
