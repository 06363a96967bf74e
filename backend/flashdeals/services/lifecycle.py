"""Pure deal lifecycle rules: discount math, claimability and recurrence windows.

Nothing in here touches the database. DealService calls these functions so
the same rules apply to the Python-side guards and the tests.
"""

import calendar
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from flashdeals.core.exceptions import DealUnavailableError, ValidationError
from flashdeals.models.base import ensure_utc
from flashdeals.models.deal import (
    Deal,
    INTERVAL_DAILY,
    INTERVAL_MONTHLY,
    INTERVAL_WEEKLY,
    RECURRING_INTERVALS,
)


class DealState(str, Enum):
    """Time-driven state of a deal; only is_active is persisted."""

    SCHEDULED = "scheduled"
    LIVE = "live"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    INACTIVE = "inactive"


def compute_discount_percentage(original_price: Decimal, discounted_price: Decimal) -> int:
    """Return round(100 * (original - discounted) / original), clamped to [0, 100].

    Halves round up: 8.00 -> 7.00 is 12.5% and reports 13.
    """
    original = Decimal(original_price)
    discounted = Decimal(discounted_price)
    if original <= 0:
        return 0
    pct = ((original - discounted) / original * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(pct)))


def validate_pricing(original_price: Decimal, discounted_price: Decimal) -> None:
    if original_price is None or discounted_price is None:
        raise ValidationError("Both original and discounted price are required", field="original_price")
    if original_price <= 0:
        raise ValidationError("original_price must be positive", field="original_price")
    if discounted_price <= 0:
        raise ValidationError("discounted_price must be positive", field="discounted_price")
    if discounted_price > original_price:
        raise ValidationError(
            "discounted_price must not exceed original_price", field="discounted_price"
        )


def validate_window(start_time: datetime, end_time: datetime) -> None:
    if start_time is None or end_time is None:
        raise ValidationError("start_time and end_time are required", field="start_time")
    if ensure_utc(end_time) <= ensure_utc(start_time):
        raise ValidationError("end_time must be after start_time", field="end_time")


def validate_recurrence(is_recurring: bool, recurring_interval: Optional[str]) -> None:
    if not is_recurring:
        return
    if recurring_interval not in RECURRING_INTERVALS:
        raise ValidationError(
            f"recurring_interval must be one of {', '.join(RECURRING_INTERVALS)}",
            field="recurring_interval",
        )


def deal_state(deal: Deal, now: datetime) -> DealState:
    """Classify a deal at ``now``. is_active=False overrides every other state."""
    now = ensure_utc(now)
    if not deal.is_active:
        return DealState.INACTIVE
    if now >= ensure_utc(deal.end_time):
        return DealState.EXPIRED
    if now < ensure_utc(deal.start_time):
        return DealState.SCHEDULED
    if deal.current_redemptions >= deal.max_redemptions:
        return DealState.EXHAUSTED
    return DealState.LIVE


_UNAVAILABLE_REASONS = {
    DealState.INACTIVE: DealUnavailableError.INACTIVE,
    DealState.EXPIRED: DealUnavailableError.EXPIRED,
    DealState.SCHEDULED: DealUnavailableError.NOT_STARTED,
    DealState.EXHAUSTED: DealUnavailableError.CAPACITY_EXHAUSTED,
}


def unavailable_reason(deal: Deal, now: datetime) -> Optional[str]:
    """Return the DealUnavailableError reason, or None when the deal is claimable."""
    return _UNAVAILABLE_REASONS.get(deal_state(deal, now))


def is_claimable(deal: Deal, now: datetime) -> bool:
    return deal_state(deal, now) is DealState.LIVE


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def advance_by_interval(value: datetime, interval: str) -> datetime:
    """Move ``value`` forward by one recurrence interval.

    Monthly steps keep the day of month, clamped to the month's length.
    """
    if interval == INTERVAL_DAILY:
        return value + timedelta(days=1)
    if interval == INTERVAL_WEEKLY:
        return value + timedelta(weeks=1)
    if interval == INTERVAL_MONTHLY:
        return _add_months(value, 1)
    raise ValueError(f"Unknown recurring interval: {interval}")


def is_due_for_recurrence(deal: Deal, now: datetime) -> bool:
    """True when a recurring deal's window has ended and a full interval has
    passed since it last recurred.
    """
    now = ensure_utc(now)
    if not deal.is_recurring or deal.recurring_interval not in RECURRING_INTERVALS:
        return False
    if now < ensure_utc(deal.end_time):
        return False
    if deal.last_recurred_at is None:
        return True
    return now >= advance_by_interval(ensure_utc(deal.last_recurred_at), deal.recurring_interval)


def next_window(deal: Deal) -> tuple[datetime, datetime]:
    """The deal's window shifted by exactly one interval.

    Only the start moves by the interval; the end follows at the same
    distance, so month-end clamping never shortens or inverts the window.
    """
    start = ensure_utc(deal.start_time)
    new_start = advance_by_interval(start, deal.recurring_interval)
    return new_start, new_start + (ensure_utc(deal.end_time) - start)
