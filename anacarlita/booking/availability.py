"""
Availability and pricing for rental items.

Pure functions shared by the calendar rendering and by the checkout route, which re-checks a
submitted range and recomputes the price before a checkout session is requested.

Timezone policy: every instant is reduced to its UTC calendar date before a day-level comparison.
Aware datetimes are converted to UTC, naive datetimes are taken to be UTC already, and plain dates
are used as they are. Durations are measured between UTC instants, with a plain date standing for
midnight UTC.
"""
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from .period import CalendarInstant, DateWindow, Quote, RentalItem

ONE_DAY = timedelta(days=1)

# A same-day booking is billed as one day
MINIMUM_RENTAL_DAYS = 1


def to_utc_date(value: CalendarInstant) -> date:
    # datetime is a subclass of date, so check it first
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def to_utc_datetime(value: CalendarInstant) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def utc_today(now: Optional[datetime] = None) -> date:
    """Today's UTC calendar date. Past days are measured against this, never the server's local date."""
    return to_utc_date(now or datetime.now(timezone.utc))


def is_date_available(item: RentalItem, day: CalendarInstant) -> bool:
    """
    True iff the day lies inside the item's availability window and is not one of its excluded dates.

    An item whose window ends before it starts has no available dates.
    """
    start = to_utc_date(item.availability.start)
    end = to_utc_date(item.availability.end)
    if end < start:
        return False
    day = to_utc_date(day)
    if not start <= day <= end:
        return False
    return day not in {to_utc_date(excluded) for excluded in item.excluded_dates}


def is_range_available(item: RentalItem, window: DateWindow) -> bool:
    """
    True iff every calendar day from window.start through window.end is available.
    A window given in reverse order is checked as if it had been given forwards.
    """
    first, last = sorted((to_utc_date(window.start), to_utc_date(window.end)))
    day = first
    while day <= last:
        if not is_date_available(item, day):
            return False
        day += ONE_DAY
    return True


def available_dates(item: RentalItem, start: CalendarInstant, end: CalendarInstant) -> List[date]:
    first, last = sorted((to_utc_date(start), to_utc_date(end)))
    days = []
    day = first
    while day <= last:
        if is_date_available(item, day):
            days.append(day)
        day += ONE_DAY
    return days


def calculate_duration_days(start: CalendarInstant, end: CalendarInstant) -> int:
    """
    Number of billable days between two instants, in either order.

    Any partial day counts as a whole day (26 hours is 2 days), and the result is never below
    MINIMUM_RENTAL_DAYS.
    """
    elapsed = abs(to_utc_datetime(end) - to_utc_datetime(start))
    days, remainder = divmod(elapsed, ONE_DAY)
    if remainder:
        days += 1
    return max(days, MINIMUM_RENTAL_DAYS)


def calculate_total_price(price_per_day, start: CalendarInstant, end: CalendarInstant) -> Decimal:
    # No rounding here, cents are applied at the payment and display boundaries
    return _as_decimal(price_per_day) * calculate_duration_days(start, end)


def quote(item: RentalItem, start: CalendarInstant, end: CalendarInstant) -> Quote:
    duration = calculate_duration_days(start, end)
    return Quote(duration_days=duration, total_price=calculate_total_price(item.price_per_day, start, end))


def _as_decimal(amount) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    # str() keeps 0.1 as Decimal('0.1') rather than the binary float expansion
    return Decimal(str(amount))
