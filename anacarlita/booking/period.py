# Value types shared by the availability engine, the calendar and the catalog store
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import FrozenSet, Optional, Tuple, Union

CalendarInstant = Union[date, datetime]

CATEGORIES = ('furniture', 'tableware', 'decorations', 'linens', 'lighting', 'audiovisual', 'tents')


"""
Defined as a pair of calendar instants, inclusive at both ends.
"""
@dataclass(frozen=True)
class DateWindow:
    start: CalendarInstant
    end: CalendarInstant


@dataclass(frozen=True)
class RentalItem:
    id: str
    price_per_day: Decimal
    availability: DateWindow
    excluded_dates: FrozenSet[date] = frozenset()
    # Catalog fields, not used by the engine
    user_id: str = ''
    title: str = ''
    description: str = ''
    images: Tuple[str, ...] = ()
    category: str = ''
    location: str = ''
    features: Tuple[str, ...] = ()
    status: str = 'available'
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Quote:
    duration_days: int
    total_price: Decimal


@dataclass
class Booking:
    id: str
    rental_item_id: str
    user_id: str
    start_date: date
    end_date: date
    total_price: Decimal
    status: str = 'pending'
    client_ref_id: Optional[str] = None
    stripe_session_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Event:
    id: str
    title: str
    date: CalendarInstant
    description: str = ''
    time: str = ''
    location: str = ''
    organizer: str = ''
    contact_email: str = ''
    contact_phone: str = ''
    max_attendees: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
