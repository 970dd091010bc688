"""
Month calendars for the rental detail page and the events page.

A rental calendar marks each day tile available or disabled using the availability engine.
The events calendar marks the days that have events on them.
Weeks start on Sunday.
"""
import calendar
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Tuple

from .availability import is_date_available, to_utc_date, utc_today
from .period import Event, RentalItem


@dataclass(frozen=True)
class DayTile:
    date: date
    in_month: bool
    available: bool
    disabled: bool
    events: Tuple[Event, ...] = ()

    @property
    def css_class(self) -> str:
        if not self.in_month:
            return 'outside'
        if self.events:
            return 'has-events'
        return 'available' if self.available else 'unavailable'


class BookingCalendar:

    def __init__(self, item: Optional[RentalItem] = None, events: Iterable[Event] = (), today: Optional[date] = None):
        self._calendar = calendar.Calendar(firstweekday=calendar.SUNDAY)
        self.item = item
        self.events = list(events)
        self.today = today or utc_today()

    def events_on(self, day: date) -> Tuple[Event, ...]:
        return tuple(event for event in self.events if to_utc_date(event.date) == day)

    def month(self, year: int, month: int) -> List[List[DayTile]]:
        """
        Weeks of day tiles for the given month, padded with the neighbouring months' days.

        With an item, a tile is available when the engine says so, and disabled when it is unavailable or in the past.
        Without an item (events calendar), every day is selectable except past days.
        """
        weeks = []
        for week in self._calendar.monthdatescalendar(year, month):
            tiles = []
            for day in week:
                if self.item is not None:
                    available = is_date_available(self.item, day)
                else:
                    available = True
                tiles.append(DayTile(date=day,
                                     in_month=day.month == month,
                                     available=available,
                                     disabled=day < self.today or not available,
                                     events=self.events_on(day)))
            weeks.append(tiles)
        return weeks

    def has_bookable_days(self, year: int, month: int) -> bool:
        return any(tile.in_month and not tile.disabled for week in self.month(year, month) for tile in week)

    @staticmethod
    def next_month(year: int, month: int) -> Tuple[int, int]:
        return (year + 1, 1) if month == 12 else (year, month + 1)

    @staticmethod
    def previous_month(year: int, month: int) -> Tuple[int, int]:
        return (year - 1, 12) if month == 1 else (year, month - 1)

    @staticmethod
    def month_name(year: int, month: int) -> str:
        return f"{calendar.month_name[month]} {year}"
