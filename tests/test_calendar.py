import unittest
from unittest import mock
import os
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from anacarlita.booking.calendar import BookingCalendar
from anacarlita.booking.period import DateWindow, Event, RentalItem


class BookingCalendarTest(unittest.TestCase):
    def setUp(self):
        self.item = RentalItem(id='tent-1',
                               price_per_day=Decimal('25.00'),
                               availability=DateWindow(date(2024, 6, 1), date(2024, 6, 30)),
                               excluded_dates=frozenset({date(2024, 6, 15)}))
        self.calendar = BookingCalendar(item=self.item, today=date(2024, 6, 10))

    def tile_for(self, weeks, day):
        return next(tile for week in weeks for tile in week if tile.date == day)

    def test_month_grid_starts_on_sunday(self):
        weeks = self.calendar.month(2024, 6)
        self.assertEqual(len(weeks), 6)
        self.assertTrue(all(len(week) == 7 for week in weeks))
        self.assertEqual(weeks[0][0].date, date(2024, 5, 26))
        self.assertEqual(weeks[-1][-1].date, date(2024, 7, 6))

    def test_tile_states_follow_availability(self):
        weeks = self.calendar.month(2024, 6)
        excluded = self.tile_for(weeks, date(2024, 6, 15))
        self.assertFalse(excluded.available)
        self.assertTrue(excluded.disabled)
        self.assertEqual(excluded.css_class, 'unavailable')

        open_day = self.tile_for(weeks, date(2024, 6, 14))
        self.assertTrue(open_day.available)
        self.assertFalse(open_day.disabled)
        self.assertEqual(open_day.css_class, 'available')

    def test_past_days_are_disabled(self):
        past = self.tile_for(self.calendar.month(2024, 6), date(2024, 6, 5))
        self.assertTrue(past.available)
        self.assertTrue(past.disabled)

    def test_days_outside_month(self):
        outside = self.tile_for(self.calendar.month(2024, 6), date(2024, 5, 26))
        self.assertFalse(outside.in_month)
        self.assertEqual(outside.css_class, 'outside')

    def test_has_bookable_days(self):
        self.assertTrue(self.calendar.has_bookable_days(2024, 6))
        self.assertFalse(self.calendar.has_bookable_days(2024, 8))
        late = BookingCalendar(item=self.item, today=date(2024, 7, 1))
        self.assertFalse(late.has_bookable_days(2024, 6))

    def test_malformed_window_has_nothing_bookable(self):
        item = RentalItem(id='broken', price_per_day=Decimal('10'),
                          availability=DateWindow(date(2024, 6, 30), date(2024, 6, 1)))
        self.assertFalse(BookingCalendar(item=item, today=date(2024, 1, 1)).has_bookable_days(2024, 6))

    def test_events_are_placed_on_their_utc_day(self):
        wedding = Event(id='e1', title='Wedding', date=datetime(2024, 6, 20, 18, 0, tzinfo=timezone.utc))
        gala = Event(id='e2', title='Gala', date=date(2024, 6, 21))
        events_calendar = BookingCalendar(events=[wedding, gala], today=date(2024, 6, 1))
        self.assertEqual(events_calendar.events_on(date(2024, 6, 20)), (wedding,))
        self.assertEqual(events_calendar.events_on(date(2024, 6, 22)), ())

        tile = self.tile_for(events_calendar.month(2024, 6), date(2024, 6, 21))
        self.assertEqual(tile.events, (gala,))
        self.assertEqual(tile.css_class, 'has-events')
        self.assertTrue(tile.available)

    @mock.patch('anacarlita.booking.calendar.utc_today', return_value=date(2024, 6, 10))
    def test_today_defaults_to_utc_date(self, utc_today):
        default = BookingCalendar(item=self.item)
        self.assertEqual(default.today, date(2024, 6, 10))
        self.assertEqual(default.month(2024, 6), self.calendar.month(2024, 6))

    def test_month_navigation(self):
        self.assertEqual(BookingCalendar.next_month(2024, 12), (2025, 1))
        self.assertEqual(BookingCalendar.next_month(2024, 6), (2024, 7))
        self.assertEqual(BookingCalendar.previous_month(2024, 1), (2023, 12))
        self.assertEqual(BookingCalendar.month_name(2024, 6), 'June 2024')


if __name__ == '__main__':
    unittest.main()
