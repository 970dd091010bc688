from datetime import date, timedelta
from typing import List, Optional
import psycopg2
from psycopg2.extras import DictCursor
from contextlib import contextmanager
import logging
import os
from .period import Booking, DateWindow, Event, RentalItem

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


def rental_item_from_row(row) -> RentalItem:
    return RentalItem(
        id=str(row['id']),
        price_per_day=row['price_per_day'],
        availability=DateWindow(row['availability_start'], row['availability_end']),
        excluded_dates=frozenset(row['excluded_dates'] or ()),
        user_id=row['user_id'],
        title=row['title'],
        description=row['description'],
        images=tuple(row['images'] or ()),
        category=row['category'],
        location=row['location'],
        features=tuple(row['features'] or ()),
        status=row['status'],
        stripe_product_id=row['stripe_product_id'],
        stripe_price_id=row['stripe_price_id'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


def event_from_row(row) -> Event:
    return Event(
        id=str(row['id']),
        title=row['title'],
        date=row['event_date'],
        description=row['description'] or '',
        time=row['event_time'] or '',
        location=row['location'] or '',
        organizer=row['organizer'] or '',
        contact_email=row['contact_email'] or '',
        contact_phone=row['contact_phone'] or '',
        max_attendees=row['max_attendees'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


def booking_from_row(row) -> Booking:
    return Booking(
        id=str(row['id']),
        rental_item_id=str(row['rental_item_id']),
        user_id=row['user_id'],
        start_date=row['start_date'],
        end_date=row['end_date'],
        total_price=row['total_price'],
        status=row['status'],
        client_ref_id=str(row['client_ref_id']),
        stripe_session_id=row['stripe_session_id'],
        notes=row['notes'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


def booked_days(start: date, end: date) -> List[date]:
    first, last = sorted((start, end))
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


class DatabasePersistence:
    """
    Catalog store for rental items, events and bookings.

    Every public method opens its own connection, so an instance is cheap to create per request.
    """

    def __init__(self, dsn: Optional[str] = None):
        self._dsn = dsn or os.environ.get('DATABASE_URL')
        self._setup_schema()

    @contextmanager
    def _database_connect(self):
        """
        Internal function to manage the Postgres database connections.
        Uses DATABASE_URL when set, otherwise the local development database.
        """
        if self._dsn:
            connection = psycopg2.connect(self._dsn)
        else:
            connection = psycopg2.connect(dbname='anacarlita')
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    def get_rental_item(self, item_id: str) -> Optional[RentalItem]:
        query = "SELECT * FROM rental_items WHERE id = %s"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute("SET TIME ZONE 'UTC';")
                try:
                    cursor.execute(query, (item_id,))
                except psycopg2.DataError as e:
                    # Malformed UUID in the URL
                    logger.info("Rental item lookup failed: %s", e.args)
                    return None
                row = cursor.fetchone()
        return rental_item_from_row(row) if row else None

    def list_rental_items(self, category: Optional[str] = None, search: Optional[str] = None) -> List[RentalItem]:
        """
        Rental items, newest first. Category is an exact match, search is a case-insensitive match on title or description.
        """
        query = "SELECT * FROM rental_items WHERE TRUE"
        params = []
        if category:
            query += " AND category = %s"
            params.append(category)
        if search:
            query += " AND (title ILIKE %s OR description ILIKE %s)"
            params.extend([f"%{search}%", f"%{search}%"])
        query += " ORDER BY created_at DESC"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute("SET TIME ZONE 'UTC';")
                cursor.execute(query, params)
                rows = cursor.fetchall()
        return [rental_item_from_row(row) for row in rows]

    def insert_rental_item(self, listing: dict) -> Optional[str]:
        """
        Inserts a new listing. Returns the new id, or None if the insert failed.
        """
        query = """INSERT INTO rental_items
                    (user_id, title, description, price_per_day, images, category, location,
                     availability_start, availability_end, features, status, stripe_product_id, stripe_price_id)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING id"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute("SET TIME ZONE 'UTC'")
                try:
                    cursor.execute(query, (
                        listing['user_id'], listing['title'], listing['description'], listing['price_per_day'],
                        list(listing.get('images', [])), listing['category'], listing['location'],
                        listing['availability_start'], listing['availability_end'],
                        list(listing.get('features', [])), listing.get('status', 'available'),
                        listing.get('stripe_product_id'), listing.get('stripe_price_id')))
                except psycopg2.DatabaseError as e:
                    logger.error(f"Rental item insertion failed: {e.args}")
                    return None
                return str(cursor.fetchone()[0])

    def list_events(self) -> List[Event]:
        query = "SELECT * FROM events ORDER BY event_date, event_time"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute("SET TIME ZONE 'UTC';")
                cursor.execute(query)
                rows = cursor.fetchall()
        return [event_from_row(row) for row in rows]

    def insert_event(self, event: dict) -> Optional[str]:
        query = """INSERT INTO events
                    (title, description, event_date, event_time, location, organizer,
                     contact_email, contact_phone, max_attendees)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING id"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                try:
                    cursor.execute(query, (
                        event['title'], event.get('description', ''), event['date'], event.get('time', ''),
                        event.get('location', ''), event.get('organizer', ''), event.get('contact_email', ''),
                        event.get('contact_phone', ''), event.get('max_attendees')))
                except psycopg2.DatabaseError as e:
                    logger.error(f"Event insertion failed: {e.args}")
                    return None
                return str(cursor.fetchone()[0])

    def check_or_insert_booking(self, client_ref_id: str, rental_item_id: str, user_id: str,
                                start_date: date, end_date: date, total_price, stripe_session_id: str = None) -> bool:
        """
        If a booking with this client_ref_id already exists, returns whether it was already fulfilled (confirmed).
        Otherwise inserts it as pending and returns False.
        """
        query = "SELECT check_or_insert_booking(%s, %s, %s, %s, %s, %s, %s)"
        logger.info("Executing query: %s", query)
        already_fulfilled = False
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                try:
                    cursor.execute(query, (client_ref_id, rental_item_id, user_id, start_date, end_date,
                                           total_price, stripe_session_id))
                    already_fulfilled = cursor.fetchone()[0]
                except psycopg2.DatabaseError as e:
                    logger.error(f"Booking insertion failed: {e.args}")
                    return False
        return already_fulfilled

    def confirm_booking(self, client_ref_id: str) -> Optional[Booking]:
        """
        Marks a pending booking as confirmed and carves its days out of the item's availability, in one transaction.
        Returns the confirmed booking, or None if nothing was pending under that reference.
        """
        query = """UPDATE bookings SET status = 'confirmed', updated_at = CURRENT_TIMESTAMP
                   WHERE client_ref_id = %s AND status = 'pending'
                   RETURNING *"""
        exclude_query = """UPDATE rental_items
                           SET excluded_dates = ARRAY(SELECT DISTINCT unnest(excluded_dates || %s::date[]) ORDER BY 1),
                               updated_at = CURRENT_TIMESTAMP
                           WHERE id = %s"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute("SET TIME ZONE 'UTC'")
                try:
                    cursor.execute(query, (client_ref_id,))
                    row = cursor.fetchone()
                    if not row:
                        return None
                    booking = booking_from_row(row)
                    cursor.execute(exclude_query, (booked_days(booking.start_date, booking.end_date),
                                                   booking.rental_item_id))
                except psycopg2.DatabaseError as e:
                    logger.error(f"Booking confirmation failed: {e.args}")
                    conn.rollback()
                    return None
        return booking

    def list_bookings_for_user(self, user_id: str) -> List[Booking]:
        query = "SELECT * FROM bookings WHERE user_id = %s ORDER BY start_date DESC"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute("SET TIME ZONE 'UTC';")
                cursor.execute(query, (user_id,))
                rows = cursor.fetchall()
        return [booking_from_row(row) for row in rows]

    @staticmethod
    def _table_exists(cursor, table_name: str) -> bool:
        cursor.execute("""
            SELECT COUNT(*)
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = %s;
        """, (table_name,))
        return cursor.fetchone()[0] > 0

    @staticmethod
    def _function_exists(cursor, function_name: str, schema_name: str = 'public') -> bool:
        cursor.execute("""
            SELECT EXISTS (
            SELECT 1
            FROM pg_proc
            JOIN pg_namespace ON pg_proc.pronamespace = pg_namespace.oid
            WHERE proname = %s AND nspname = %s);
        """, (function_name, schema_name))
        return cursor.fetchone()[0]

    def _setup_schema(self):
        """
        Internal function to set-up the database schema if the tables do not exist. Primarily used when being deployed in production.
        """
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                if not self._table_exists(cursor, 'rental_items'):
                    logger.info("Setting up the schema.")
                    cursor.execute("""
                        CREATE TABLE rental_items (
                        id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
                        user_id text NOT NULL,
                        title text NOT NULL,
                        description text NOT NULL,
                        price_per_day numeric(10, 2) NOT NULL CHECK (price_per_day >= 0),
                        images text[] NOT NULL DEFAULT '{}',
                        category text NOT NULL,
                        location text NOT NULL,
                        availability_start timestamp with time zone NOT NULL,
                        availability_end timestamp with time zone NOT NULL,
                        excluded_dates date[] NOT NULL DEFAULT '{}',
                        features text[] NOT NULL DEFAULT '{}',
                        status text NOT NULL DEFAULT 'available',
                        stripe_product_id text,
                        stripe_price_id text,
                        created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL,
                        updated_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL);
                    """)
                if not self._table_exists(cursor, 'events'):
                    cursor.execute("""
                        CREATE TABLE events (
                        id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
                        title text NOT NULL,
                        description text,
                        event_date date NOT NULL,
                        event_time text,
                        location text,
                        organizer text,
                        contact_email text,
                        contact_phone text,
                        max_attendees integer,
                        created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL,
                        updated_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL);
                    """)
                if not self._table_exists(cursor, 'bookings'):
                    cursor.execute("""
                        CREATE TABLE bookings (
                        id serial PRIMARY KEY,
                        rental_item_id uuid NOT NULL REFERENCES rental_items (id),
                        user_id text NOT NULL,
                        start_date date NOT NULL,
                        end_date date NOT NULL,
                        total_price numeric(10, 2) NOT NULL,
                        status text NOT NULL DEFAULT 'pending',
                        client_ref_id uuid UNIQUE NOT NULL,
                        stripe_session_id text,
                        notes text,
                        created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL,
                        updated_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL);
                    """)
                self._setup_booking_function(cursor)

    def _setup_booking_function(self, cursor):
        if self._function_exists(cursor, 'check_or_insert_booking'):
            return
        cursor.execute("""
            CREATE FUNCTION check_or_insert_booking(p_client_ref_id uuid, p_rental_item_id uuid, p_user_id text,
                p_start_date date, p_end_date date, p_total_price numeric, p_stripe_session_id text)
            RETURNS BOOLEAN AS $$
            DECLARE
                fulfilled_status BOOLEAN;
            BEGIN
                -- Try to insert, do nothing if conflict
                INSERT INTO bookings (client_ref_id, rental_item_id, user_id, start_date, end_date, total_price, stripe_session_id)
                VALUES (p_client_ref_id, p_rental_item_id, p_user_id, p_start_date, p_end_date, p_total_price, p_stripe_session_id)
                ON CONFLICT (client_ref_id) DO NOTHING;

                -- Now fetch the row (whether newly inserted or pre-existing)
                SELECT status <> 'pending' INTO fulfilled_status
                FROM bookings
                WHERE client_ref_id = p_client_ref_id;

                RETURN fulfilled_status;
            END;
            $$ LANGUAGE plpgsql;""")
