# Display formatting, registered as Jinja filters in app.py
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
import logging
import phonenumbers

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')


def format_currency(amount) -> str:
    """$1,234.50 style. This is the only place an amount is rounded for display."""
    value = Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)
    sign = '-' if value < 0 else ''
    return f"{sign}${abs(value):,.2f}"


def _as_datetime(value):
    if isinstance(value, (date, datetime)):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def format_date(value) -> str:
    try:
        value = _as_datetime(value)
    except ValueError:
        logger.error(f"Error formatting date: {value}")
        return str(value)
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def format_datetime(value) -> str:
    try:
        value = _as_datetime(value)
    except ValueError:
        logger.error(f"Error formatting date and time: {value}")
        return str(value)
    if not isinstance(value, datetime):
        return format_date(value)
    hour = value.hour % 12 or 12
    return f"{format_date(value)} {hour}:{value.minute:02d} {value.strftime('%p')}"


def format_phone_number(phone_number: str) -> str:
    # Format: (XXX) XXX-XXXX for US numbers, anything else is returned unchanged
    try:
        parsed = phonenumbers.parse(phone_number, 'US')
    except phonenumbers.NumberParseException:
        return phone_number
    if parsed.country_code != 1 or not phonenumbers.is_possible_number(parsed):
        return phone_number
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.NATIONAL)


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + '...'


JINJA_FILTERS = {
    'currency': format_currency,
    'date': format_date,
    'datetime': format_datetime,
    'phone': format_phone_number,
    'truncate_text': truncate_text,
}
