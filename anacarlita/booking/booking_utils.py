# Utility functions for parsing and validating input at the edges of the booking flow
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import re
import phonenumbers
from email_validator import validate_email, EmailNotValidError
from werkzeug.datastructures import MultiDict
from .availability import to_utc_date, to_utc_datetime
from .error_utils import DateParseError, FormValidationError
from .period import CATEGORIES

MAX_IMAGES = 5
MAX_FEATURES = 10
MAX_MESSAGE_LENGTH = 5000


def parse_instant(text: str) -> datetime:
    """
    Parse ISO-8601 date or datetime text into an aware UTC datetime.

    A bare date is midnight UTC. A datetime without an offset is taken to be UTC.
    Raises DateParseError for anything else.
    """
    if not text or not text.strip():
        raise DateParseError("A date is required.")
    raw = text.strip()
    try:
        if 'T' in raw or ' ' in raw:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        else:
            parsed = date.fromisoformat(raw)
    except ValueError:
        raise DateParseError(f"'{raw}' is not a valid date.")
    return to_utc_datetime(parsed)


def parse_calendar_date(text: str) -> date:
    """
    Parse ISO-8601 text into the UTC calendar date it falls on.
    Raises DateParseError if the text can't be parsed.
    """
    return to_utc_date(parse_instant(text))


def sanitize_phone(phone: str) -> str:
    # Maximum allowed input length to avoid oversized input injections.
    MAX_PHONE_LENGTH = 50

    phone = phone.strip()

    if len(phone) > MAX_PHONE_LENGTH:
        raise FormValidationError('Phone number input is too long')

    # Allowed characters: an optional leading '+', digits, spaces, hyphens, and parentheses.
    allowed_pattern = re.compile(r'^\+?[0-9\-\(\)\s]+$')
    if not allowed_pattern.fullmatch(phone):
        raise FormValidationError('Phone contains disallowed characters')

    try:
        # If the number starts with '+', it's likely an international format.
        if phone.startswith('+'):
            parsed_phone = phonenumbers.parse(phone, None)
        else:
            # Assume 'US' as the default region if no international prefix is provided.
            parsed_phone = phonenumbers.parse(phone, 'US')
    except phonenumbers.NumberParseException:
        raise FormValidationError('Invalid phone number format')

    if not phonenumbers.is_possible_number(parsed_phone) or not phonenumbers.is_valid_number(parsed_phone):
        raise FormValidationError('Phone number is not valid')

    # Canonical, international E.164 format.
    return phonenumbers.format_number(parsed_phone, phonenumbers.PhoneNumberFormat.E164)


def sanitize_email(email: str) -> str:
    email = email.strip()

    MAX_EMAIL_LENGTH = 254  # RFC 5321 / 5322 maximum
    if len(email) > MAX_EMAIL_LENGTH:
        raise FormValidationError('Email input is too long')

    # Preliminary check for a basic user@domain.tld shape.
    allowed_pattern = re.compile(
        r'^[A-Za-z0-9.!#$%&\'*+/=?^_`{|}~-]+'
        r'@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*'
        r'\.[A-Za-z]{2,}$'
    )
    if not allowed_pattern.fullmatch(email):
        raise FormValidationError('Email contains disallowed characters or is not formatted correctly')

    try:
        valid = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise FormValidationError(f'Invalid email format: {str(e)}')
    return valid.normalized


def sanitize_email_body(body: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Sanitizes the body text of an email message.

    The function:
      1. Trims leading and trailing whitespace.
      2. Enforces a maximum length (to avoid oversized inputs).
      3. Checks for disallowed control characters (allowing only common whitespace).
    """
    body = body.strip()

    if len(body) > max_length:
        raise FormValidationError(f'Message is too long. Max {max_length} characters.')

    # Allow: newline (LF, \n), carriage return (CR, \r), and tab (\t).
    allowed_control_codes = {9, 10, 13}
    for ch in body:
        if ord(ch) < 32 and ord(ch) not in allowed_control_codes:
            raise FormValidationError('Message contains disallowed characters')

    return body


def _collect(errors: list, check, value):
    # Run a sanitizer, recording its message instead of stopping at the first failure
    try:
        return check(value)
    except (FormValidationError, DateParseError) as e:
        errors.extend(getattr(e, 'messages', [str(e)]))
        return None


def _features_from(form: MultiDict) -> list:
    # The listing form posts features either as repeated fields or one comma separated hidden input
    features = []
    for value in form.getlist('features'):
        features.extend(part.strip() for part in value.split(','))
    return [feature for feature in features if feature]


def validate_rental_listing(form: MultiDict, files=()) -> dict:
    """
    Validate the create-listing form and its uploaded images.

    Returns a dict of cleaned values ready for the catalog store (images are returned untouched for upload).
    Raises FormValidationError carrying every message found.
    """
    errors = []
    title = form.get('title', '').strip()
    description = form.get('description', '').strip()
    category = form.get('category', '').strip()
    location = form.get('location', '').strip()

    if len(title) < 3:
        errors.append('Title must be at least 3 characters long')
    if len(description) < 10:
        errors.append('Description must be at least 10 characters long')

    price_per_day = None
    try:
        price_per_day = Decimal(form.get('pricePerDay', '').strip())
        if not price_per_day.is_finite() or price_per_day <= 0:
            raise InvalidOperation
    except InvalidOperation:
        price_per_day = None
        errors.append('Price must be a positive number')

    if category not in CATEGORIES:
        errors.append('Please select a category')
    if not location:
        errors.append('Location is required')

    start = end = None
    if not form.get('availabilityStart', '').strip():
        errors.append('Start date is required')
    else:
        start = _collect(errors, parse_calendar_date, form.get('availabilityStart'))
    if not form.get('availabilityEnd', '').strip():
        errors.append('End date is required')
    else:
        end = _collect(errors, parse_calendar_date, form.get('availabilityEnd'))
    if start and end and end < start:
        errors.append('End date must not be before the start date')

    features = _features_from(form)
    if len(features) > MAX_FEATURES:
        errors.append(f'A listing can have at most {MAX_FEATURES} features')

    images = [image for image in files if image and image.filename]
    if not images:
        errors.append('Please upload at least one image')
    elif len(images) > MAX_IMAGES:
        errors.append(f'You can upload a maximum of {MAX_IMAGES} images.')
    elif any(not (image.mimetype or '').startswith('image/') for image in images):
        errors.append('Only image files can be uploaded')

    if errors:
        raise FormValidationError(errors)

    return {
        'title': title,
        'description': description,
        'price_per_day': price_per_day,
        'category': category,
        'location': location,
        'availability_start': start,
        'availability_end': end,
        'features': features,
        'images': images,
    }


def validate_event_request(form: MultiDict) -> dict:
    """
    Catering/event request from the services page. Everything but location and notes is required.
    """
    errors = []
    name = form.get('name', '').strip()
    if not name:
        errors.append('Name is required')
    email = _collect(errors, sanitize_email, form.get('email', ''))
    phone = _collect(errors, sanitize_phone, form.get('phone', ''))
    event_type = form.get('eventType', '').strip()
    if not event_type:
        errors.append('Event type is required')
    event_date = _collect(errors, parse_calendar_date, form.get('eventDate', ''))
    event_time = form.get('eventTime', '').strip()
    if not event_time:
        errors.append('Event time is required')
    try:
        guest_count = int(form.get('guestCount', ''))
        if guest_count < 1:
            raise ValueError
    except ValueError:
        guest_count = None
        errors.append('Guest count must be at least 1')
    notes = _collect(errors, sanitize_email_body, form.get('additionalNotes', ''))

    if errors:
        raise FormValidationError(errors)

    return {
        'name': name,
        'email': email,
        'phone': phone,
        'event_type': event_type,
        'event_date': event_date,
        'event_time': event_time,
        'guest_count': guest_count,
        'location': form.get('location', '').strip(),
        'additional_notes': notes,
    }


def validate_event(form: MultiDict) -> dict:
    """Event added to the public calendar. Only title and date are required."""
    errors = []
    title = form.get('title', '').strip()
    if not title:
        errors.append('Event title is required')
    event_date = _collect(errors, parse_calendar_date, form.get('date', ''))
    contact_email = form.get('contactEmail', '').strip()
    if contact_email:
        contact_email = _collect(errors, sanitize_email, contact_email)
    contact_phone = form.get('contactPhone', '').strip()
    if contact_phone:
        contact_phone = _collect(errors, sanitize_phone, contact_phone)
    max_attendees = form.get('maxAttendees', '').strip()
    if max_attendees:
        try:
            max_attendees = int(max_attendees)
            if max_attendees < 1:
                raise ValueError
        except ValueError:
            errors.append('Max attendees must be a positive whole number')
    else:
        max_attendees = None

    if errors:
        raise FormValidationError(errors)

    return {
        'title': title,
        'date': event_date,
        'time': form.get('time', '').strip(),
        'description': form.get('description', '').strip(),
        'location': form.get('location', '').strip(),
        'organizer': form.get('organizer', '').strip(),
        'contact_email': contact_email or '',
        'contact_phone': contact_phone or '',
        'max_attendees': max_attendees,
    }


def validate_contact_form(form: MultiDict) -> dict:
    errors = []
    name = form.get('name', '').strip()
    subject = form.get('subject', '').strip()
    raw_message = form.get('message', '').strip()
    if not name or not form.get('email', '').strip() or not raw_message:
        errors.append('Name, email, and message are required')
    if not subject:
        errors.append('Subject is required')
    email = _collect(errors, sanitize_email, form.get('email', '')) if form.get('email', '').strip() else None
    message = _collect(errors, sanitize_email_body, raw_message)
    phone = form.get('phone', '').strip()
    if phone:
        phone = _collect(errors, sanitize_phone, phone)

    if errors:
        raise FormValidationError(errors)

    return {'name': name, 'email': email, 'phone': phone or '', 'subject': subject, 'message': message}

