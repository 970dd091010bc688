from datetime import date
from decimal import Decimal
import logging
import os
from uuid import uuid4
from flask import Flask, render_template, request, flash, redirect, g, url_for, jsonify, current_app, make_response
import secrets
from functools import wraps
from googleapiclient.errors import HttpError
from stripe import SignatureVerificationError
from flask_httpauth import HTTPBasicAuth
from flask_debugtoolbar import DebugToolbarExtension
from werkzeug.security import generate_password_hash, check_password_hash
from anacarlita.booking import database, stripe_integration, gmail, drive_integration, identity
from anacarlita.booking import booking_utils as util
from anacarlita.booking.availability import is_range_available, quote, available_dates, to_utc_date, utc_today
from anacarlita.booking.calendar import BookingCalendar
from anacarlita.booking.error_utils import DateParseError, FormValidationError, BookingValidationError, CheckoutError
from anacarlita.booking.format_utils import JINJA_FILTERS, format_currency
from anacarlita.booking.period import CATEGORIES, DateWindow, Event
logger = logging.getLogger(__name__)

# Stripe webhook shouldn't be over 8-10kb
MAX_WEBHOOK_CONTENT_LENGTH = 100 * 1024 # 100KB

SESSION_MAX_AGE = 60 * 60 * 24 * 5 # 5 days


def _catalog():
    return database.DatabasePersistence(current_app.config['DATABASE_URL'])

def _payments():
    return stripe_integration.StripeProcessor(current_app.config['DOMAIN'])

def _notifier():
    return gmail.GmailIntegration(current_app.config['BUSINESS_EMAIL'], current_app.config['NOTIFICATION_EMAIL'])

def _storage():
    return drive_integration.DriveIntegration(current_app.config['BUSINESS_EMAIL'], current_app.config['DRIVE_RENTAL_IMAGES_FOLDER'])

def _identity():
    return identity.FirebaseIdentity(current_app.config['FIREBASE_PROJECT_ID'])


def create_app():
    app = Flask(__name__)
    app.secret_key = os.environ.get('SECRET_KEY') or secrets.token_hex(32) #256 bit
    app.config['SECRET_KEY'] = app.secret_key
    production = os.environ.get('FLASK_ENV') == 'production'
    app.config['PRODUCTION'] = production
    if production:
        app.config['DOMAIN'] = os.environ.get('DOMAIN', 'https://www.anacarlita.com')
    else:
        app.config['DOMAIN'] = os.environ.get('DOMAIN', 'http://localhost:5003')
        app.config["DEBUG_TB_INTERCEPT_REDIRECTS"] = False  # Prevents redirect issues
    app.config['DATABASE_URL'] = os.environ.get('DATABASE_URL')
    app.config['BUSINESS_EMAIL'] = os.environ.get('BUSINESS_EMAIL', 'noreply@anacarlita.com')
    app.config['NOTIFICATION_EMAIL'] = os.environ.get('NOTIFICATION_EMAIL', 'events@anacarlita.com')
    app.config['STRIPE_WEBHOOK_SECRET'] = os.environ.get('STRIPE_WEBHOOK_SECRET', '')
    app.config['DRIVE_RENTAL_IMAGES_FOLDER'] = os.environ.get('DRIVE_RENTAL_IMAGES_FOLDER', '')
    app.config['FIREBASE_PROJECT_ID'] = os.environ.get('FIREBASE_PROJECT_ID', '')
    app.config['FIREBASE_API_KEY'] = os.environ.get('FIREBASE_API_KEY', '')
    app.config['FIREBASE_AUTH_DOMAIN'] = os.environ.get('FIREBASE_AUTH_DOMAIN', '')
    # Collaborators are built per request from these factories, tests swap them for fakes
    app.config['CATALOG_FACTORY'] = _catalog
    app.config['PAYMENTS_FACTORY'] = _payments
    app.config['NOTIFIER_FACTORY'] = _notifier
    app.config['STORAGE_FACTORY'] = _storage
    app.config['IDENTITY_FACTORY'] = _identity
    for name, template_filter in JINJA_FILTERS.items():
        app.add_template_filter(template_filter, name)
    return app

app = create_app()
# Set to make Flask debug toolbar work
if not app.config['PRODUCTION']:
    app.debug = True
auth = HTTPBasicAuth()


# Must set this in prod
prod_hash = os.getenv('HASH_ADMIN')

if prod_hash:
    users = {
        "admin": generate_password_hash(prod_hash)
    }
else: # For dev
    users = {
        "admin": generate_password_hash('secret')
    }

@auth.verify_password
def verify_password(username, password):
    if username in users and check_password_hash(users.get(username), password):
        return username

# Use decorator to create g.db instance within request context window for functions that require it
def instantiate_database(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.db = current_app.config['CATALOG_FACTORY']()
        return f(*args, **kwargs)
    return decorated_function

def current_user():
    """Claims of the signed-in user for this request, or None. Verified at most once per request."""
    if 'user' not in g:
        token = request.cookies.get(identity.SESSION_COOKIE)
        g.user = current_app.config['IDENTITY_FACTORY']().verify_session_token(token) if token else None
    return g.user

def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user() is None:
            return redirect(url_for('get_login', callbackUrl=request.path))
        return f(*args, **kwargs)
    return decorated_function

# Sign-in pages are only for signed-out visitors
def anonymous_only(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user() is not None:
            return redirect(url_for('get_profile'))
        return f(*args, **kwargs)
    return decorated_function

@app.context_processor
def inject_user():
    return {'user': current_user(), 'categories': CATEGORIES}

def _safe_callback(target):
    # Only same-site paths, to avoid an open redirect through callbackUrl
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return url_for('get_profile')

def _month_from_args(default: date):
    try:
        year = int(request.args.get('year', default.year))
        month = int(request.args.get('month', default.month))
    except ValueError:
        return default.year, default.month
    if not 1 <= month <= 12:
        return default.year, default.month
    return year, month

@app.route('/')
def home():
    return redirect('/index')

# Landing page
@app.route("/index")
def index():
    title = "AnaCarLita Events & Rentals"
    return render_template('index.html', title=title)

# Catering and event planning services, with the event request form
@app.route("/services")
def get_services():
    return render_template('services.html')

@app.route("/gallery")
def get_gallery():
    return render_template('gallery.html')

@app.route("/contact")
def get_contact():
    return render_template('contact.html')

@app.route('/submit-contact-form', methods=['POST'])
def submit_contact_form():
    try:
        form = util.validate_contact_form(request.form)
    except FormValidationError as e:
        for message in e.messages:
            flash(message, 'error')
        return redirect(url_for('get_contact'))

    current_app.config['NOTIFIER_FACTORY']().send_contact_form_notification(form)
    flash('Thanks for reaching out! We will get back to you soon.', 'success')
    return redirect(url_for('get_contact'))

@app.route('/event-request', methods=['POST'])
def submit_event_request():
    try:
        form = util.validate_event_request(request.form)
    except FormValidationError as e:
        for message in e.messages:
            flash(message, 'error')
        return redirect(url_for('get_services'))

    current_app.config['NOTIFIER_FACTORY']().send_event_request_notification(form)
    flash('Your event request has been sent. Our events team will contact you.', 'success')
    return redirect(url_for('get_services'))

@app.route("/events", methods=['GET'])
@instantiate_database
def get_events():
    year, month = _month_from_args(utc_today())
    booking_calendar = BookingCalendar(events=g.db.list_events())
    return render_template('events.html',
                           weeks=booking_calendar.month(year, month),
                           month_name=booking_calendar.month_name(year, month),
                           previous_month=booking_calendar.previous_month(year, month),
                           next_month=booking_calendar.next_month(year, month))

# Adding to the public calendar is limited to the business admin
@app.route("/events", methods=['POST'])
@auth.login_required
@instantiate_database
def add_event():
    try:
        data = util.validate_event(request.form)
    except FormValidationError as e:
        for message in e.messages:
            flash(message, 'error')
        return redirect(url_for('get_events'))

    event_id = g.db.insert_event(data)
    if not event_id:
        flash("Event could not be saved. Please try again.", "error")
        return redirect(url_for('get_events'))

    current_app.config['NOTIFIER_FACTORY']().send_event_notification(Event(id=event_id, **data))
    flash("Event added successfully!", "success")
    return redirect(url_for('get_events', year=data['date'].year, month=data['date'].month))

@app.route("/rentals", methods=['GET'])
@instantiate_database
def get_rentals():
    selected_category = request.args.get('category', 'all')
    search_term = request.args.get('q', '').strip()
    category = selected_category if selected_category in CATEGORIES else None
    items = g.db.list_rental_items(category=category, search=search_term or None)
    return render_template('rentals.html', items=items, selected_category=selected_category, search_term=search_term)

@app.route("/rentals/create", methods=['GET'])
@login_required
def get_create_rental():
    return render_template('rental_create.html')

@app.route("/rentals/create", methods=['POST'])
@login_required
@instantiate_database
def create_rental():
    try:
        listing = util.validate_rental_listing(request.form, request.files.getlist('images'))
    except FormValidationError as e:
        for message in e.messages:
            flash(message, 'error')
        return render_template('rental_create.html', form=request.form), 422

    user = current_user()
    try:
        image_urls = current_app.config['STORAGE_FACTORY']().upload_images(listing.pop('images'), user['uid'])
        product_id, price_id = current_app.config['PAYMENTS_FACTORY']().create_product(
            listing['title'], listing['description'], listing['price_per_day'], image_urls[0])
    except (HttpError, CheckoutError) as e:
        logger.error(f"Error creating rental listing: {e}")
        flash('Failed to create listing. Please try again.', 'error')
        return render_template('rental_create.html', form=request.form), 502

    listing.update(user_id=user['uid'], images=image_urls, stripe_product_id=product_id,
                   stripe_price_id=price_id, status='available')
    item_id = g.db.insert_rental_item(listing)
    if not item_id:
        flash('Failed to create listing. Please try again.', 'error')
        return render_template('rental_create.html', form=request.form), 500
    flash('Your listing has been created.', 'success')
    return redirect(url_for('get_rental', item_id=item_id))

@app.route("/rentals/<item_id>", methods=['GET'])
@instantiate_database
def get_rental(item_id):
    item = g.db.get_rental_item(item_id)
    if item is None:
        flash('Rental item not found', 'error')
        return redirect(url_for('get_rentals'))

    today = utc_today()
    window = item.availability
    bookable = available_dates(item, max(today, to_utc_date(window.start)), window.end) \
        if to_utc_date(window.end) >= today else []
    # Open the calendar on the first month that has something to book
    first_open = bookable[0] if bookable else today
    year, month = _month_from_args(first_open)
    booking_calendar = BookingCalendar(item=item, today=today)
    return render_template('rental_detail.html', item=item,
                           has_bookable_dates=bool(bookable),
                           weeks=booking_calendar.month(year, month),
                           month_name=booking_calendar.month_name(year, month),
                           previous_month=booking_calendar.previous_month(year, month),
                           next_month=booking_calendar.next_month(year, month))

@app.route("/rentals/<item_id>/quote", methods=['GET'])
@instantiate_database
def get_quote(item_id):
    item = g.db.get_rental_item(item_id)
    if item is None:
        return jsonify({"error": "Rental item not found"}), 404
    try:
        start = util.parse_calendar_date(request.args.get('start', ''))
        end = util.parse_calendar_date(request.args.get('end', ''))
    except DateParseError as e:
        return jsonify({"error": e.message}), 400

    rental_quote = quote(item, start, end)
    return jsonify({
        "available": is_range_available(item, DateWindow(start, end)),
        "duration_days": rental_quote.duration_days,
        "total_price": str(rental_quote.total_price),
        "display_total": format_currency(rental_quote.total_price),
    })

def authorize_booking(item, start: date, end: date, today: date = None):
    """
    Server-side check before any charge: the range must not start before today (UTC), every day in it must be
    bookable and the total must be positive. These are the same rules the calendar uses to disable tiles.

    Returns: the Quote to charge
    Raises: BookingValidationError
    """
    if min(start, end) < (today or utc_today()):
        raise BookingValidationError("Bookings cannot start in the past. Please choose upcoming dates.")
    if item.status != 'available':
        raise BookingValidationError("This item is not currently available for booking.")
    if not is_range_available(item, DateWindow(start, end)):
        raise BookingValidationError("Some of the selected dates are not available. Please choose another range.")
    rental_quote = quote(item, start, end)
    if rental_quote.total_price <= 0:
        raise BookingValidationError("This booking has no charge and cannot be checked out.")
    return rental_quote

@app.route("/rentals/<item_id>/checkout", methods=['POST'])
@login_required
@instantiate_database
def checkout_rental(item_id):
    item = g.db.get_rental_item(item_id)
    if item is None:
        flash('Rental item not found', 'error')
        return redirect(url_for('get_rentals'))
    try:
        start, end = sorted((util.parse_calendar_date(request.form.get('start_date', '')),
                             util.parse_calendar_date(request.form.get('end_date', ''))))
        rental_quote = authorize_booking(item, start, end)
    except (DateParseError, BookingValidationError) as e:
        flash(str(e), 'error')
        return redirect(url_for('get_rental', item_id=item_id))

    user = current_user()
    # Generate client reference id to attach
    ref_id = uuid4()
    try:
        session_id, session_url = current_app.config['PAYMENTS_FACTORY']().create_checkout_session(
            item, rental_quote, start, end, user.get('email'), user['uid'], ref_id)
    except CheckoutError as e:
        flash(str(e), 'error')
        return redirect(url_for('get_rental', item_id=item_id))

    # Store the pending booking so the payment attempt can be traced even if fulfillment never arrives
    g.db.check_or_insert_booking(str(ref_id), item.id, user['uid'], start, end, rental_quote.total_price, session_id)
    logger.info(f"Checkout session {session_id} created for item {item.id}, client_ref_id {ref_id}")
    return redirect(session_url, code=303)

@app.route('/webhook', methods=['POST'])
@instantiate_database
def stripe_webhook():
    content_length = request.headers.get('Content-Length', None)
    if content_length: # If not None
        content_length = int(content_length)
        if content_length > MAX_WEBHOOK_CONTENT_LENGTH:
            logger.error(f"Rejecting webhook request. Payload too large: {content_length}")
            return jsonify({"error": "Max content length exceeded"}), 413
    # If it is None, manually verify length
    total_size = 0
    payload_chunks = []
    for chunk in request.stream:
        total_size += len(chunk)
        if total_size > MAX_WEBHOOK_CONTENT_LENGTH:
            logger.error(f"Rejecting webhook request. Payload too large: {total_size}")
            return jsonify({"error": "Max content length exceeded"}), 413
        payload_chunks.append(chunk)

    # Join into payload since stream can only be read once
    payload = b"".join(payload_chunks).decode("utf-8", errors='replace')
    sig_header = request.headers.get('Stripe-Signature')

    try:
        logger.info("Constructing event via webhook")
        event = current_app.config['PAYMENTS_FACTORY']().construct_event(
            payload, sig_header, current_app.config['STRIPE_WEBHOOK_SECRET'])
    except ValueError:
        logger.error("Invalid webhook payload")
        return jsonify({"error": "Invalid payload"}), 400
    except SignatureVerificationError:
        logger.error("Invalid webhook signature")
        return jsonify({"error": "Invalid signature"}), 400

    if event["type"] in ["checkout.session.completed", "checkout.session.async_payment_succeeded"]:
        logger.info("Fulfilling checkout via webhook")
        fulfilled = fulfill_checkout(event["data"]["object"], g.db, current_app.config['NOTIFIER_FACTORY'])
        return jsonify({"status": "success", "fulfilled": fulfilled}), 200
    # Acknowledge everything else so Stripe stops retrying it
    logger.info(f"Ignoring webhook event type {event['type']}")
    return jsonify({"status": "ignored"}), 200

def fulfill_checkout(checkout_session, db, notifier_factory) -> bool:
    """
    Confirms the booking paid for by a completed checkout session and emails the renter.

    Safe to call more than once for the same session: the client_reference_id is the idempotency key.

    Returns: True if this call confirmed the booking
    """
    client_ref_id = checkout_session.get('client_reference_id')
    metadata = checkout_session.get('metadata') or {}
    if not all(key in metadata for key in ('rental_item_id', 'user_id', 'start_date', 'end_date')):
        logger.error(f"Checkout {client_ref_id} is missing booking metadata: {metadata}")
        return False
    if checkout_session.get('payment_status') == 'unpaid':
        logger.info(f"Checkout {client_ref_id} not paid yet. Skipping fulfillment")
        return False

    start = util.parse_calendar_date(metadata['start_date'])
    end = util.parse_calendar_date(metadata['end_date'])
    amount_paid = Decimal(checkout_session.get('amount_total') or 0) / 100
    already_fulfilled = db.check_or_insert_booking(client_ref_id, metadata['rental_item_id'], metadata['user_id'],
                                                   start, end, amount_paid, checkout_session.get('id'))
    if already_fulfilled:
        logger.info(f"Already fulfilled: {client_ref_id}. Skipping fulfillment")
        return False

    item = db.get_rental_item(metadata['rental_item_id'])
    if item is None or not is_range_available(item, DateWindow(start, end)):
        # Payment has been taken for dates that are gone, needs manual refund
        logger.error(f"Paid booking {client_ref_id} can no longer be confirmed for item {metadata['rental_item_id']}")
        return False

    booking = db.confirm_booking(client_ref_id)
    if booking is None:
        logger.error(f"Booking confirmation failed for client_ref_id: {client_ref_id}")
        return False

    customer_details = checkout_session.get('customer_details') or {}
    recipient = customer_details.get('email') or checkout_session.get('customer_email')
    if recipient:
        notifier_factory().send_booking_confirmation(booking, item.title, recipient)
    else:
        logger.error(f"No email to send booking confirmation to. client_ref_id: {client_ref_id}")
    return True

# Used to render confirmation after a successful checkout session
@app.route('/rentals/booking/success')
@instantiate_database
def checkout_success():
    session_id = request.args.get('session_id', '')
    if not session_id:
        return redirect(url_for('index'))
    try:
        checkout = current_app.config['PAYMENTS_FACTORY']().retrieve_session(session_id)
    except CheckoutError as e:
        flash(str(e), 'error')
        return redirect(url_for('index'))

    metadata = checkout.get('metadata') or {}
    item = g.db.get_rental_item(metadata.get('rental_item_id', ''))
    flash("Thanks for your booking! You'll receive an email with the details.", 'success')
    return render_template('booking_success.html',
                           item=item,
                           start_date=metadata.get('start_date'),
                           end_date=metadata.get('end_date'),
                           amount_paid=Decimal(checkout.get('amount_total') or 0) / 100,
                           paid=checkout.get('payment_status') != 'unpaid')

@app.route('/bookings')
@login_required
@instantiate_database
def get_bookings():
    bookings = g.db.list_bookings_for_user(current_user()['uid'])
    return render_template('bookings.html', bookings=bookings)

@app.route('/profile')
@login_required
def get_profile():
    return render_template('profile.html')

@app.route('/login')
@anonymous_only
def get_login():
    return render_template('login.html', mode='login', callback_url=request.args.get('callbackUrl', ''))

@app.route('/register')
@anonymous_only
def get_register():
    return render_template('login.html', mode='register', callback_url=request.args.get('callbackUrl', ''))

# The client SDK signs the user in and posts the resulting ID token here
@app.route('/sessionLogin', methods=['POST'])
def session_login():
    token = request.form.get('idToken', '')
    claims = current_app.config['IDENTITY_FACTORY']().verify_session_token(token)
    if claims is None:
        flash('Sign in failed. Please try again.', 'error')
        return render_template('login.html', mode='login', callback_url=request.form.get('callbackUrl', '')), 401
    response = make_response(redirect(_safe_callback(request.form.get('callbackUrl'))))
    response.set_cookie(identity.SESSION_COOKIE, token, max_age=SESSION_MAX_AGE, httponly=True,
                        secure=current_app.config['PRODUCTION'], samesite='Lax')
    return response

@app.route('/logout', methods=['POST'])
def logout():
    response = make_response(redirect(url_for('index')))
    response.delete_cookie(identity.SESSION_COOKIE)
    flash('You have been signed out.', 'success')
    return response

@app.errorhandler(404)
def error_handler(error):
    flash("An error occurred.", "error")
    return redirect("/index")

# Handle an invalid googleapiclient response which raises a custom HttpError
@app.errorhandler(HttpError)
def handle_bad_api_call(error):
    logger.error(f"Google API error: {error}")
    flash("An error occurred while contacting one of our services. Please re-try.", "error")
    return redirect(url_for('get_rentals'))

if __name__ == '__main__':
    # production
    if app.config['PRODUCTION']:
       app.run(debug=False)
    else:
       toolbar = DebugToolbarExtension(app)
       app.run(debug=True, port=5003)
