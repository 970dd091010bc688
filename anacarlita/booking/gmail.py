from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import base64
from pathlib import Path
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from google.oauth2 import service_account
from markupsafe import escape
import logging
import os
from .format_utils import format_currency, format_date
from .period import Booking, Event

logger = logging.getLogger(__name__)


def _field(label: str, value) -> str:
    # Optional fields are left out of the email entirely when empty
    if value in (None, ''):
        return ''
    return f"<p><strong>{label}:</strong> {escape(value)}</p>"


class GmailIntegration:
    """
    Sends the site's notification emails through the Gmail API as the business account.

    Sending is fire-and-forget: an API failure is logged and None is returned instead of raising.
    """

    SCOPES = ['https://mail.google.com/']

    def __init__(self, business_email: str, notification_email: str, service=None):
        self.business_email = business_email
        self.notification_email = notification_email
        self.service = service or self._authorize()

    @staticmethod
    def _find_api_key() -> str:
        """
        Since Credentials.from_service_acccount_file() takes file path, find the file path to either the environment variable in prod or local dev file.
        """
        api_key_path = os.getenv('SERVICE_ACCOUNT_FILE')
        # If none, then get local development key
        if not api_key_path:
            api_key_path = Path("./anacarlita/booking/service-account.json")
        return api_key_path

    def _authorize(self):
        creds = service_account.Credentials.from_service_account_file(
                self._find_api_key(),
                scopes=self.SCOPES,
                subject=self.business_email  # Impersonating the business email
            )
        return build("gmail", "v1", credentials=creds)

    def create_message(self, to, from_email, subject, html_body, reply_to=None):
        message = MIMEMultipart()
        message['to'] = to
        message['from'] = from_email
        message['subject'] = subject
        if reply_to:
            message['reply-to'] = reply_to

        message.attach(MIMEText(html_body, 'html'))

        # Encode to base64 for Gmail API
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode()
        return {'raw': raw}

    def send(self, to: str, subject: str, html_body: str, reply_to: str = None):
        try:
            message = self.create_message(to, self.business_email, subject, html_body, reply_to)
            sent = self.service.users().messages().send(userId='me', body=message).execute()
        except HttpError as e:
            logger.error(f'An error occurred sending "{subject}": {e}')
            sent = None
        return sent

    def send_event_notification(self, event: Event):
        body = (
            "<h1>New Event Added to Calendar</h1>"
            + _field('Title', event.title)
            + _field('Date', format_date(event.date))
            + _field('Time', event.time)
            + _field('Description', event.description)
            + _field('Location', event.location)
            + _field('Organizer', event.organizer)
            + _field('Contact Email', event.contact_email)
            + _field('Contact Phone', event.contact_phone)
        )
        return self.send(self.notification_email, f"New Event: {event.title}", body)

    def send_booking_confirmation(self, booking: Booking, item_title: str, recipient_email: str):
        body = (
            "<h1>Your Booking is Confirmed!</h1>"
            "<p>Thank you for your booking with AnaCarLita Events &amp; Rentals.</p>"
            + _field('Booking ID', booking.id)
            + _field('Item', item_title)
            + _field('Start Date', format_date(booking.start_date))
            + _field('End Date', format_date(booking.end_date))
            + _field('Total Price', format_currency(booking.total_price))
            + _field('Notes', booking.notes)
            + "<p>If you have any questions, please don't hesitate to contact us.</p>"
        )
        return self.send(recipient_email, 'Booking Confirmation', body)

    def send_contact_form_notification(self, form: dict):
        body = (
            "<h1>New Contact Form Submission</h1>"
            + _field('Name', form['name'])
            + _field('Email', form['email'])
            + _field('Phone', form.get('phone'))
            + _field('Subject', form['subject'])
            + "<p><strong>Message:</strong></p>"
            + f"<p>{escape(form['message'])}</p>"
        )
        return self.send(self.notification_email, f"Contact Form: {form['subject']}", body, reply_to=form['email'])

    def send_event_request_notification(self, form: dict):
        body = (
            "<h1>New Event Request</h1>"
            + _field('Name', form['name'])
            + _field('Email', form['email'])
            + _field('Phone', form['phone'])
            + _field('Event Type', form['event_type'])
            + _field('Event Date', format_date(form['event_date']))
            + _field('Event Time', form['event_time'])
            + _field('Guest Count', form['guest_count'])
            + _field('Location', form.get('location'))
            + _field('Additional Notes', form.get('additional_notes'))
        )
        return self.send(self.notification_email, f"Event Request: {form['event_type']}", body, reply_to=form['email'])
