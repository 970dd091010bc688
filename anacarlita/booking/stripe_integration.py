from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Tuple
import os
from pathlib import Path
import json
import logging
import stripe
from .error_utils import CheckoutError
from .period import Quote, RentalItem

logger = logging.getLogger(__name__)

CURRENCY = 'usd'


def to_minor_units(amount) -> int:
    """Decimal dollars to integer cents, rounding half up. Stripe only accepts whole cents."""
    cents = (Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return int(cents)


class StripeProcessor:

    def __init__(self, domain: str, api_key: Optional[str] = None):
        # Set domain for either prod or local dev
        self._domain = domain.rstrip('/')
        stripe.api_key = api_key or self._find_api_key()

    @staticmethod
    def _find_api_key() -> str:
        api_key = os.getenv('STRIPE_API_KEY')
        # If none, then get local development key
        if not api_key:
            try:
                api_key_path = Path("./anacarlita/booking/stripe_test_api_key.json")
                with open(api_key_path, 'r') as file:
                    data = json.load(file)
                api_key = data.get("STRIPE_API_KEY")
                if not api_key:
                    raise ValueError(f"ERROR: STRIPE_API_KEY not found in {api_key_path}")
            except FileNotFoundError:
                raise FileNotFoundError("ERROR: API key path not found!")
            except json.JSONDecodeError:
                raise ValueError("ERROR: Invalid JSON format in API key file!")
        return api_key

    def create_product(self, title: str, description: str, price_per_day, image_url: Optional[str] = None) -> Tuple[str, str]:
        """
        Creates the Stripe product for a new listing with its per-day price attached.

        Returns: (product_id, price_id)
        """
        try:
            product = stripe.Product.create(
                name=title,
                description=description,
                images=[image_url] if image_url else [],
            )
            price = stripe.Price.create(
                product=product.id,
                unit_amount=to_minor_units(price_per_day),
                currency=CURRENCY,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe product creation failed: {e}")
            raise CheckoutError(f"Could not create payment product: {e.user_message or e}")
        return product.id, price.id

    def create_checkout_session(self, item: RentalItem, quote: Quote, start: date, end: date,
                                customer_email: Optional[str], user_id: str, ref_id) -> Tuple[str, str]:
        """
        Creates a one-off checkout session charging the server-computed quote for the booked range.

        The charge amount comes only from the quote, never from client input.
        Returns: (session_id, url to redirect the customer to)
        """
        if quote.total_price <= 0:
            raise CheckoutError("Refusing to create a checkout session for a zero total.")

        metadata: Dict[str, str] = {
            "rental_item_id": item.id,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "user_id": user_id,
            "duration_days": str(quote.duration_days),
        }
        price_data = {
            'currency': CURRENCY,
            'unit_amount': to_minor_units(quote.total_price),
        }
        if item.stripe_product_id:
            price_data['product'] = item.stripe_product_id
        else:
            price_data['product_data'] = {'name': item.title or f"Rental {item.id}"}

        try:
            session = stripe.checkout.Session.create(
                mode='payment',
                line_items=[{'price_data': price_data, 'quantity': 1}],
                success_url=self._domain + '/rentals/booking/success?session_id={CHECKOUT_SESSION_ID}',
                cancel_url=f"{self._domain}/rentals/{item.id}",
                customer_email=customer_email or None,
                metadata=metadata,
                client_reference_id=str(ref_id),
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise CheckoutError(f"Could not start checkout: {e.user_message or e}")
        return session.id, session.url

    @staticmethod
    def construct_event(payload: str, sig_header: str, secret: str):
        # Raises ValueError for a bad payload and stripe.SignatureVerificationError for a bad signature
        return stripe.Webhook.construct_event(payload, sig_header, secret)

    @staticmethod
    def retrieve_session(session_id: str):
        try:
            return stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session lookup failed for {session_id}: {e}")
            raise CheckoutError(f"Could not find checkout session: {e.user_message or e}")
