import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import stripe

from .config import STRIPE_CURRENCY, STRIPE_SECRET_KEY
from .errors import PaymentError
from .pricing import to_minor_units

logger = logging.getLogger("checkout-service")


@dataclass
class PaymentIntent:
    payment_intent_id: str
    client_secret: str
    amount: int  # minor units
    status: str


class StripePayments:
    def __init__(self, api_key: str, currency: str = "usd"):
        self.api_key = api_key
        self.currency = currency

    def create_intent(self, amount: Decimal, metadata: Optional[dict] = None) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=self.currency,
                metadata=metadata or {},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.warning(f"Stripe intent creation failed: {e.user_message or e}")
            raise PaymentError(e.user_message or str(e)) from e
        return PaymentIntent(intent.id, intent.client_secret, intent.amount, intent.status)

    def retrieve_intent(self, payment_intent_id: str) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise PaymentError(e.user_message or str(e)) from e
        return PaymentIntent(intent.id, intent.client_secret, intent.amount, intent.status)

    def verify_captured(self, payment_intent_id: str, expected_total: Decimal) -> PaymentIntent:
        intent = self.retrieve_intent(payment_intent_id)
        if intent.status != "succeeded":
            raise PaymentError(f"Payment not completed (status: {intent.status})")
        if intent.amount != to_minor_units(expected_total):
            raise PaymentError("Payment amount does not match order total")
        return intent


def get_payments() -> Optional[StripePayments]:
    if not STRIPE_SECRET_KEY:
        return None
    return StripePayments(STRIPE_SECRET_KEY, STRIPE_CURRENCY)
