"""
Payment collaborator.

The reservation core only needs three capabilities from a payment provider:
create an intent for the browser to confirm, check that a charge succeeded,
and refund a charge. StripeGateway provides them with the stripe SDK.
When STRIPE_SECRET_KEY is not configured there is no gateway at all and the
paid booking path is disabled.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import stripe

from .config import settings
from . import pricing

logger = logging.getLogger("reservation_service.payments")


class PaymentGatewayError(Exception):
    """The provider rejected the call or could not be reached."""


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str


class PaymentGateway(Protocol):
    def create_intent(self, amount: Decimal, currency: str, metadata: dict) -> PaymentIntent:
        ...

    def verify_succeeded(self, payment_intent_id: str) -> bool:
        ...

    def refund(self, payment_intent_id: str) -> str:
        ...


def to_minor_units(amount) -> int:
    """Stripe takes amounts in cents."""
    return int(pricing.to_money(amount) * 100)


class StripeGateway:
    def __init__(self, api_key: str, publishable_key: str | None = None):
        self.api_key = api_key
        self.publishable_key = publishable_key

    def create_intent(self, amount: Decimal, currency: str, metadata: dict) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=to_minor_units(amount),
                currency=currency.lower(),
                # Stripe metadata values must be strings
                metadata={key: str(value) for key, value in (metadata or {}).items()},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create payment intent: {e}")
            raise PaymentGatewayError(str(e)) from e
        logger.info(f"Created payment intent {intent.id} for {amount} {currency}")
        return PaymentIntent(id=intent.id, client_secret=intent.client_secret)

    def verify_succeeded(self, payment_intent_id: str) -> bool:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve payment intent {payment_intent_id}: {e}")
            raise PaymentGatewayError(str(e)) from e
        return intent.status == "succeeded"

    def refund(self, payment_intent_id: str) -> str:
        try:
            refund = stripe.Refund.create(api_key=self.api_key, payment_intent=payment_intent_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to refund payment intent {payment_intent_id}: {e}")
            raise PaymentGatewayError(str(e)) from e
        logger.info(f"Refunded payment intent {payment_intent_id} (refund {refund.id})")
        return refund.id


# Global gateway instance, built on first use
gateway: StripeGateway | None = None


def get_payment_gateway() -> PaymentGateway | None:
    """
    FastAPI dependency. Returns None when payments are not configured.
    """
    global gateway
    if not settings.STRIPE_SECRET_KEY:
        return None
    if gateway is None:
        gateway = StripeGateway(settings.STRIPE_SECRET_KEY, settings.STRIPE_PUBLISHABLE_KEY)
        logger.info("Stripe payment gateway initialized.")
    return gateway
