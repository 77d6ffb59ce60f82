"""
Stripe service for checkout, billing portal, and webhook verification.

All Stripe API access goes through StripeGateway, which is built once at
application startup and handed to routes and services as a dependency.
"""
import json
import logging
from typing import Any, Dict, List, NamedTuple, Optional

import stripe

from app.core import config
from app.core.tier_limits import (
    ANNUAL, MONTHLY, PRO, POWER, BUSINESS_STARTER, BUSINESS_PRO,
)

logger = logging.getLogger(__name__)


class StripeNotConfigured(ValueError):
    """STRIPE_SECRET_KEY is missing."""


class WebhookSecretMissing(ValueError):
    """STRIPE_WEBHOOK_SECRET is missing (server misconfiguration)."""


class InvalidWebhookSignature(ValueError):
    """Webhook signature or payload failed verification."""


class PriceDetails(NamedTuple):
    tier: str
    interval: str


def _price_table() -> Dict[str, PriceDetails]:
    """Build the price ID -> (tier, interval) table from configuration."""
    entries = [
        (config.STRIPE_PRICE_PRO_MONTHLY, PriceDetails(PRO, MONTHLY)),
        (config.STRIPE_PRICE_PRO_ANNUAL, PriceDetails(PRO, ANNUAL)),
        (config.STRIPE_PRICE_POWER_MONTHLY, PriceDetails(POWER, MONTHLY)),
        (config.STRIPE_PRICE_POWER_ANNUAL, PriceDetails(POWER, ANNUAL)),
        (config.STRIPE_PRICE_BUSINESS_STARTER_MONTHLY, PriceDetails(BUSINESS_STARTER, MONTHLY)),
        (config.STRIPE_PRICE_BUSINESS_STARTER_ANNUAL, PriceDetails(BUSINESS_STARTER, ANNUAL)),
        (config.STRIPE_PRICE_BUSINESS_PRO_MONTHLY, PriceDetails(BUSINESS_PRO, MONTHLY)),
        (config.STRIPE_PRICE_BUSINESS_PRO_ANNUAL, PriceDetails(BUSINESS_PRO, ANNUAL)),
    ]
    # Unset variables are empty strings and must never match
    return {price_id: details for price_id, details in entries if price_id}


def get_price_details(price_id: Optional[str]) -> Optional[PriceDetails]:
    """Get tier and billing interval for a Stripe price ID."""
    if not price_id:
        return None
    return _price_table().get(price_id)


def to_plain_dict(obj: Any) -> Dict[str, Any]:
    """Convert a StripeObject (or plain dict) into nested plain dicts."""
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict_recursive", None) or getattr(obj, "to_dict", None)
    if to_dict is not None:
        return to_dict()
    return dict(obj)


class StripeGateway:
    """
    Thin wrapper around the Stripe API.

    Holds the API key and webhook secret explicitly instead of relying on the
    module-level stripe.api_key.
    """

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str],
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance
        if not api_key:
            logger.warning("STRIPE_SECRET_KEY not configured - Stripe features disabled")

    @classmethod
    def from_config(cls) -> "StripeGateway":
        return cls(api_key=config.STRIPE_SECRET_KEY, webhook_secret=config.STRIPE_WEBHOOK_SECRET)

    def _require_key(self) -> str:
        if not self.api_key:
            raise StripeNotConfigured("Stripe not configured - STRIPE_SECRET_KEY required")
        return self.api_key

    # -- webhooks ---------------------------------------------------------

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify the Stripe-Signature header, then parse the event body.

        Raises:
            WebhookSecretMissing: If no webhook secret is configured
            InvalidWebhookSignature: If the signature or payload is invalid
        """
        if not self.webhook_secret:
            raise WebhookSecretMissing("STRIPE_WEBHOOK_SECRET not configured")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise InvalidWebhookSignature(f"Invalid signature: {e}") from e
        except UnicodeDecodeError as e:
            raise InvalidWebhookSignature(f"Invalid webhook payload: {e}") from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise InvalidWebhookSignature(f"Invalid webhook payload: {e}") from e

        logger.info(f"Verified webhook event: {event.get('type')}, id={event.get('id')}")
        return event

    # -- customers and sessions -------------------------------------------

    def create_customer(self, email: Optional[str], user_id: int) -> str:
        customer = stripe.Customer.create(
            email=email or None,
            metadata={"userId": str(user_id)},
            api_key=self._require_key(),
        )
        logger.info(f"Created Stripe customer: customer_id={customer.id}, user_id={user_id}")
        return customer.id

    def create_subscription_checkout(
        self,
        customer_id: str,
        price_id: str,
        user_id: int,
        success_url: str,
        cancel_url: str,
    ) -> str:
        session = stripe.checkout.Session.create(
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"userId": str(user_id)},
            api_key=self._require_key(),
        )
        logger.info(f"Created checkout session: session_id={session.id}, user_id={user_id}")
        return session.url

    def create_topup_checkout(
        self,
        customer_id: str,
        user_id: int,
        unit_amount: int,
        credits: int,
        product_name: str,
        description: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        session = stripe.checkout.Session.create(
            customer=customer_id,
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": config.TOPUP_CURRENCY,
                    "product_data": {"name": product_name, "description": description},
                    "unit_amount": unit_amount,
                },
                "quantity": 1,
            }],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                "userId": str(user_id),
                "credits": str(credits),
                "type": "credit_topup",
            },
            api_key=self._require_key(),
        )
        logger.info(f"Created top-up session: session_id={session.id}, user_id={user_id}, credits={credits}")
        return session.url

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
            api_key=self._require_key(),
        )
        logger.info(f"Created billing portal session for customer_id={customer_id}")
        return session.url

    # -- lookups ----------------------------------------------------------

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._require_key())
        return to_plain_dict(subscription)

    def retrieve_product_metadata(self, price_id: str) -> Dict[str, Any]:
        """Get the metadata of the product behind a price."""
        price = to_plain_dict(stripe.Price.retrieve(price_id, expand=["product"], api_key=self._require_key()))
        product = price.get("product")
        if not isinstance(product, dict):
            return {}
        return dict(product.get("metadata") or {})


def first_subscription_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items: List[Dict[str, Any]] = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_price_id(subscription: Dict[str, Any]) -> Optional[str]:
    """Price ID of the first subscription item."""
    return (first_subscription_item(subscription).get("price") or {}).get("id")


def subscription_period(subscription: Dict[str, Any]) -> tuple:
    """
    (current_period_start, current_period_end) as unix timestamps.

    Newer API versions only report period bounds on subscription items.
    """
    item = first_subscription_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return start, end
