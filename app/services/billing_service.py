"""
Billing service for Stripe checkout, credit top-ups and the customer portal.
"""
import logging
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from app.core import config
from app.core.tier_limits import TOPUP_TIERS
from app.db.models.user import User
from app.services.stripe_service import StripeGateway, StripeNotConfigured, get_price_details
from app.services.subscription_store import get_subscription_by_user_id

logger = logging.getLogger(__name__)


class BillingError(Exception):
    """Billing failure carrying the HTTP status to report."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _customer_id_for(db: Session, user: User) -> Optional[str]:
    subscription = get_subscription_by_user_id(db, user.id)
    if subscription and subscription.stripe_customer_id:
        return subscription.stripe_customer_id
    return user.stripe_customer_id


def get_or_create_customer(db: Session, gateway: StripeGateway, user: User) -> str:
    """Reuse the user's Stripe customer or create one and link it to the user."""
    customer_id = _customer_id_for(db, user)
    if customer_id:
        logger.info(f"Using existing Stripe customer: customer_id={customer_id}, user_id={user.id}")
        return customer_id

    customer_id = gateway.create_customer(user.email, user.id)
    user.stripe_customer_id = customer_id
    db.commit()
    logger.info(f"Linked Stripe customer: customer_id={customer_id}, user_id={user.id}")
    return customer_id


def create_subscription_checkout(
    db: Session,
    gateway: StripeGateway,
    user: User,
    price_id: Optional[str],
) -> str:
    """
    Create a hosted checkout session for a subscription price.

    Returns:
        Checkout session URL

    Raises:
        BillingError: 400 for a missing/unknown price or an existing active
            subscription, 500 for Stripe failures
    """
    if not price_id:
        raise BillingError("Price ID is required", 400)

    if not get_price_details(price_id):
        logger.warning(f"Checkout requested for unknown price: price_id={price_id}, user_id={user.id}")
        raise BillingError("Unknown price ID", 400)

    existing = get_subscription_by_user_id(db, user.id)
    if existing and existing.status == "active" and existing.stripe_subscription_id:
        logger.warning(f"User already has active subscription: user_id={user.id}, tier={existing.tier}")
        raise BillingError(
            "You already have an active subscription. Please cancel it first "
            "or use the Customer Portal to change plans.",
            400,
        )

    try:
        customer_id = get_or_create_customer(db, gateway, user)
        return gateway.create_subscription_checkout(
            customer_id=customer_id,
            price_id=price_id,
            user_id=user.id,
            success_url=f"{config.APP_URL}?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{config.APP_URL}?canceled=true",
        )
    except (stripe.StripeError, StripeNotConfigured) as e:
        logger.error(f"Stripe error creating checkout session: user_id={user.id}: {e}")
        raise BillingError(_stripe_message(e, "Failed to create checkout session"), 500) from e


def create_credit_topup_checkout(
    db: Session,
    gateway: StripeGateway,
    user: User,
    amount: Optional[float],
) -> str:
    """
    Create a one-time payment session that buys credits.

    Args:
        amount: Purchase amount in whole currency units (minimum MIN_TOPUP_AMOUNT)

    Returns:
        Checkout session URL
    """
    if not amount or amount < config.MIN_TOPUP_AMOUNT:
        logger.warning(f"Invalid top-up amount: user_id={user.id}, amount={amount}")
        raise BillingError(f"Minimum purchase amount is ${config.MIN_TOPUP_AMOUNT}", 400)

    subscription = get_subscription_by_user_id(db, user.id)
    if not subscription or subscription.tier not in TOPUP_TIERS or subscription.status != "active":
        raise BillingError(
            "Top-ups are only available to Pro users. Please upgrade to Pro first.",
            403,
        )

    credits = int(amount * config.CREDITS_PER_DOLLAR)
    unit_amount = int(round(amount * 100))  # Stripe uses cents

    try:
        customer_id = get_or_create_customer(db, gateway, user)
        return gateway.create_topup_checkout(
            customer_id=customer_id,
            user_id=user.id,
            unit_amount=unit_amount,
            credits=credits,
            product_name="Message Credits Top-Up",
            description=f"{credits:,} message credits (${amount:g})",
            success_url=f"{config.APP_URL}?credits_purchased=true&amount={credits}",
            cancel_url=f"{config.APP_URL}?credits_canceled=true",
        )
    except (stripe.StripeError, StripeNotConfigured) as e:
        logger.error(f"Stripe error creating top-up session: user_id={user.id}: {e}")
        raise BillingError(_stripe_message(e, "Failed to create checkout session"), 500) from e


def create_portal_session(db: Session, gateway: StripeGateway, user: User) -> str:
    """Create a hosted billing portal session for the user's Stripe customer."""
    customer_id = _customer_id_for(db, user)
    if not customer_id:
        raise BillingError("No Stripe customer found", 404)

    try:
        return gateway.create_portal_session(customer_id, return_url=config.APP_URL)
    except (stripe.StripeError, StripeNotConfigured) as e:
        logger.error(f"Stripe error creating portal session: user_id={user.id}: {e}")
        raise BillingError(_stripe_message(e, "Failed to create portal session"), 500) from e


def _stripe_message(error: Exception, default: str) -> str:
    message = getattr(error, "user_message", None) or str(error)
    return message or default
