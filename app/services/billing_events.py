"""
Stripe webhook event processing.

Events are delivered at least once and possibly out of order. Processing is
made idempotent by the stripe_events log (an event id is applied once) and by
refusing subscription snapshots older than the newest one already stored.

Soft failures the processor cannot fix by redelivering (unknown price,
customer not yet linked to a user) are logged and the event is acknowledged.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import stripe
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.logging_config import sanitize_log_data
from app.core.tier_limits import is_business_tier
from app.db.models.stripe_event import StripeEvent
from app.db.models.subscription import Subscription
from app.db.models.user import User
from app.services.credit_ledger import (
    LEGACY_CREDITS_KEY,
    CreditState,
    apply_subscription_credit,
    apply_top_up,
    coerce_int,
    read_available_credits,
)
from app.services.stripe_service import (
    StripeGateway,
    StripeNotConfigured,
    get_price_details,
    subscription_period,
    subscription_price_id,
)
from app.services.subscription_store import (
    SubscriptionRecord,
    free_tier_record,
    from_timestamp,
    get_subscription_by_user_id,
    to_utc,
    upsert_subscription,
)

logger = logging.getLogger(__name__)

PAID_STATUSES = {"paid", "no_payment_required"}

# Stripe never reactivates a subscription in these states
TERMINAL_STATUSES = {"canceled", "incomplete_expired"}


def _object_id(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _find_user_by_customer(db: Session, customer_id: Optional[str]) -> Optional[User]:
    if not customer_id:
        return None
    user = db.query(User).filter(User.stripe_customer_id == customer_id).first()
    if user:
        return user
    subscription = db.query(Subscription).filter(Subscription.stripe_customer_id == customer_id).first()
    if subscription:
        return db.query(User).filter(User.id == subscription.user_id).first()
    return None


def _is_stale(existing: Optional[Subscription], event_created: Optional[int]) -> bool:
    if existing is None or existing.last_event_at is None or event_created is None:
        return False
    return event_created < existing.last_event_at


def _newest(existing: Optional[Subscription], event_created: Optional[int]) -> Optional[int]:
    stamps = [s for s in (existing.last_event_at if existing else None, event_created) if s is not None]
    return max(stamps) if stamps else None


def _needs_credit_reset(existing: Optional[Subscription], tier: str, period_end: Optional[datetime]) -> bool:
    """Credits are recomputed on a tier change, a new billing period, or when no credit state exists."""
    if existing is None or existing.tier != tier:
        return True
    if read_available_credits(existing) is None:
        return True
    reference = to_utc(existing.credits_reset_at or existing.current_period_end)
    return bool(period_end and reference and period_end > reference)


def _kept_credit_state(existing: Subscription, metadata: Dict[str, Any]) -> CreditState:
    kept = dict(metadata)
    balance = existing.available_credits
    if balance is None:
        balance = coerce_int((existing.extra_metadata or {}).get(LEGACY_CREDITS_KEY))
    if balance is not None:
        kept[LEGACY_CREDITS_KEY] = balance
    return CreditState(
        existing.available_credits,
        existing.total_credits,
        to_utc(existing.credits_reset_at),
        kept,
    )


def _update_account_class(db: Session, user: User, tier: str) -> None:
    user_type = "business" if is_business_tier(tier) else "individual"
    if user.user_type == user_type:
        return
    try:
        user.user_type = user_type
        db.commit()
        logger.info(f"Updated user type: user_id={user.id}, user_type={user_type}")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating user type: user_id={user.id}: {e}")


def _product_metadata(gateway: StripeGateway, price_id: str) -> Dict[str, Any]:
    try:
        metadata = gateway.retrieve_product_metadata(price_id)
        logger.debug(f"Stripe product metadata for price_id={price_id}: {sanitize_log_data(metadata)}")
        return metadata
    except (stripe.StripeError, StripeNotConfigured) as e:
        logger.error(f"Error fetching Stripe product metadata for price_id={price_id}: {e}")
        return {}


def handle_subscription_update(
    db: Session,
    gateway: StripeGateway,
    subscription_data: Dict[str, Any],
    event_created: Optional[int] = None,
    authoritative: bool = False,
) -> Optional[Subscription]:
    """
    Mirror a Stripe subscription object into the user's subscription row.

    Canceled or expired snapshots take the deletion path and reset the row
    to the free tier.

    Args:
        db: Database session
        gateway: Stripe gateway
        subscription_data: Stripe subscription object
        event_created: Stripe "created" timestamp of the delivering event
        authoritative: Snapshot was just fetched from Stripe and skips the staleness check

    Returns:
        The stored subscription, or None when nothing could be applied
    """
    if subscription_data.get("status") in TERMINAL_STATUSES:
        return handle_subscription_deleted(db, gateway, subscription_data, event_created)

    customer_id = _object_id(subscription_data.get("customer"))
    subscription_id = subscription_data.get("id")
    price_id = subscription_price_id(subscription_data)

    if not price_id:
        logger.error(f"No price ID found in subscription {subscription_id}")
        return None

    user = _find_user_by_customer(db, customer_id)
    if not user:
        logger.error(
            f"No user found for Stripe customer {customer_id}; "
            f"the customer is not linked in our database yet"
        )
        return None

    price_details = get_price_details(price_id)
    if not price_details:
        logger.error(f"Unknown price ID: {price_id}; check the STRIPE_PRICE_* environment variables")
        return None

    existing = get_subscription_by_user_id(db, user.id)
    if not authoritative and _is_stale(existing, event_created):
        logger.warning(
            f"Ignoring stale subscription snapshot: user_id={user.id}, subscription_id={subscription_id}, "
            f"event_created={event_created}, last_event_at={existing.last_event_at}"
        )
        return existing

    _update_account_class(db, user, price_details.tier)
    metadata = _product_metadata(gateway, price_id)

    period_start, period_end = subscription_period(subscription_data)
    period_start = from_timestamp(period_start)
    period_end = from_timestamp(period_end)

    if _needs_credit_reset(existing, price_details.tier, period_end):
        state = apply_subscription_credit(
            db,
            user.id,
            price_details.tier,
            metadata,
            period_end,
            balance_before=read_available_credits(existing),
        )
    else:
        state = _kept_credit_state(existing, metadata)

    record = SubscriptionRecord(
        user_id=user.id,
        tier=price_details.tier,
        billing_interval=price_details.interval,
        status=subscription_data.get("status") or "incomplete",
        stripe_customer_id=customer_id,
        stripe_subscription_id=subscription_id,
        stripe_price_id=price_id,
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=bool(subscription_data.get("cancel_at_period_end")),
        available_credits=state.available_credits,
        total_credits=state.total_credits,
        credits_reset_at=state.credits_reset_at,
        metadata=state.metadata,
        last_event_at=_newest(existing, event_created),
    )
    return upsert_subscription(db, record)


def handle_subscription_deleted(
    db: Session,
    gateway: StripeGateway,
    subscription_data: Dict[str, Any],
    event_created: Optional[int] = None,
) -> Optional[Subscription]:
    """Reset the user's subscription to the free tier."""
    customer_id = _object_id(subscription_data.get("customer"))
    subscription_id = subscription_data.get("id")

    user = _find_user_by_customer(db, customer_id)
    if not user:
        logger.error(f"No user found for Stripe customer {customer_id}")
        return None

    existing = get_subscription_by_user_id(db, user.id)
    if existing and existing.stripe_subscription_id and existing.stripe_subscription_id != subscription_id:
        logger.warning(
            f"Ignoring deletion of superseded subscription {subscription_id}: "
            f"user_id={user.id} is on {existing.stripe_subscription_id}"
        )
        return existing
    if _is_stale(existing, event_created):
        logger.warning(f"Ignoring stale deletion: user_id={user.id}, subscription_id={subscription_id}")
        return existing

    record = free_tier_record(user.id, status="canceled", last_event_at=_newest(existing, event_created))
    subscription = upsert_subscription(db, record)
    logger.info(f"Subscription deleted: user_id={user.id}, downgraded to free, subscription_id={subscription_id}")
    return subscription


def handle_credit_top_up(db: Session, session_data: Dict[str, Any]) -> Optional[int]:
    """Add the credits carried in a paid top-up checkout session."""
    metadata = session_data.get("metadata") or {}
    user_id = coerce_int(metadata.get("userId"))
    credits = coerce_int(metadata.get("credits"))
    session_id = session_data.get("id")

    if not user_id or not credits or credits <= 0:
        logger.error(f"Top-up session {session_id} is missing required metadata: userId={user_id}, credits={credits}")
        return None

    payment_status = session_data.get("payment_status")
    if payment_status is not None and payment_status not in PAID_STATUSES:
        logger.info(f"Top-up session {session_id} not paid yet (payment_status={payment_status})")
        return None

    if not get_subscription_by_user_id(db, user_id):
        logger.error(f"No subscription found for user {user_id}; top-up session {session_id} not applied")
        return None

    return apply_top_up(db, user_id, credits, source_id=session_id)


def handle_checkout_completed(
    db: Session,
    gateway: StripeGateway,
    session_data: Dict[str, Any],
    event_created: Optional[int] = None,
):
    mode = session_data.get("mode")
    metadata = session_data.get("metadata") or {}
    subscription_id = _object_id(session_data.get("subscription"))

    logger.info(
        f"Checkout session completed: session_id={session_data.get('id')}, "
        f"customer={session_data.get('customer')}, mode={mode}"
    )

    if mode == "subscription" and subscription_id:
        subscription = gateway.retrieve_subscription(subscription_id)
        return handle_subscription_update(db, gateway, subscription, event_created, authoritative=True)

    if mode == "payment" and metadata.get("type") == "credit_topup":
        return handle_credit_top_up(db, session_data)

    logger.info(f"Checkout session {session_data.get('id')} needs no billing changes")
    return None


def handle_invoice_payment_failed(
    db: Session,
    gateway: StripeGateway,
    invoice_data: Dict[str, Any],
    event_created: Optional[int] = None,
) -> Optional[Subscription]:
    """Re-sync the subscription so its local status follows Stripe (e.g. past_due)."""
    subscription_id = _object_id(invoice_data.get("subscription"))
    if not subscription_id:
        # Newer API versions nest the subscription under the invoice parent
        details = (invoice_data.get("parent") or {}).get("subscription_details") or {}
        subscription_id = _object_id(details.get("subscription"))

    if not subscription_id:
        logger.warning(f"invoice.payment_failed: no subscription on invoice {invoice_data.get('id')}")
        return None

    subscription = gateway.retrieve_subscription(subscription_id)
    return handle_subscription_update(db, gateway, subscription, event_created, authoritative=True)


EVENT_HANDLERS: Dict[str, Callable] = {
    "checkout.session.completed": handle_checkout_completed,
    "checkout.session.async_payment_succeeded": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_update,
    "customer.subscription.updated": handle_subscription_update,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


def _claim_event(db: Session, event_id: str, event_type: str) -> Optional[StripeEvent]:
    """Register an event for processing; None when it was already processed or is in flight."""
    existing = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if existing:
        if existing.processed:
            logger.info(f"Skipping already processed event: {event_type}, id={event_id}")
            return None
        logger.info(f"Retrying previously failed event: {event_type}, id={event_id}")
        return existing

    stripe_event = StripeEvent(stripe_event_id=event_id, event_type=event_type, processed=False)
    db.add(stripe_event)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(f"Event already being processed: {event_type}, id={event_id}")
        return None
    return stripe_event


def _mark_event(db: Session, event_id: str, error_message: Optional[str] = None) -> None:
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if not stripe_event:
        return
    if error_message:
        stripe_event.error_message = error_message[:2000]
    else:
        stripe_event.processed = True
        stripe_event.processed_at = datetime.now(timezone.utc)
        stripe_event.error_message = None
    db.commit()


def process_event(db: Session, gateway: StripeGateway, event: Dict[str, Any]) -> str:
    """
    Apply a verified Stripe event.

    Returns:
        "processed", "ignored" (unhandled type) or "duplicate"

    Raises:
        Any processing error, after recording it on the event log, so the
        webhook answers with a failure and Stripe redelivers.
    """
    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise ValueError("Event is missing id or type")

    logger.info(f"Received event: {event_type}, id={event_id}")

    if _claim_event(db, event_id, event_type) is None:
        return "duplicate"

    handler = EVENT_HANDLERS.get(event_type)
    outcome = "processed"
    try:
        if handler is None:
            logger.info(f"Unhandled event type: {event_type}")
            outcome = "ignored"
        else:
            data_object = (event.get("data") or {}).get("object") or {}
            handler(db, gateway, data_object, event.get("created"))
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing event {event_type}, id={event_id}: {e}", exc_info=True)
        _mark_event(db, event_id, error_message=str(e) or e.__class__.__name__)
        raise

    _mark_event(db, event_id)
    return outcome
