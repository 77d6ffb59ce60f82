"""
Subscription upsert store.

Persists the current subscription snapshot per user. Writes are full-record
upserts keyed by user_id: callers rebuild the complete desired state (usually
from record_from_subscription plus their changes) and hand it to
upsert_subscription.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.tier_limits import CREDIT_SCHEMA_VERSION, FREE
from app.db.models.subscription import Subscription

logger = logging.getLogger(__name__)


class SubscriptionRecord(BaseModel):
    """Full desired state of a subscription row."""
    user_id: int
    tier: str = FREE
    billing_interval: Optional[str] = None
    status: str = "active"
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    available_credits: Optional[int] = None
    total_credits: Optional[int] = None
    credits_reset_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None)
    last_event_at: Optional[int] = None


MUTABLE_FIELDS = [
    "tier",
    "billing_interval",
    "status",
    "stripe_customer_id",
    "stripe_subscription_id",
    "stripe_price_id",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "available_credits",
    "total_credits",
    "credits_reset_at",
    "last_event_at",
]


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC (SQLite returns naive values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Convert a Stripe unix timestamp to an aware UTC datetime."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def get_subscription_by_user_id(db: Session, user_id: int, for_update: bool = False) -> Optional[Subscription]:
    query = db.query(Subscription).filter(Subscription.user_id == user_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def record_from_subscription(subscription: Subscription) -> SubscriptionRecord:
    """Rebuild the full record of a stored subscription."""
    return SubscriptionRecord(
        user_id=subscription.user_id,
        tier=subscription.tier,
        billing_interval=subscription.billing_interval,
        status=subscription.status,
        stripe_customer_id=subscription.stripe_customer_id,
        stripe_subscription_id=subscription.stripe_subscription_id,
        stripe_price_id=subscription.stripe_price_id,
        current_period_start=to_utc(subscription.current_period_start),
        current_period_end=to_utc(subscription.current_period_end),
        cancel_at_period_end=bool(subscription.cancel_at_period_end),
        available_credits=subscription.available_credits,
        total_credits=subscription.total_credits,
        credits_reset_at=to_utc(subscription.credits_reset_at),
        metadata=dict(subscription.extra_metadata) if subscription.extra_metadata else None,
        last_event_at=subscription.last_event_at,
    )


def free_tier_record(
    user_id: int,
    status: str = "canceled",
    last_event_at: Optional[int] = None,
) -> SubscriptionRecord:
    """Free-tier record with every processor identifier and credit field cleared."""
    return SubscriptionRecord(
        user_id=user_id,
        tier=FREE,
        status=status,
        last_event_at=last_event_at,
    )


def upsert_subscription(db: Session, record: SubscriptionRecord, commit: bool = True) -> Subscription:
    """
    Insert or fully replace the subscription row for record.user_id.

    created_at is preserved on update; every other mutable field is taken
    from the record, including fields the record leaves empty.
    """
    subscription = get_subscription_by_user_id(db, record.user_id)
    created = subscription is None

    if created:
        subscription = Subscription(user_id=record.user_id)
        db.add(subscription)

    for field in MUTABLE_FIELDS:
        setattr(subscription, field, getattr(record, field))
    subscription.extra_metadata = dict(record.metadata) if record.metadata is not None else None
    subscription.schema_version = CREDIT_SCHEMA_VERSION
    if not created:
        subscription.updated_at = datetime.now(timezone.utc)

    if commit:
        db.commit()
        db.refresh(subscription)
    else:
        db.flush()

    logger.info(
        f"Subscription {'created' if created else 'updated'}: user_id={record.user_id}, "
        f"tier={record.tier}, status={record.status}, credits={record.available_credits}"
    )
    return subscription
