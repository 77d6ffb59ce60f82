"""
Credit ledger.

Computes and mutates a user's available-credit balance. Every mutation is
written to the dedicated credit columns, mirrored into the legacy
metadata.messageCredits key, and recorded as a CreditTransaction.

Balances are non-negative integers; UNLIMITED (-1) marks an unlimited
balance and None means the tier has no credit model.
"""
import logging
from datetime import datetime
from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.tier_limits import UNLIMITED, get_tier_credits
from app.db.models.credit_transaction import CreditTransaction
from app.db.models.subscription import Subscription
from app.services.subscription_store import (
    get_subscription_by_user_id,
    record_from_subscription,
    upsert_subscription,
)

logger = logging.getLogger(__name__)

LEGACY_CREDITS_KEY = "messageCredits"


class CreditState(NamedTuple):
    available_credits: Optional[int]
    total_credits: Optional[int]
    credits_reset_at: Optional[datetime]
    metadata: Dict[str, Any]


def coerce_number(value: Any) -> Optional[float]:
    """Parse ints, floats and numeric strings (Stripe metadata values are strings)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return int(number) if number.is_integer() else number


def coerce_int(value: Any) -> Optional[int]:
    number = coerce_number(value)
    return int(number) if number is not None else None


def read_available_credits(subscription: Optional[Subscription]) -> Optional[int]:
    """
    Read the available credits of a subscription.

    Fallback chain: available_credits column, then metadata.messageCredits
    (rows written before the column existed), then the tier default.
    """
    if subscription is None:
        return None
    if subscription.available_credits is not None:
        return subscription.available_credits

    legacy = coerce_int((subscription.extra_metadata or {}).get(LEGACY_CREDITS_KEY))
    if legacy is not None:
        return legacy

    return get_tier_credits(subscription.tier)


def compute_subscription_credits(
    tier: str,
    metadata: Optional[Dict[str, Any]] = None,
    period_end: Optional[datetime] = None,
) -> CreditState:
    """
    Credit state for a fresh billing period of a tier.

    Bounded tiers get their allowance in both counters (a numeric
    messageCredits product-metadata value overrides the table). Unlimited
    tiers clear both counters and only mirror -1 into metadata. Tiers
    without a credit model leave everything unset.
    """
    metadata = dict(metadata or {})
    allowance = get_tier_credits(tier)
    if allowance is None:
        return CreditState(None, None, None, metadata)

    override = coerce_int(metadata.get(LEGACY_CREDITS_KEY))
    if override is not None and (override >= 0 or override == UNLIMITED):
        allowance = override

    if allowance == UNLIMITED:
        metadata[LEGACY_CREDITS_KEY] = UNLIMITED
        return CreditState(None, None, None, metadata)

    metadata[LEGACY_CREDITS_KEY] = allowance
    return CreditState(allowance, allowance, period_end, metadata)


def _record_transaction(
    db: Session,
    user_id: int,
    transaction_type: str,
    balance_before: Optional[int],
    balance_after: Optional[int],
    source_id: Optional[str] = None,
) -> CreditTransaction:
    transaction = CreditTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        credits=(balance_after or 0) - (balance_before or 0),
        balance_before=balance_before,
        balance_after=balance_after,
        source_id=source_id,
    )
    db.add(transaction)
    return transaction


def apply_subscription_credit(
    db: Session,
    user_id: int,
    tier: str,
    metadata: Optional[Dict[str, Any]] = None,
    period_end: Optional[datetime] = None,
    balance_before: Optional[int] = None,
) -> CreditState:
    """
    Compute the credit state for a tier transition or new billing period.

    The ledger row is added to the session; the caller commits it together
    with the subscription upsert.
    """
    state = compute_subscription_credits(tier, metadata, period_end)
    if state.available_credits is not None:
        _record_transaction(db, user_id, "subscription_reset", balance_before, state.available_credits)
        logger.info(f"Initialized {tier} with {state.available_credits} credits: user_id={user_id}")
    elif state.metadata.get(LEGACY_CREDITS_KEY) == UNLIMITED:
        logger.info(f"Initialized {tier} with unlimited credits: user_id={user_id}")
    return state


def apply_top_up(
    db: Session,
    user_id: int,
    delta_credits: int,
    source_id: Optional[str] = None,
) -> Optional[int]:
    """
    Add purchased credits to a user's balance.

    Args:
        db: Database session
        user_id: User ID
        delta_credits: Credits to add (positive)
        source_id: Payment reference; a second top-up with the same reference is ignored

    Returns:
        The balance after the top-up. Unlimited balances stay UNLIMITED and
        only get a zero-credit ledger row for the payment.

    Raises:
        ValueError: If delta_credits is not positive
        LookupError: If the user has no subscription row
    """
    if delta_credits <= 0:
        raise ValueError("Top-up credits must be positive")

    if source_id and _already_applied(db, source_id):
        logger.warning(f"Top-up already applied: user_id={user_id}, source_id={source_id}")
        return read_available_credits(get_subscription_by_user_id(db, user_id))

    subscription = get_subscription_by_user_id(db, user_id, for_update=True)
    if subscription is None:
        raise LookupError(f"No subscription found for user {user_id}")

    current = read_available_credits(subscription)
    if current == UNLIMITED:
        # Keep a trace of the payment so it can be reconciled or refunded
        _record_transaction(db, user_id, "topup", UNLIMITED, UNLIMITED, source_id=source_id)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
        logger.warning(
            f"Top-up of {delta_credits} credits not applied to unlimited balance: "
            f"user_id={user_id}, source_id={source_id}"
        )
        return UNLIMITED

    current = current or 0
    new_balance = current + delta_credits

    record = record_from_subscription(subscription)
    record.available_credits = new_balance
    record.metadata = {**(record.metadata or {}), LEGACY_CREDITS_KEY: new_balance}

    upsert_subscription(db, record, commit=False)
    _record_transaction(db, user_id, "topup", current, new_balance, source_id=source_id)

    try:
        db.commit()
    except IntegrityError:
        # Concurrent delivery of the same purchase won the insert
        db.rollback()
        logger.warning(f"Top-up already applied: user_id={user_id}, source_id={source_id}")
        return read_available_credits(get_subscription_by_user_id(db, user_id))

    logger.info(
        f"Added {delta_credits} credits: user_id={user_id}, "
        f"balance {current} -> {new_balance}, source_id={source_id}"
    )
    return new_balance


def debit_credits(db: Session, user_id: int, amount: int) -> Optional[int]:
    """
    Deduct credits, clamping the balance at zero.

    Unlimited balances and tiers without a credit model are left untouched.

    Returns:
        The balance after the debit (UNLIMITED or None when untouched)
    """
    if amount < 0:
        raise ValueError("Debit amount must not be negative")

    subscription = get_subscription_by_user_id(db, user_id, for_update=True)
    if subscription is None:
        raise LookupError(f"No subscription found for user {user_id}")

    current = read_available_credits(subscription)
    if current is None or current == UNLIMITED:
        return current

    new_balance = max(0, current - amount)

    record = record_from_subscription(subscription)
    record.available_credits = new_balance
    record.metadata = {**(record.metadata or {}), LEGACY_CREDITS_KEY: new_balance}

    upsert_subscription(db, record, commit=False)
    _record_transaction(db, user_id, "debit", current, new_balance)
    db.commit()

    logger.debug(f"Debited {amount} credits: user_id={user_id}, balance {current} -> {new_balance}")
    return new_balance


def _already_applied(db: Session, source_id: str) -> bool:
    return db.query(CreditTransaction.id).filter(CreditTransaction.source_id == source_id).first() is not None
