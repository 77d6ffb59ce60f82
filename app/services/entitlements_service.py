"""
Entitlements service.

Resolves the effective usage limits of a user from the static tier table and
the persisted subscription snapshot. Resolution never raises: message flow
must not be blocked by a lookup failure, so errors fall back to the free tier.
"""
import logging
from typing import Optional, Tuple, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.tier_limits import (
    CREDIT_TIERS,
    FREE,
    LIMIT_FIELDS,
    METADATA_OVERRIDE_KEYS,
    UNLIMITED,
    get_tier_limits,
)
from app.services.credit_ledger import coerce_number
from app.services.subscription_store import get_subscription_by_user_id

logger = logging.getLogger(__name__)

Number = Union[int, float]


class Entitlements(BaseModel):
    """Effective limits for a user. None: not applicable; -1: unlimited."""
    max_messages_per_month: Optional[Number] = None
    max_messages_per_day: Optional[Number] = None
    message_credits: Optional[Number] = None
    finetune_storage_mb: Optional[Number] = None
    ai_agent_count: Optional[Number] = None
    max_saved_recipes: Optional[Number] = None
    max_vector_docs: Optional[Number] = None
    team_seats: Optional[Number] = None


def free_tier_entitlements() -> Entitlements:
    return Entitlements(**get_tier_limits(FREE))


def resolve_entitlements(db: Session, user_id: int) -> Entitlements:
    """
    Get the effective entitlements for a user.

    Inactive or missing subscriptions resolve to the free tier. Active ones use
    the tier table, with each field overridable by the same-named key in the
    subscription metadata.
    """
    try:
        subscription = get_subscription_by_user_id(db, user_id)
        if not subscription or subscription.status != "active":
            return free_tier_entitlements()

        limits = get_tier_limits(subscription.tier)
        metadata = subscription.extra_metadata or {}

        values = {}
        for field in LIMIT_FIELDS:
            override = coerce_number(metadata.get(METADATA_OVERRIDE_KEYS[field]))
            values[field] = override if override is not None else limits.get(field)

        # The dedicated column beats the metadata mirror
        if subscription.available_credits is not None:
            values["message_credits"] = subscription.available_credits
        elif values["message_credits"] is None and subscription.tier in CREDIT_TIERS:
            # Early schema versions conflated monthly messages and credits
            values["message_credits"] = values["max_messages_per_month"]

        return Entitlements(**values)

    except Exception as e:
        logger.error(f"Error getting entitlements for user_id={user_id}: {e}", exc_info=True)
        return free_tier_entitlements()


def _is_unlimited(limit: Optional[Number]) -> bool:
    return limit is None or limit == UNLIMITED


def check_message_limit(
    db: Session,
    user_id: int,
    message_count: int,
    period: str = "month",
) -> Tuple[bool, Number, Number]:
    """
    Check a message count against the user's daily or monthly cap.

    Returns:
        Tuple of (allowed, limit, remaining); limit and remaining are -1 when unlimited
    """
    entitlements = resolve_entitlements(db, user_id)

    if period == "day":
        limit = entitlements.max_messages_per_day
    else:
        limit = entitlements.max_messages_per_month
        if limit is None:
            limit = entitlements.message_credits

    if _is_unlimited(limit):
        return True, UNLIMITED, UNLIMITED

    remaining = max(0, limit - message_count)
    return message_count < limit, limit, remaining


def check_message_credits(
    db: Session,
    user_id: int,
    required_credits: int,
) -> Tuple[bool, Number, Number]:
    """
    Check whether the user can spend required_credits.

    Returns:
        Tuple of (allowed, current_credits, remaining); -1 values mean unlimited
    """
    entitlements = resolve_entitlements(db, user_id)
    credits = entitlements.message_credits

    if _is_unlimited(credits):
        return True, UNLIMITED, UNLIMITED

    remaining = max(0, credits - required_credits)
    return credits >= required_credits, credits, remaining
