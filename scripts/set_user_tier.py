"""
Grant a subscription tier to a user by email.
Run: python -m scripts.set_user_tier user@example.com pro [--status active]
"""
import argparse
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal
from app.db.models.user import User
from app.core.tier_limits import SUBSCRIPTION_TIERS, is_business_tier
from app.services.credit_ledger import apply_subscription_credit, read_available_credits
from app.services.subscription_store import (
    SubscriptionRecord,
    get_subscription_by_user_id,
    record_from_subscription,
    upsert_subscription,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def set_user_tier(email: str, tier: str, status: str = "active") -> bool:
    """Upsert the user's subscription to the given tier with fresh credits."""
    if tier not in SUBSCRIPTION_TIERS:
        logger.error(f"Unknown tier '{tier}'. Expected one of: {', '.join(SUBSCRIPTION_TIERS)}")
        return False

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.lower()).first()
        if not user:
            logger.error(f"User {email} not found")
            return False

        existing = get_subscription_by_user_id(db, user.id)
        record = record_from_subscription(existing) if existing else SubscriptionRecord(user_id=user.id)
        record.tier = tier
        record.status = status

        state = apply_subscription_credit(
            db,
            user.id,
            tier,
            metadata=record.metadata,
            period_end=record.current_period_end,
            balance_before=read_available_credits(existing),
        )
        record.available_credits = state.available_credits
        record.total_credits = state.total_credits
        record.credits_reset_at = state.credits_reset_at
        record.metadata = state.metadata

        user.user_type = "business" if is_business_tier(tier) else "individual"
        upsert_subscription(db, record)

        logger.info(f"Set user {email} (ID: {user.id}) to {tier} ({status})")
        return True

    except Exception as e:
        db.rollback()
        logger.error(f"Error updating user: {e}", exc_info=True)
        return False
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Grant a subscription tier to a user")
    parser.add_argument("email")
    parser.add_argument("tier", choices=SUBSCRIPTION_TIERS)
    parser.add_argument("--status", default="active")
    args = parser.parse_args()

    if set_user_tier(args.email, args.tier, args.status):
        print(f"\n[SUCCESS] User {args.email} is now on the {args.tier} tier")
    else:
        print(f"\n[ERROR] Failed to set tier for {args.email}")
        sys.exit(1)
