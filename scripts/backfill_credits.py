"""
Backfill the dedicated credit columns for active Pro/Power subscriptions.

Rows written before the credit columns existed keep their balance in
metadata.messageCredits. This copies it (or the tier default) into
available_credits / total_credits and stamps the current schema version.

Run: python -m scripts.backfill_credits [--dry-run]
"""
import argparse
import logging
import os
import sys
from typing import Optional

from sqlalchemy.orm import Session

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal
from app.db.models.subscription import Subscription
from app.core.tier_limits import CREDIT_TIERS, get_tier_credits
from app.services.credit_ledger import LEGACY_CREDITS_KEY, coerce_int
from app.services.subscription_store import record_from_subscription, upsert_subscription

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def backfill_credits(dry_run: bool = False, db: Optional[Session] = None) -> int:
    """
    Backfill credit columns.

    Args:
        dry_run: Log what would change without writing
        db: Session to use; a new one is opened (and closed) when omitted

    Returns:
        Number of subscriptions updated (or that would be, on a dry run)
    """
    owns_session = db is None
    db = db or SessionLocal()
    updated = 0
    try:
        subscriptions = (
            db.query(Subscription)
            .filter(Subscription.available_credits.is_(None), Subscription.status == "active")
            .all()
        )
        logger.info(f"Found {len(subscriptions)} subscriptions without credit columns")

        for sub in subscriptions:
            if sub.tier not in CREDIT_TIERS:
                logger.info(f"Skipping {sub.tier} tier for user {sub.user_id}")
                continue

            total = get_tier_credits(sub.tier)
            legacy = coerce_int((sub.extra_metadata or {}).get(LEGACY_CREDITS_KEY))
            available = legacy if legacy is not None and legacy >= 0 else total

            logger.info(f"Backfilling {sub.tier} subscription for user {sub.user_id}: {available}/{total} credits")
            updated += 1
            if dry_run:
                continue

            record = record_from_subscription(sub)
            record.available_credits = available
            record.total_credits = total
            record.credits_reset_at = record.credits_reset_at or record.current_period_end
            record.metadata = {**(record.metadata or {}), LEGACY_CREDITS_KEY: available}
            upsert_subscription(db, record)

        logger.info(f"Credit backfill completed: {updated} updated")
        return updated

    except Exception:
        db.rollback()
        logger.error("Error during credit backfill", exc_info=True)
        raise
    finally:
        if owns_session:
            db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Backfill subscription credit columns")
    parser.add_argument("--dry-run", action="store_true", help="Log what would change without writing")
    args = parser.parse_args()

    try:
        count = backfill_credits(dry_run=args.dry_run)
    except Exception:
        sys.exit(1)
    print(f"\n[SUCCESS] Backfilled {count} subscriptions")
