"""
Print a diagnostic report of the subscription setup.

Checks the subscriptions table, recent rows, users linked to Stripe
customers and which Stripe settings are configured.
Run: python -m scripts.debug_subscriptions
"""
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal
from app.db.models.subscription import Subscription
from app.db.models.user import User
from app.core import config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PRICE_SETTINGS = [
    "STRIPE_PRICE_PRO_MONTHLY",
    "STRIPE_PRICE_PRO_ANNUAL",
    "STRIPE_PRICE_POWER_MONTHLY",
    "STRIPE_PRICE_POWER_ANNUAL",
    "STRIPE_PRICE_BUSINESS_STARTER_MONTHLY",
    "STRIPE_PRICE_BUSINESS_STARTER_ANNUAL",
    "STRIPE_PRICE_BUSINESS_PRO_MONTHLY",
    "STRIPE_PRICE_BUSINESS_PRO_ANNUAL",
]


def stripe_settings() -> Dict[str, str]:
    """Configured/missing status of the Stripe settings; secrets are never printed."""
    settings = {
        "STRIPE_SECRET_KEY": "set" if config.STRIPE_SECRET_KEY else "MISSING",
        "STRIPE_WEBHOOK_SECRET": "set" if config.STRIPE_WEBHOOK_SECRET else "MISSING",
    }
    for name in PRICE_SETTINGS:
        settings[name] = getattr(config, name) or "MISSING"
    return settings


def collect_report(db: Session, limit: int = 5) -> Dict[str, Any]:
    report: Dict[str, Any] = {"stripe_settings": stripe_settings()}

    inspector = inspect(db.get_bind())
    report["table_exists"] = inspector.has_table(Subscription.__tablename__)
    if not report["table_exists"]:
        logger.warning("subscriptions table does not exist - run the migrations")
        return report

    report["columns"] = [column["name"] for column in inspector.get_columns(Subscription.__tablename__)]
    report["subscription_count"] = db.query(Subscription).count()
    if report["subscription_count"] == 0:
        logger.warning("No subscriptions found in database")

    recent = db.query(Subscription).order_by(Subscription.created_at.desc(), Subscription.id.desc()).limit(limit).all()
    report["recent_subscriptions"] = [
        {
            "user_id": sub.user_id,
            "tier": sub.tier,
            "status": sub.status,
            "billing_interval": sub.billing_interval,
            "stripe_customer_id": sub.stripe_customer_id,
            "stripe_subscription_id": sub.stripe_subscription_id,
            "available_credits": sub.available_credits,
            "schema_version": sub.schema_version,
        }
        for sub in recent
    ]

    linked = db.query(User).filter(User.stripe_customer_id.isnot(None)).limit(limit).all()
    report["users_with_stripe_customer"] = [
        {"id": user.id, "email": user.email, "stripe_customer_id": user.stripe_customer_id}
        for user in linked
    ]
    if not linked:
        logger.warning("No users have Stripe customer IDs - no checkout has completed yet")

    return report


def debug_subscriptions(db: Optional[Session] = None) -> Dict[str, Any]:
    owns_session = db is None
    db = db or SessionLocal()
    try:
        return collect_report(db)
    finally:
        if owns_session:
            db.close()


if __name__ == "__main__":
    try:
        report = debug_subscriptions()
    except SQLAlchemyError as e:
        logger.error(f"Could not inspect the database: {e}", exc_info=True)
        sys.exit(1)
    print(json.dumps(report, indent=2, default=str))
