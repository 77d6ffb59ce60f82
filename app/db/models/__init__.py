"""
Database models module.

Imports every model so they are registered with Base.metadata before table
creation and migrations.
"""
from app.db.models.user import User
from app.db.models.subscription import Subscription
from app.db.models.stripe_event import StripeEvent
from app.db.models.credit_transaction import CreditTransaction

__all__ = [
    "User",
    "Subscription",
    "StripeEvent",
    "CreditTransaction",
]
