from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.db.base import Base
from app.core.tier_limits import CREDIT_SCHEMA_VERSION


class Subscription(Base):
    """
    Current subscription snapshot for a user.

    One row per user, upserted on every billing change and never hard-deleted;
    cancellation resets the row to the free tier.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)

    tier = Column(String, default="free", nullable=False)  # free | pro | power | business_*
    billing_interval = Column(String, nullable=True)  # monthly | annual
    status = Column(String, default="active", nullable=False)  # active | canceled | past_due | incomplete ...

    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)
    stripe_price_id = Column(String, nullable=True)

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)

    # None: tier has no credit model; -1: unlimited
    available_credits = Column(Integer, nullable=True)
    total_credits = Column(Integer, nullable=True)
    credits_reset_at = Column(DateTime(timezone=True), nullable=True)

    # Stripe product metadata overrides plus the legacy messageCredits mirror
    extra_metadata = Column("metadata", JSON, nullable=True)

    schema_version = Column(Integer, default=CREDIT_SCHEMA_VERSION, nullable=False)
    last_event_at = Column(Integer, nullable=True)  # Stripe event "created" of the newest applied snapshot

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="subscription")
