"""
Pydantic schemas for entitlement endpoints.
"""
from typing import Optional
from pydantic import BaseModel, Field

from app.services.entitlements_service import Entitlements


class EntitlementsResponse(BaseModel):
    """Response schema for GET /me/entitlements."""
    tier: str = Field(..., description="Subscription tier (free, pro, power, business_*)")
    status: Optional[str] = Field(None, description="Subscription status reported by Stripe")
    available_credits: Optional[int] = Field(None, description="Current credit balance (-1 unlimited)")
    credits_reset_at: Optional[str] = Field(None, description="When credits next reset (ISO 8601)")
    entitlements: Entitlements
