"""
Pydantic schemas for billing endpoints.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class CheckoutRequest(BaseModel):
    """Request schema for subscription checkout."""
    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {"priceId": "price_1PqExample"}
    })

    price_id: Optional[str] = Field(None, alias="priceId", description="Stripe price ID of the plan")


class BuyCreditsRequest(BaseModel):
    """Request schema for a one-time credit top-up."""
    model_config = ConfigDict(json_schema_extra={"example": {"amount": 10}})

    amount: Optional[float] = Field(None, description="Purchase amount in dollars (minimum 5)")


class SessionUrlResponse(BaseModel):
    """Hosted Stripe page to redirect to."""
    url: str = Field(..., description="Stripe checkout or portal URL")


class BillingErrorResponse(BaseModel):
    """Error response schema for billing operations."""
    error: str = Field(..., description="Error message")
