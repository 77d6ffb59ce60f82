"""
Stripe webhook endpoint.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.routes.billing import get_stripe_gateway
from app.db.session import get_db
from app.services.billing_events import process_event
from app.services.stripe_service import InvalidWebhookSignature, StripeGateway, WebhookSecretMissing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing Webhook"])


@router.get("/webhook")
def webhook_status():
    """Liveness check for the webhook endpoint."""
    return {
        "message": "Stripe webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": "ready",
    }


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    payload = await request.body()

    if not stripe_signature:
        logger.warning("Webhook request without Stripe-Signature header")
        return JSONResponse(status_code=400, content={"error": "No signature provided"})

    try:
        event = gateway.construct_event(payload, stripe_signature)
    except WebhookSecretMissing:
        logger.error("STRIPE_WEBHOOK_SECRET is not set")
        return JSONResponse(status_code=500, content={"error": "Webhook secret not configured"})
    except InvalidWebhookSignature as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    try:
        process_event(db, gateway, event)
    except Exception:
        # Already logged with traceback; Stripe will redeliver
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return {"received": True}
