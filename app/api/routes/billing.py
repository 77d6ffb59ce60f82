"""
Billing endpoints: subscription checkout, credit top-ups and the customer portal.
"""
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_current_user
from app.db.models.user import User
from app.db.session import get_db
from app.schemas.billing import BillingErrorResponse, BuyCreditsRequest, CheckoutRequest, SessionUrlResponse
from app.services import billing_service
from app.services.billing_service import BillingError
from app.services.stripe_service import StripeGateway

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/billing",
    tags=["Billing"],
    responses={
        400: {"model": BillingErrorResponse},
        401: {"model": BillingErrorResponse},
        500: {"model": BillingErrorResponse},
    },
)


def get_stripe_gateway(request: Request) -> StripeGateway:
    """Stripe gateway built at application startup."""
    return request.app.state.stripe_gateway


def _error(e: BillingError) -> JSONResponse:
    return JSONResponse(status_code=e.status_code, content={"error": e.message})


@router.post("/checkout", response_model=SessionUrlResponse)
def create_checkout(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """Start a hosted Stripe checkout for a subscription price."""
    try:
        url = billing_service.create_subscription_checkout(db, gateway, user, body.price_id)
    except BillingError as e:
        return _error(e)
    return {"url": url}


@router.post("/buy-credits", response_model=SessionUrlResponse)
def buy_credits(
    body: BuyCreditsRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """Start a one-time checkout that buys message credits."""
    try:
        url = billing_service.create_credit_topup_checkout(db, gateway, user, body.amount)
    except BillingError as e:
        return _error(e)
    return {"url": url}


@router.post("/portal", response_model=SessionUrlResponse)
def billing_portal(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """Open the Stripe self-service billing portal."""
    try:
        url = billing_service.create_portal_session(db, gateway, user)
    except BillingError as e:
        return _error(e)
    return {"url": url}
