"""
Entitlement endpoints.

Reports the effective limits and credit balance of the authenticated user.
"""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_current_user
from app.core.tier_limits import FREE
from app.db.models.user import User
from app.db.session import get_db
from app.schemas.entitlements import EntitlementsResponse
from app.services.credit_ledger import read_available_credits
from app.services.entitlements_service import resolve_entitlements
from app.services.subscription_store import get_subscription_by_user_id, to_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/me", tags=["Usage"])


@router.get("/entitlements", status_code=status.HTTP_200_OK, response_model=EntitlementsResponse)
def get_entitlements(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Get the effective entitlements of the authenticated user.

    Returns:
    - tier / status: the stored subscription (free when there is none)
    - available_credits: current balance, -1 for unlimited, null when the tier has no credits
    - entitlements: resolved limits
    """
    subscription = get_subscription_by_user_id(db, user.id)
    reset_at = to_utc(subscription.credits_reset_at) if subscription else None

    return {
        "tier": subscription.tier if subscription else FREE,
        "status": subscription.status if subscription else None,
        "available_credits": read_available_credits(subscription),
        "credits_reset_at": reset_at.isoformat() if reset_at else None,
        "entitlements": resolve_entitlements(db, user.id),
    }
