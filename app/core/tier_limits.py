"""
Subscription tier limits configuration.

Single source of truth for usage limits per subscription tier.
-1 means unlimited; a missing key means the limit does not apply to the tier.
"""
from typing import Dict, List, Optional, Union

Number = Union[int, float]

# Tier names (closed set)
FREE = "free"
PRO = "pro"
POWER = "power"
BUSINESS_FREE = "business_free"
BUSINESS_STARTER = "business_starter"
BUSINESS_PRO = "business_pro"

SUBSCRIPTION_TIERS: List[str] = [FREE, PRO, POWER, BUSINESS_FREE, BUSINESS_STARTER, BUSINESS_PRO]
MONTHLY = "monthly"
ANNUAL = "annual"
BILLING_INTERVALS: List[str] = [MONTHLY, ANNUAL]

UNLIMITED = -1

# Version of the tier/credit model written to subscription rows.
# 1: credits lived only in metadata.messageCredits
# 2: dedicated available_credits/total_credits columns are authoritative
CREDIT_SCHEMA_VERSION = 2

# Limit fields, in the order they are reported
LIMIT_FIELDS: List[str] = [
    "max_messages_per_month",
    "max_messages_per_day",
    "message_credits",
    "finetune_storage_mb",
    "ai_agent_count",
    "max_saved_recipes",
    "max_vector_docs",
    "team_seats",
]

# Stripe product metadata keys that override each limit field
METADATA_OVERRIDE_KEYS: Dict[str, str] = {
    "max_messages_per_month": "maxMessagesPerMonth",
    "max_messages_per_day": "maxMessagesPerDay",
    "message_credits": "messageCredits",
    "finetune_storage_mb": "finetuneStorageMB",
    "ai_agent_count": "aiAgentCount",
    "max_saved_recipes": "maxSavedRecipes",
    "max_vector_docs": "maxVectorDocs",
    "team_seats": "teamSeats",
}

TIER_LIMITS: Dict[str, Dict[str, Number]] = {
    # Individual plans
    FREE: {
        "max_messages_per_month": 100,
        "max_messages_per_day": 10,
        "max_saved_recipes": 5,
        "max_vector_docs": 50,
    },
    PRO: {
        "max_messages_per_month": 500,
        "max_saved_recipes": UNLIMITED,
        "max_vector_docs": 1000,
    },
    POWER: {
        "max_messages_per_month": 3000,
        "max_saved_recipes": UNLIMITED,
        "max_vector_docs": 5000,
    },
    # Business plans
    BUSINESS_FREE: {
        "message_credits": 100,
        "finetune_storage_mb": 0.5,
        "ai_agent_count": 1,
        "max_saved_recipes": UNLIMITED,
        "max_vector_docs": 100,
    },
    BUSINESS_STARTER: {
        "message_credits": 10000,
        "finetune_storage_mb": 20,
        "ai_agent_count": 3,
        "max_saved_recipes": UNLIMITED,
        "max_vector_docs": 1000,
        "team_seats": 1,
    },
    BUSINESS_PRO: {
        "message_credits": UNLIMITED,
        "finetune_storage_mb": 60,
        "ai_agent_count": 10,
        "max_saved_recipes": UNLIMITED,
        "max_vector_docs": UNLIMITED,
        "team_seats": 1,
    },
}

# Credits granted per billing period
TIER_CREDITS: Dict[str, int] = {
    PRO: 500,
    POWER: 3000,
    BUSINESS_FREE: 100,
    BUSINESS_STARTER: 10000,
    BUSINESS_PRO: UNLIMITED,
}

# Individual tiers whose credit balance falls back to the monthly message allowance
CREDIT_TIERS = frozenset({PRO, POWER})

# Tiers allowed to buy one-time credit top-ups
TOPUP_TIERS = frozenset({PRO, POWER})


def is_business_tier(tier: Optional[str]) -> bool:
    """Check whether a tier belongs to the business (B2B) plans."""
    return bool(tier) and tier.startswith("business_")


def get_tier_limits(tier: Optional[str]) -> Dict[str, Number]:
    """Get all limits for a tier, defaulting to the free tier."""
    tier = tier.lower() if tier else FREE
    return dict(TIER_LIMITS.get(tier, TIER_LIMITS[FREE]))


def get_tier_credits(tier: Optional[str]) -> Optional[int]:
    """
    Get per-period credits for a tier.

    Returns:
        Credit amount, UNLIMITED (-1), or None when the tier has no credit model
    """
    if not tier:
        return None
    return TIER_CREDITS.get(tier.lower())
