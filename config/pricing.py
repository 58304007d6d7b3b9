# config/pricing.py

import os
from typing import Dict, Any, List, Optional

from models.listing import ServiceType
from models.subscription import TierType

# Monthly list price in USD per listing category and tier
CATEGORY_PRICES: Dict[ServiceType, Dict[TierType, int]] = {
    ServiceType.VENUE: {
        TierType.BASIC: 25,
        TierType.PREMIUM: 45,
        TierType.ELITE: 65,
    },
    ServiceType.HAIR_MAKEUP: {
        TierType.BASIC: 5,
        TierType.PREMIUM: 10,
        TierType.ELITE: 15,
    },
    ServiceType.PHOTO_VIDEO: {
        TierType.BASIC: 5,
        TierType.PREMIUM: 10,
        TierType.ELITE: 15,
    },
    ServiceType.WEDDING_PLANNER: {
        TierType.BASIC: 5,
        TierType.PREMIUM: 10,
        TierType.ELITE: 15,
    },
    ServiceType.DJ: {
        TierType.BASIC: 5,
        TierType.PREMIUM: 15,
        TierType.ELITE: 25,
    },
}


def price_env_var(service_type: ServiceType, tier: TierType, is_annual: bool) -> str:
    period = "ANNUAL" if is_annual else "MONTHLY"
    return f"STRIPE_PRICE_{service_type.name}_{tier.name}_{period}"


def get_price_id(service_type: ServiceType, tier: TierType, is_annual: bool) -> Optional[str]:
    """Stripe price id configured for a plan, or None."""
    return os.getenv(price_env_var(service_type, tier, is_annual)) or None


def get_plans() -> List[Dict[str, Any]]:
    plans = []
    for service_type, tiers in CATEGORY_PRICES.items():
        for tier, price in tiers.items():
            plans.append({
                "service_type": service_type.value,
                "tier_type": tier.value,
                "monthly_price": price,
                "currency": "USD",
                "monthly_available": get_price_id(service_type, tier, False) is not None,
                "annual_available": get_price_id(service_type, tier, True) is not None,
            })
    return plans
