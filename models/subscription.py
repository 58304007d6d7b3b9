"""
Subscription models for vendor listing plans
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

from models.listing import ServiceType


class TierType(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"
    ELITE = "elite"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"
    PAUSED = "paused"


class SubscriptionRecord(BaseModel):
    """Row in the subscriptions table, one per (user, listing)."""
    user_id: str
    listing_id: str
    stripe_subscription_id: str
    stripe_customer_id: str
    status: SubscriptionStatus
    service_type: ServiceType
    tier_type: Optional[TierType] = None
    is_annual: bool = False
    is_trial: bool = False
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    def to_row(self) -> Dict[str, Any]:
        row = self.model_dump(mode="json")
        row["status"] = self.status.value
        row["service_type"] = self.service_type.value
        row["tier_type"] = self.tier_type.value if self.tier_type else None
        return row


class CheckoutSessionRequest(BaseModel):
    service_type: str
    tier_type: TierType
    is_annual: bool = False
    listing_id: str


class CheckoutSessionResponse(BaseModel):
    session_id: str
    checkout_url: Optional[str] = None


class CreateSubscriptionRequest(BaseModel):
    service_type: str
    tier_type: TierType
    is_annual: bool = False
    listing_id: str
    promo_code: Optional[str] = None


class CreateSubscriptionResponse(BaseModel):
    success: bool = True
    subscription_id: str
    redirect_url: str


class PromoCodeRequest(BaseModel):
    promo_code: str = Field(..., description="Customer-facing promotion code")


class PromoCodeDetails(BaseModel):
    id: str
    discount_type: str  # "fixed" or "percentage"
    discount_amount: Optional[float] = None
    duration: Optional[str] = None
    duration_in_months: Optional[int] = None
    name: Optional[str] = None


class PromoCodeResponse(BaseModel):
    is_valid: bool
    details: Optional[PromoCodeDetails] = None
    error: Optional[str] = None


class CancelSubscriptionResponse(BaseModel):
    message: str
    effective_date: Optional[datetime] = None
    remaining_days: int = 0
    will_be_charged_again: bool = False


class ReactivateSubscriptionResponse(BaseModel):
    message: str
    stripe_subscription_id: str
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None


class BillingDataResponse(BaseModel):
    subscriptions: List[Dict[str, Any]] = []
    payment_method: Optional[Dict[str, Any]] = None
    listings: Dict[str, List[Dict[str, Any]]] = {}


class InvoiceSummary(BaseModel):
    id: str
    number: Optional[str] = None
    created: Optional[datetime] = None
    amount_paid: float = 0
    amount_due: float = 0
    status: Optional[str] = None
    subscription_id: Optional[str] = None
    hosted_invoice_url: Optional[str] = None
