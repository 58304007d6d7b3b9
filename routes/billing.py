"""
Billing routes for vendor listing subscriptions
"""
from fastapi import APIRouter, Depends
from typing import List
import logging

from auth.dependencies import get_current_user
from config.pricing import get_plans
from models.payment_method import SetupIntentRequest, SetupIntentResponse
from models.subscription import (
    BillingDataResponse,
    CancelSubscriptionResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    InvoiceSummary,
    PromoCodeRequest,
    PromoCodeResponse,
    ReactivateSubscriptionResponse,
)
from services.billing_service import BillingService
from services.providers import get_billing_service

router = APIRouter(prefix="/billing", tags=["Billing"])
logger = logging.getLogger(__name__)


@router.get("/plans")
async def get_available_plans():
    """
    Get listing plans with monthly pricing per category
    """
    return {"plans": get_plans()}


@router.get("", response_model=BillingDataResponse)
async def get_billing_data(
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Get the current user's subscriptions, stored card and listings
    """
    return await billing_service.get_billing_data(current_user["id"])


@router.get("/invoices", response_model=List[InvoiceSummary])
async def get_invoices(
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    return await billing_service.list_invoices(current_user["id"])


@router.post("/setup-intent", response_model=SetupIntentResponse)
async def create_setup_intent(
    request: SetupIntentRequest,
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Start saving a card for the current user
    """
    return await billing_service.create_setup_intent(
        current_user["id"],
        request.email or current_user.get("email"),
    )


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    return await billing_service.create_checkout_session(current_user["id"], request)


@router.post("/validate-promo", response_model=PromoCodeResponse)
async def validate_promo(
    request: PromoCodeRequest,
    billing_service: BillingService = Depends(get_billing_service),
):
    return await billing_service.validate_promo_code(request.promo_code)


@router.post("/subscriptions", response_model=CreateSubscriptionResponse)
async def create_subscription(
    request: CreateSubscriptionRequest,
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Subscribe a listing with the stored card
    """
    return await billing_service.create_subscription(current_user["id"], request)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    subscription_id: str,
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    return await billing_service.cancel_subscription(current_user["id"], subscription_id)


@router.post("/subscriptions/{subscription_id}/reactivate", response_model=ReactivateSubscriptionResponse)
async def reactivate_subscription(
    subscription_id: str,
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    return await billing_service.reactivate_subscription(current_user["id"], subscription_id)
