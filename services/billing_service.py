"""
Billing panel operations: saving cards, buying listing plans, promo codes,
cancel/reactivate and billing history
"""
import logging
import math
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

import stripe
from fastapi import HTTPException, status

from config.pricing import get_price_id
from config.settings import Settings
from models.listing import ServiceType
from models.payment_method import SetupIntentResponse
from models.subscription import (
    BillingDataResponse,
    CancelSubscriptionResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    InvoiceSummary,
    PromoCodeDetails,
    PromoCodeResponse,
    ReactivateSubscriptionResponse,
    SubscriptionRecord,
    SubscriptionStatus,
    TierType,
)
from services.billing_repository import BillingRepository
from services.stripe_gateway import (
    ENDED_STATUSES,
    StripeGateway,
    current_period_end,
    promotion_coupon,
    stripe_field,
    stripe_id,
)

logger = logging.getLogger(__name__)

LIVE_STATUSES = {"active", "trialing", "past_due"}


class BillingService:
    def __init__(self, gateway: StripeGateway, repository: BillingRepository, settings: Settings):
        self.gateway = gateway
        self.repository = repository
        self.frontend_url = settings.frontend_url

    async def create_setup_intent(self, user_id: str, email: Optional[str]) -> SetupIntentResponse:
        """
        Start saving a card on the user's own Stripe customer. The
        setup_intent.succeeded webhook stores it.
        """
        customer_id = await self._find_customer_id(user_id)
        try:
            if not customer_id:
                customer = await self.gateway.create_customer(email, user_id)
                customer_id = customer["id"]

            setup_intent = await self.gateway.create_setup_intent(customer_id, user_id)
            return SetupIntentResponse(
                client_secret=setup_intent["client_secret"],
                customer_id=customer_id,
            )

        except stripe.StripeError as e:
            logger.error(f"Stripe error creating setup intent for user {user_id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to create setup intent")

    async def create_checkout_session(self, user_id: str, request: CheckoutSessionRequest) -> CheckoutSessionResponse:
        """
        Create a hosted checkout for a listing plan
        """
        service_type = _parse_service_type(request.service_type)
        price_id = _require_price_id(service_type, request.tier_type, request.is_annual)

        try:
            session = await self.gateway.create_checkout_session(
                price_id=price_id,
                metadata=_subscription_metadata(user_id, service_type, request.tier_type, request.is_annual, request.listing_id),
                success_url=f"{self.frontend_url}/services/{service_type.url_slug}/create?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.frontend_url}/services",
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating checkout session: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to create checkout session")

        logger.info(f"Created checkout session {session['id']} for user {user_id}, listing {request.listing_id}")
        return CheckoutSessionResponse(session_id=session["id"], checkout_url=stripe_field(session, "url"))

    async def validate_promo_code(self, code: str) -> PromoCodeResponse:
        """
        Look up an active promotion code and describe its discount
        """
        code = (code or "").strip()
        if not code:
            raise HTTPException(status_code=400, detail="Promo code is required")

        try:
            promotion_code = await self.gateway.find_promotion_code(code)
            coupon = await self._coupon_for(promotion_code) if promotion_code else None
        except stripe.StripeError as e:
            logger.error(f"Error validating promo code: {str(e)}")
            raise HTTPException(status_code=400, detail="Failed to validate promo code")

        if not promotion_code:
            return PromoCodeResponse(is_valid=False, error="Invalid or expired promo code")

        amount_off = stripe_field(coupon, "amount_off")
        return PromoCodeResponse(
            is_valid=True,
            details=PromoCodeDetails(
                id=promotion_code["id"],
                discount_type="fixed" if amount_off else "percentage",
                discount_amount=amount_off / 100 if amount_off else stripe_field(coupon, "percent_off"),
                duration=stripe_field(coupon, "duration"),
                duration_in_months=stripe_field(coupon, "duration_in_months"),
                name=stripe_field(coupon, "name"),
            ),
        )

    async def create_subscription(self, user_id: str, request: CreateSubscriptionRequest) -> CreateSubscriptionResponse:
        """
        Subscribe a listing using the card on file and publish it
        """
        service_type = _parse_service_type(request.service_type)
        price_id = _require_price_id(service_type, request.tier_type, request.is_annual)

        payment_method = await self.repository.get_payment_method(user_id)
        if not payment_method:
            raise HTTPException(status_code=400, detail="No payment method found")

        metadata = _subscription_metadata(user_id, service_type, request.tier_type, request.is_annual, request.listing_id)
        metadata["isTrial"] = "false"

        promotion_code_id = None
        is_trial = False
        if request.promo_code:
            coupon = None
            try:
                promotion_code = await self.gateway.find_promotion_code(request.promo_code.strip())
                if promotion_code:
                    coupon = await self._coupon_for(promotion_code)
            except stripe.StripeError as e:
                logger.error(f"Error looking up promo code: {str(e)}")
                promotion_code = None
            if not promotion_code:
                raise HTTPException(status_code=400, detail="Invalid promo code")
            promotion_code_id = promotion_code["id"]
            if stripe_field(stripe_field(coupon, "metadata"), "isTrial") == "true":
                is_trial = True
                metadata["isTrial"] = "true"
                metadata["trialPromoCode"] = request.promo_code

        try:
            subscription = await self.gateway.create_subscription(
                customer_id=payment_method["stripe_customer_id"],
                items=[{"price": price_id}],
                payment_method_id=payment_method["stripe_payment_method_id"],
                metadata=metadata,
                promotion_code_id=promotion_code_id,
            )
        except stripe.CardError as e:
            logger.warning(f"Card declined creating subscription for user {user_id}: {str(e)}")
            raise HTTPException(status_code=402, detail="Your card was declined")
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating subscription for user {user_id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to create subscription")

        record = SubscriptionRecord(
            user_id=user_id,
            listing_id=request.listing_id,
            stripe_subscription_id=subscription["id"],
            stripe_customer_id=payment_method["stripe_customer_id"],
            status=SubscriptionStatus(subscription["status"]),
            service_type=service_type,
            tier_type=request.tier_type,
            is_annual=request.is_annual,
            is_trial=is_trial,
            current_period_end=current_period_end(subscription),
        )
        await self.repository.upsert_subscription(record)
        await self.repository.publish_listing(service_type, request.listing_id)

        logger.info(f"Created subscription {subscription['id']} for user {user_id}, listing {request.listing_id}")
        return CreateSubscriptionResponse(
            subscription_id=subscription["id"],
            redirect_url=f"/services/{service_type.url_slug}/{request.listing_id}",
        )

    async def cancel_subscription(self, user_id: str, stripe_subscription_id: str) -> CancelSubscriptionResponse:
        """
        Cancel at the end of the paid period, without proration
        """
        row = await self._get_owned_subscription(user_id, stripe_subscription_id)

        try:
            canceled = await self.gateway.schedule_cancellation(stripe_subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe error canceling subscription {stripe_subscription_id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to cancel subscription")

        period_end = current_period_end(canceled)
        await self.repository.update_subscription(row["id"], {
            "status": canceled["status"],
            "cancel_at_period_end": True,
            "current_period_end": period_end.isoformat() if period_end else None,
        })

        logger.info(f"Subscription {stripe_subscription_id} will cancel at period end for user {user_id}")
        return CancelSubscriptionResponse(
            message="Subscription will be cancelled at the end of the billing period",
            effective_date=period_end,
            remaining_days=_remaining_days(period_end),
            will_be_charged_again=False,
        )

    async def reactivate_subscription(self, user_id: str, stripe_subscription_id: str) -> ReactivateSubscriptionResponse:
        """
        Undo a scheduled cancellation, or start a new subscription on the
        same prices when the old one has ended. Subscriptions that are
        neither live nor ended are left alone.
        """
        row = await self._get_owned_subscription(user_id, stripe_subscription_id)
        service_type = ServiceType.parse(row["service_type"])

        try:
            current = await self.gateway.retrieve_subscription(stripe_subscription_id)
            if current["status"] in LIVE_STATUSES:
                reactivated = await self.gateway.resume_subscription(stripe_subscription_id)
            elif current["status"] not in ENDED_STATUSES:
                # unpaid, paused and incomplete subscriptions are still open on Stripe
                raise HTTPException(
                    status_code=400,
                    detail=f"Subscription cannot be reactivated while {current['status']}",
                )
            else:
                payment_method = await self.repository.get_payment_method(user_id)
                items = [
                    {"price": stripe_id(item["price"]), "quantity": stripe_field(item, "quantity", 1)}
                    for item in current["items"]["data"]
                ]
                reactivated = await self.gateway.create_subscription(
                    customer_id=row["stripe_customer_id"],
                    items=items,
                    payment_method_id=payment_method["stripe_payment_method_id"] if payment_method else None,
                    metadata={
                        "userId": user_id,
                        "serviceType": service_type.value,
                        "tierType": row.get("tier_type") or "",
                        "isAnnual": "true" if row.get("is_annual") else "false",
                        "listing_id": row["listing_id"],
                    },
                )
        except stripe.StripeError as e:
            logger.error(f"Stripe error reactivating subscription {stripe_subscription_id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to reactivate subscription")

        period_end = current_period_end(reactivated)
        await self.repository.update_subscription(row["id"], {
            "stripe_subscription_id": reactivated["id"],
            "status": reactivated["status"],
            "cancel_at_period_end": False,
            "current_period_end": period_end.isoformat() if period_end else None,
        })
        await self.repository.publish_listing(service_type, row["listing_id"])

        logger.info(f"Reactivated subscription {stripe_subscription_id} as {reactivated['id']} for user {user_id}")
        return ReactivateSubscriptionResponse(
            message="Subscription reactivated successfully",
            stripe_subscription_id=reactivated["id"],
            status=SubscriptionStatus(reactivated["status"]),
            current_period_end=period_end,
        )

    async def get_billing_data(self, user_id: str) -> BillingDataResponse:
        subscriptions = await self.repository.list_subscriptions(user_id)
        payment_method = await self.repository.get_payment_method(user_id)
        listings = await self.repository.list_listings(user_id)
        return BillingDataResponse(
            subscriptions=subscriptions,
            payment_method=_public_payment_method(payment_method),
            listings=listings,
        )

    async def list_invoices(self, user_id: str) -> List[InvoiceSummary]:
        """
        Invoices across every Stripe customer the user has billed under, newest first
        """
        invoices = []
        try:
            for customer_id in await self._customer_ids(user_id):
                invoices.extend(await self.gateway.list_invoices(customer_id))
        except stripe.StripeError as e:
            logger.error(f"Stripe error listing invoices for user {user_id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to fetch invoices")

        summaries = [_invoice_summary(invoice) for invoice in invoices]
        summaries.sort(key=lambda invoice: invoice.created or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return summaries

    async def _get_owned_subscription(self, user_id: str, stripe_subscription_id: str) -> Dict[str, Any]:
        row = await self.repository.get_subscription_for_user(user_id, stripe_subscription_id)
        if not row:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Subscription not found or unauthorized",
            )
        return row

    async def _customer_ids(self, user_id: str) -> List[str]:
        """Distinct Stripe customers of the user, stored card first"""
        customer_ids = []
        payment_method = await self.repository.get_payment_method(user_id)
        if payment_method and payment_method.get("stripe_customer_id"):
            customer_ids.append(payment_method["stripe_customer_id"])
        for subscription in await self.repository.list_subscriptions(user_id):
            customer_id = subscription.get("stripe_customer_id")
            if customer_id and customer_id not in customer_ids:
                customer_ids.append(customer_id)
        return customer_ids

    async def _find_customer_id(self, user_id: str) -> Optional[str]:
        customer_ids = await self._customer_ids(user_id)
        return customer_ids[0] if customer_ids else None

    async def _coupon_for(self, promotion_code):
        coupon = promotion_coupon(promotion_code)
        if isinstance(coupon, str):
            coupon = await self.gateway.retrieve_coupon(coupon)
        return coupon


def _parse_service_type(value: str) -> ServiceType:
    try:
        return ServiceType.parse(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _require_price_id(service_type: ServiceType, tier: TierType, is_annual: bool) -> str:
    price_id = get_price_id(service_type, tier, is_annual)
    if not price_id:
        raise HTTPException(status_code=400, detail="Plan not configured")
    return price_id


def _subscription_metadata(user_id: str, service_type: ServiceType, tier: TierType, is_annual: bool, listing_id: str) -> Dict[str, str]:
    return {
        "userId": user_id,
        "serviceType": service_type.value,
        "tierType": tier.value,
        "isAnnual": "true" if is_annual else "false",
        "listing_id": listing_id,
    }


def _remaining_days(period_end: Optional[datetime]) -> int:
    if not period_end:
        return 0
    seconds = (period_end - datetime.now(timezone.utc)).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def _public_payment_method(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    return {
        "card_brand": row.get("card_brand"),
        "last_4": row.get("last_4"),
        "exp_month": row.get("exp_month"),
        "exp_year": row.get("exp_year"),
        "is_default": row.get("is_default", True),
    }


def _invoice_summary(invoice) -> InvoiceSummary:
    subscription = stripe_field(invoice, "subscription")
    if subscription is None:
        # Newer API versions nest the subscription under the invoice parent
        details = stripe_field(stripe_field(invoice, "parent"), "subscription_details")
        subscription = stripe_field(details, "subscription")
    created = stripe_field(invoice, "created")
    return InvoiceSummary(
        id=invoice["id"],
        number=stripe_field(invoice, "number"),
        created=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
        amount_paid=stripe_field(invoice, "amount_paid", 0) / 100,
        amount_due=stripe_field(invoice, "amount_due", 0) / 100,
        status=stripe_field(invoice, "status"),
        subscription_id=stripe_id(subscription),
        hosted_invoice_url=stripe_field(invoice, "hosted_invoice_url"),
    )
