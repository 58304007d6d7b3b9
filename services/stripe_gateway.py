"""
Stripe API access for marketplace billing
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

import stripe

logger = logging.getLogger(__name__)

# Subscriptions in these states never bill again
ENDED_STATUSES = {"canceled", "incomplete_expired"}


def stripe_id(value) -> Optional[str]:
    """Normalize an id-or-expanded-object reference to its id string."""
    if value is None or isinstance(value, str):
        return value
    return value["id"]


def stripe_field(obj, key: str, default=None):
    """Read an optional field from a Stripe object or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except KeyError:
        return default
    return default if value is None else value


def current_period_end(subscription) -> Optional[datetime]:
    """Billing period end, read from the subscription or its first item."""
    timestamp = stripe_field(subscription, "current_period_end")
    if timestamp is None:
        items = stripe_field(stripe_field(subscription, "items"), "data", [])
        if items:
            timestamp = stripe_field(items[0], "current_period_end")
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def promotion_coupon(promotion_code):
    """Coupon reference of a promotion code; newer API versions nest it under ``promotion``."""
    coupon = stripe_field(stripe_field(promotion_code, "promotion"), "coupon")
    return coupon if coupon is not None else stripe_field(promotion_code, "coupon")


class StripeGateway:
    """
    Thin async wrapper over the Stripe SDK. The API key is passed on every
    call so no process-wide client state is needed.
    """

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("Stripe API key is required")
        self.api_key = api_key

    async def _call(self, func, *args, **kwargs):
        return await asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs)

    # Reconciliation surface

    async def retrieve_subscription(self, subscription_id: str):
        return await self._call(stripe.Subscription.retrieve, subscription_id)

    async def retrieve_payment_intent(self, payment_intent_id: str):
        return await self._call(stripe.PaymentIntent.retrieve, payment_intent_id)

    async def retrieve_payment_method(self, payment_method_id: str):
        return await self._call(stripe.PaymentMethod.retrieve, payment_method_id)

    async def detach_payment_method(self, payment_method_id: str):
        logger.info(f"Detaching payment method {payment_method_id}")
        return await self._call(stripe.PaymentMethod.detach, payment_method_id)

    async def set_customer_default_payment_method(self, customer_id: str, payment_method_id: str):
        return await self._call(
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    async def set_subscription_default_payment_method(self, subscription_id: str, payment_method_id: str):
        return await self._call(
            stripe.Subscription.modify,
            subscription_id,
            default_payment_method=payment_method_id,
        )

    async def list_customer_subscriptions(self, customer_id: str):
        result = await self._call(stripe.Subscription.list, customer=customer_id, status="all", limit=100)
        return list(result["data"])

    # Billing panel surface

    async def create_customer(self, email: Optional[str], user_id: str):
        customer = await self._call(
            stripe.Customer.create,
            email=email,
            metadata={"userId": user_id},
        )
        logger.info(f"Created Stripe customer {customer['id']} for user {user_id}")
        return customer

    async def create_setup_intent(self, customer_id: str, user_id: str):
        return await self._call(
            stripe.SetupIntent.create,
            customer=customer_id,
            payment_method_types=["card"],
            metadata={"userId": user_id},
        )

    async def create_checkout_session(
        self,
        price_id: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ):
        return await self._call(
            stripe.checkout.Session.create,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            metadata=metadata,
            success_url=success_url,
            cancel_url=cancel_url,
        )

    async def create_subscription(
        self,
        customer_id: str,
        items: List[Dict[str, Any]],
        payment_method_id: Optional[str],
        metadata: Dict[str, Any],
        promotion_code_id: Optional[str] = None,
    ):
        params: Dict[str, Any] = {
            "customer": customer_id,
            "items": items,
            "payment_behavior": "error_if_incomplete",
            "metadata": metadata,
        }
        if payment_method_id:
            params["default_payment_method"] = payment_method_id
        if promotion_code_id:
            params["discounts"] = [{"promotion_code": promotion_code_id}]
        return await self._call(stripe.Subscription.create, **params)

    async def find_promotion_code(self, code: str):
        """
        Return the active promotion code matching ``code``, or None
        """
        result = await self._call(
            stripe.PromotionCode.list,
            code=code,
            active=True,
            limit=1,
        )
        data = result["data"]
        return data[0] if data else None

    async def retrieve_coupon(self, coupon_id: str):
        return await self._call(stripe.Coupon.retrieve, coupon_id)

    async def schedule_cancellation(self, subscription_id: str):
        return await self._call(
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=True,
            proration_behavior="none",
        )

    async def resume_subscription(self, subscription_id: str):
        return await self._call(
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=False,
        )

    async def list_invoices(self, customer_id: str, limit: int = 100):
        result = await self._call(stripe.Invoice.list, customer=customer_id, limit=limit)
        return list(result["data"])
