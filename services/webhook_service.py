"""
Stripe webhook reconciliation for listing subscriptions and stored cards
"""
import logging
from typing import Optional, Dict, Any, List

import stripe

from models.listing import ServiceType
from models.payment_method import PaymentMethodRecord
from models.subscription import SubscriptionRecord, SubscriptionStatus, TierType
from services.billing_repository import BillingRepository
from services.errors import (
    PaymentMethodReplacementError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from services.stripe_gateway import ENDED_STATUSES, StripeGateway, current_period_end, stripe_field, stripe_id

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
SETUP_INTENT_SUCCEEDED = "setup_intent.succeeded"


class PaymentEventReconciler:
    """
    Applies verified Stripe events to the subscriptions and payment_methods
    tables. Every procedure converges on replay: subscriptions are upserted
    per (user, listing) and the stored card is replaced wholesale.
    """

    def __init__(
        self,
        gateway: StripeGateway,
        repository: BillingRepository,
        webhook_secret: str,
        tolerance: int = 300,
    ):
        if not webhook_secret:
            raise ValueError("Stripe webhook secret is required")
        self.gateway = gateway
        self.repository = repository
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance
        self._handlers = {
            CHECKOUT_SESSION_COMPLETED: self.handle_checkout_completed,
            SETUP_INTENT_SUCCEEDED: self.handle_setup_intent_succeeded,
        }

    def verify_event(self, payload: bytes, signature: Optional[str]) -> stripe.Event:
        """
        Check the signature over the exact request bytes and build the event
        """
        if not signature:
            raise WebhookSignatureError("Missing stripe-signature header")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret, self.tolerance)
        except ValueError as e:
            raise WebhookSignatureError("Webhook payload is not a valid event") from e
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(str(e)) from e

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and dispatch one webhook delivery.

        Raises WebhookSignatureError before touching anything when the
        delivery is not authentic. Any other exception means reconciliation
        failed and the delivery should be retried.
        """
        event = self.verify_event(payload, signature)
        event_id = stripe_field(event, "id")
        event_type = stripe_field(event, "type")
        logger.info(f"Processing webhook event {event_id}: {event_type}")

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Ignoring webhook event type: {event_type}")
            return {"received": True}

        data_object = stripe_field(stripe_field(event, "data"), "object")
        if data_object is None:
            raise WebhookPayloadError(f"Event {event_id} has no data.object")

        await handler(data_object)
        return {"received": True}

    async def handle_checkout_completed(self, session) -> None:
        """Record the purchased subscription, store the card and publish the listing"""
        session_id = stripe_field(session, "id")
        metadata = stripe_field(session, "metadata")
        user_id = stripe_field(metadata, "userId")
        listing_id = stripe_field(metadata, "listing_id")
        if not user_id or not listing_id:
            raise WebhookPayloadError(f"Checkout session {session_id} is missing userId or listing_id metadata")
        try:
            service_type = ServiceType.parse(stripe_field(metadata, "serviceType"))
        except ValueError as e:
            raise WebhookPayloadError(str(e)) from e

        subscription_id = stripe_id(stripe_field(session, "subscription"))
        if not subscription_id:
            raise WebhookPayloadError(f"Checkout session {session_id} has no subscription")

        subscription = await self.gateway.retrieve_subscription(subscription_id)
        customer_id = stripe_id(subscription["customer"])

        payment_intent_id = stripe_id(stripe_field(session, "payment_intent"))
        if payment_intent_id:
            payment_intent = await self.gateway.retrieve_payment_intent(payment_intent_id)
            payment_method_id = stripe_id(stripe_field(payment_intent, "payment_method"))
            if payment_method_id:
                payment_method = await self.gateway.retrieve_payment_method(payment_method_id)
                await self.replace_default_payment_method(
                    user_id,
                    customer_id,
                    payment_method,
                    subscription_id=subscription["id"],
                )

        record = SubscriptionRecord(
            user_id=user_id,
            listing_id=listing_id,
            stripe_subscription_id=subscription["id"],
            stripe_customer_id=customer_id,
            status=SubscriptionStatus(subscription["status"]),
            service_type=service_type,
            tier_type=_parse_tier(stripe_field(metadata, "tierType")),
            is_annual=stripe_field(metadata, "isAnnual") == "true",
            is_trial=stripe_field(metadata, "isTrial") == "true",
            current_period_end=current_period_end(subscription),
            cancel_at_period_end=bool(stripe_field(subscription, "cancel_at_period_end", False)),
        )
        await self.repository.upsert_subscription(record)
        await self.repository.publish_listing(service_type, listing_id)

        logger.info(f"Checkout completed for user {user_id}, listing {listing_id} ({service_type.value})")

    async def handle_setup_intent_succeeded(self, setup_intent) -> None:
        """Make the newly saved card the user's only stored payment method"""
        setup_intent_id = stripe_field(setup_intent, "id")
        payment_method_id = stripe_id(stripe_field(setup_intent, "payment_method"))
        customer_id = stripe_id(stripe_field(setup_intent, "customer"))
        if not payment_method_id or not customer_id:
            logger.info(f"Setup intent {setup_intent_id} has no payment method or customer, nothing to store")
            return

        user_id = stripe_field(stripe_field(setup_intent, "metadata"), "userId")
        if not user_id:
            raise WebhookPayloadError(f"Setup intent {setup_intent_id} is missing userId metadata")

        payment_method = await self.gateway.retrieve_payment_method(payment_method_id)
        try:
            await self.replace_default_payment_method(user_id, customer_id, payment_method)
        except PaymentMethodReplacementError:
            logger.warning(f"Detaching payment method {payment_method_id} after failed store for user {user_id}")
            try:
                await self.gateway.detach_payment_method(payment_method_id)
            except Exception as detach_error:
                logger.error(f"Compensating detach of {payment_method_id} failed: {str(detach_error)}")
            raise

        logger.info(f"Setup intent succeeded for user {user_id}, payment method {payment_method_id}")

    async def replace_default_payment_method(
        self,
        user_id: str,
        customer_id: str,
        payment_method,
        subscription_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Replace whatever card the user has on file with ``payment_method``.

        Old cards are detached from Stripe on a best-effort basis. The new
        card becomes the default of the customer and of every subscription
        that can still bill (``subscription_id`` included) before the local
        delete-and-insert runs as one atomic call.
        """
        new_payment_method_id = payment_method["id"]

        existing = await self.repository.list_payment_methods(user_id)
        for row in existing:
            old_payment_method_id = row.get("stripe_payment_method_id")
            # A replayed event must not detach the card it is installing
            if not old_payment_method_id or old_payment_method_id == new_payment_method_id:
                continue
            try:
                await self.gateway.detach_payment_method(old_payment_method_id)
            except stripe.StripeError as e:
                logger.warning(f"Could not detach old payment method {old_payment_method_id} for user {user_id}: {str(e)}")

        await self.gateway.set_customer_default_payment_method(customer_id, new_payment_method_id)
        for billed_subscription_id in await self._billing_subscription_ids(customer_id, subscription_id):
            await self.gateway.set_subscription_default_payment_method(billed_subscription_id, new_payment_method_id)

        card = stripe_field(payment_method, "card", {})
        record = PaymentMethodRecord(
            user_id=user_id,
            stripe_payment_method_id=new_payment_method_id,
            stripe_customer_id=customer_id,
            is_default=True,
            last_4=stripe_field(card, "last4"),
            card_brand=stripe_field(card, "brand"),
            exp_month=stripe_field(card, "exp_month"),
            exp_year=stripe_field(card, "exp_year"),
            card_fingerprint=stripe_field(card, "fingerprint"),
        )
        return await self.repository.replace_payment_method(record)

    async def _billing_subscription_ids(self, customer_id: str, subscription_id: Optional[str] = None) -> List[str]:
        subscription_ids = [subscription_id] if subscription_id else []
        for subscription in await self.gateway.list_customer_subscriptions(customer_id):
            if subscription["status"] in ENDED_STATUSES or subscription["id"] in subscription_ids:
                continue
            subscription_ids.append(subscription["id"])
        return subscription_ids


def _parse_tier(value: Optional[str]) -> Optional[TierType]:
    if not value:
        return None
    try:
        return TierType(value)
    except ValueError:
        logger.warning(f"Unknown tier type in metadata: {value}")
        return None
