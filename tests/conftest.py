"""
Pytest configuration and shared fakes for the billing backend.
"""
import hashlib
import hmac
import json
import os
import sys
import time
from pathlib import Path

import pytest
import stripe

# Ensure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

WEBHOOK_SECRET = "whsec_test_secret"

os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "service-role-key")

from models.listing import ServiceType  # noqa: E402
from services.errors import PaymentMethodReplacementError  # noqa: E402
from services.webhook_service import PaymentEventReconciler  # noqa: E402


def stripe_object(values):
    """Wrap plain test data the way the Stripe SDK returns API resources."""
    return stripe.StripeObject.construct_from(values, "sk_test_123")


class FakeGateway:
    """
    In-memory stand-in for StripeGateway that records every call. State is
    kept as plain dicts and handed out as Stripe objects.
    """

    def __init__(self):
        self.subscriptions = {}
        self.payment_intents = {}
        self.payment_methods = {}
        self.promotion_codes = {}
        self.coupons = {}
        self.invoices = {}
        self.calls = []
        self.detach_failures = set()

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))

    def calls_named(self, name):
        return [call for call in self.calls if call[0] == name]

    async def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id)
        return stripe_object(self.subscriptions[subscription_id])

    async def retrieve_payment_intent(self, payment_intent_id):
        self._record("retrieve_payment_intent", payment_intent_id)
        return stripe_object(self.payment_intents[payment_intent_id])

    async def retrieve_payment_method(self, payment_method_id):
        self._record("retrieve_payment_method", payment_method_id)
        return stripe_object(self.payment_methods[payment_method_id])

    async def detach_payment_method(self, payment_method_id):
        self._record("detach_payment_method", payment_method_id)
        if payment_method_id in self.detach_failures:
            raise stripe.InvalidRequestError("No such PaymentMethod", "payment_method")
        return stripe_object({"id": payment_method_id, "object": "payment_method", "customer": None})

    async def set_customer_default_payment_method(self, customer_id, payment_method_id):
        self._record("set_customer_default_payment_method", customer_id, payment_method_id)
        return stripe_object({"id": customer_id, "object": "customer"})

    async def set_subscription_default_payment_method(self, subscription_id, payment_method_id):
        self._record("set_subscription_default_payment_method", subscription_id, payment_method_id)
        return stripe_object(self.subscriptions.get(subscription_id, {"id": subscription_id}))

    async def list_customer_subscriptions(self, customer_id):
        self._record("list_customer_subscriptions", customer_id)
        return [
            stripe_object(subscription)
            for subscription in self.subscriptions.values()
            if subscription["customer"] == customer_id
        ]

    async def create_customer(self, email, user_id):
        self._record("create_customer", email, user_id)
        return stripe_object({"id": "cus_new", "object": "customer"})

    async def create_setup_intent(self, customer_id, user_id):
        self._record("create_setup_intent", customer_id, user_id)
        return stripe_object({"id": "seti_1", "object": "setup_intent", "client_secret": "seti_1_secret"})

    async def create_checkout_session(self, price_id, metadata, success_url, cancel_url):
        self._record("create_checkout_session", price_id, metadata=metadata, success_url=success_url, cancel_url=cancel_url)
        return stripe_object({"id": "cs_1", "object": "checkout.session", "url": "https://checkout.stripe.com/c/cs_1"})

    async def create_subscription(self, customer_id, items, payment_method_id, metadata, promotion_code_id=None):
        self._record(
            "create_subscription",
            customer_id,
            items=items,
            payment_method_id=payment_method_id,
            metadata=metadata,
            promotion_code_id=promotion_code_id,
        )
        subscription = make_subscription("sub_created", customer_id)
        self.subscriptions[subscription["id"]] = subscription
        return stripe_object(subscription)

    async def find_promotion_code(self, code):
        self._record("find_promotion_code", code)
        promotion_code = self.promotion_codes.get(code)
        return stripe_object(promotion_code) if promotion_code else None

    async def retrieve_coupon(self, coupon_id):
        self._record("retrieve_coupon", coupon_id)
        return stripe_object(self.coupons[coupon_id])

    async def schedule_cancellation(self, subscription_id):
        self._record("schedule_cancellation", subscription_id)
        subscription = dict(self.subscriptions[subscription_id], cancel_at_period_end=True)
        self.subscriptions[subscription_id] = subscription
        return stripe_object(subscription)

    async def resume_subscription(self, subscription_id):
        self._record("resume_subscription", subscription_id)
        subscription = dict(self.subscriptions[subscription_id], cancel_at_period_end=False)
        self.subscriptions[subscription_id] = subscription
        return stripe_object(subscription)

    async def list_invoices(self, customer_id, limit=100):
        self._record("list_invoices", customer_id)
        return [stripe_object(invoice) for invoice in self.invoices.get(customer_id, [])]


class FakeRepository:
    """In-memory stand-in for BillingRepository with the same invariants."""

    def __init__(self):
        self.subscriptions = {}
        self.payment_methods = []
        self.listings = {service_type.listing_table: {} for service_type in ServiceType}
        self.writes = []
        self.fail_replace = False
        self._next_id = 1

    def add_listing(self, service_type, listing_id, user_id="u1", is_draft=True):
        self.listings[service_type.listing_table][listing_id] = {
            "id": listing_id,
            "user_id": user_id,
            "business_name": f"Listing {listing_id}",
            "is_draft": is_draft,
        }

    def add_payment_method(self, user_id, payment_method_id, customer_id="cus_1"):
        self.payment_methods.append({
            "user_id": user_id,
            "stripe_payment_method_id": payment_method_id,
            "stripe_customer_id": customer_id,
            "is_default": True,
        })

    def payment_methods_for(self, user_id):
        return [row for row in self.payment_methods if row["user_id"] == user_id]

    async def upsert_subscription(self, record):
        self.writes.append(("upsert_subscription", record.user_id, record.listing_id))
        key = (record.user_id, record.listing_id)
        row = record.to_row()
        existing = self.subscriptions.get(key)
        row["id"] = existing["id"] if existing else self._allocate_id()
        row["created_at"] = existing["created_at"] if existing else f"2025-01-0{row['id']}T00:00:00+00:00"
        self.subscriptions[key] = row
        return row

    async def list_payment_methods(self, user_id):
        return [dict(row) for row in self.payment_methods_for(user_id)]

    async def get_payment_method(self, user_id):
        rows = self.payment_methods_for(user_id)
        return dict(rows[0]) if rows else None

    async def replace_payment_method(self, record):
        self.writes.append(("replace_payment_method", record.user_id))
        if self.fail_replace:
            raise PaymentMethodReplacementError(f"Could not store payment method {record.stripe_payment_method_id}")
        self.payment_methods = [row for row in self.payment_methods if row["user_id"] != record.user_id]
        row = record.to_row()
        self.payment_methods.append(row)
        return row

    async def publish_listing(self, service_type, listing_id):
        self.writes.append(("publish_listing", service_type.listing_table, listing_id))
        table = self.listings[service_type.listing_table]
        if listing_id in table:
            table[listing_id]["is_draft"] = False

    async def get_subscription_for_user(self, user_id, stripe_subscription_id):
        for row in self.subscriptions.values():
            if row["user_id"] == user_id and row["stripe_subscription_id"] == stripe_subscription_id:
                return dict(row)
        return None

    async def list_subscriptions(self, user_id):
        rows = [dict(row) for row in self.subscriptions.values() if row["user_id"] == user_id]
        return sorted(rows, key=lambda row: row["created_at"], reverse=True)

    async def update_subscription(self, subscription_row_id, changes):
        self.writes.append(("update_subscription", subscription_row_id))
        for row in self.subscriptions.values():
            if row["id"] == subscription_row_id:
                row.update(changes)

    async def list_listings(self, user_id):
        return {
            service_type.url_slug: [
                row for row in self.listings[service_type.listing_table].values() if row["user_id"] == user_id
            ]
            for service_type in ServiceType
        }

    def _allocate_id(self):
        allocated = self._next_id
        self._next_id += 1
        return allocated


def make_subscription(subscription_id="sub_1", customer_id="cus_1", status="active", period_end=1767225600):
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "current_period_end": period_end,
        "cancel_at_period_end": False,
        "items": {"data": [{"price": {"id": "price_venue_basic"}, "quantity": 1}]},
    }


def make_card(payment_method_id, brand="visa", last4="4242", customer_id="cus_1"):
    return {
        "id": payment_method_id,
        "object": "payment_method",
        "customer": customer_id,
        "card": {
            "brand": brand,
            "last4": last4,
            "exp_month": 12,
            "exp_year": 2030,
            "fingerprint": f"fp_{payment_method_id}",
        },
    }


def checkout_event(
    user_id="u1",
    listing_id="l1",
    service_type="venue",
    payment_intent="pi_1",
    subscription="sub_1",
    event_id="evt_checkout_1",
):
    return {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_1",
                "object": "checkout.session",
                "mode": "subscription",
                "subscription": subscription,
                "payment_intent": payment_intent,
                "customer": "cus_1",
                "metadata": {
                    "userId": user_id,
                    "listing_id": listing_id,
                    "serviceType": service_type,
                    "tierType": "premium",
                    "isAnnual": "true",
                },
            }
        },
    }


def setup_intent_event(user_id="u1", payment_method="pm_new", customer="cus_1", event_id="evt_seti_1"):
    return {
        "id": event_id,
        "object": "event",
        "type": "setup_intent.succeeded",
        "data": {
            "object": {
                "id": "seti_1",
                "object": "setup_intent",
                "payment_method": payment_method,
                "customer": customer,
                "metadata": {"userId": user_id},
            }
        },
    }


def encode_event(event) -> bytes:
    return json.dumps(event).encode("utf-8")


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Build a stripe-signature header the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def gateway():
    fake = FakeGateway()
    fake.subscriptions["sub_1"] = make_subscription()
    fake.payment_intents["pi_1"] = {"id": "pi_1", "object": "payment_intent", "payment_method": "pm_1"}
    fake.payment_methods["pm_1"] = make_card("pm_1")
    fake.payment_methods["pm_new"] = make_card("pm_new", brand="mastercard", last4="4444")
    return fake


@pytest.fixture
def repository():
    fake = FakeRepository()
    fake.add_listing(ServiceType.VENUE, "l1")
    return fake


@pytest.fixture
def reconciler(gateway, repository):
    return PaymentEventReconciler(gateway, repository, webhook_secret=WEBHOOK_SECRET)
