"""
Supabase access for subscriptions, payment methods and listings
"""
import asyncio
import logging
from typing import Optional, Dict, Any, List

from supabase import Client

from config.decorators import retry_on_transient_error
from models.listing import ServiceType
from models.payment_method import PaymentMethodRecord
from models.subscription import SubscriptionRecord
from services.errors import PaymentMethodReplacementError

logger = logging.getLogger(__name__)

SUBSCRIPTION_CONFLICT_TARGET = "user_id,listing_id"

SUBSCRIPTION_COLUMNS = (
    "id, user_id, listing_id, stripe_subscription_id, stripe_customer_id, status, "
    "service_type, tier_type, is_annual, is_trial, current_period_end, "
    "cancel_at_period_end, created_at"
)


@retry_on_transient_error
def _execute(query):
    return query.execute()


class BillingRepository:
    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    async def _run(self, query):
        return await asyncio.to_thread(_execute, query)

    async def upsert_subscription(self, record: SubscriptionRecord) -> Dict[str, Any]:
        """
        Insert or overwrite the subscription for (user, listing) in one statement
        """
        response = await self._run(
            self.supabase.table("subscriptions").upsert(
                record.to_row(),
                on_conflict=SUBSCRIPTION_CONFLICT_TARGET,
            )
        )
        logger.info(f"Upserted subscription {record.stripe_subscription_id} for user {record.user_id}, listing {record.listing_id}")
        return response.data[0] if response.data else record.to_row()

    async def list_payment_methods(self, user_id: str) -> List[Dict[str, Any]]:
        response = await self._run(
            self.supabase.table("payment_methods").select("*").eq("user_id", user_id)
        )
        return response.data or []

    async def get_payment_method(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.list_payment_methods(user_id)
        return rows[0] if rows else None

    async def replace_payment_method(self, record: PaymentMethodRecord) -> Dict[str, Any]:
        """
        Delete every stored payment method for the user and insert ``record``,
        atomically. The database function holds a per-user lock for the
        duration of its transaction.
        """
        params = {f"p_{key}": value for key, value in record.to_row().items()}
        try:
            response = await self._run(self.supabase.rpc("replace_payment_method", params))
        except Exception as e:
            logger.error(f"Error replacing payment method for user {record.user_id}: {str(e)}")
            raise PaymentMethodReplacementError(
                f"Could not store payment method {record.stripe_payment_method_id}"
            ) from e

        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        logger.info(f"Stored payment method {record.stripe_payment_method_id} (last4 {record.last_4}) for user {record.user_id}")
        return data or record.to_row()

    async def publish_listing(self, service_type: ServiceType, listing_id: str) -> None:
        await self._run(
            self.supabase.table(service_type.listing_table).update({"is_draft": False}).eq("id", listing_id)
        )
        logger.info(f"Published {service_type.value} listing {listing_id}")

    async def get_subscription_for_user(self, user_id: str, stripe_subscription_id: str) -> Optional[Dict[str, Any]]:
        response = await self._run(
            self.supabase.table("subscriptions")
            .select(SUBSCRIPTION_COLUMNS)
            .eq("stripe_subscription_id", stripe_subscription_id)
            .eq("user_id", user_id)
            .limit(1)
        )
        return response.data[0] if response.data else None

    async def list_subscriptions(self, user_id: str) -> List[Dict[str, Any]]:
        response = await self._run(
            self.supabase.table("subscriptions")
            .select(SUBSCRIPTION_COLUMNS)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
        )
        return response.data or []

    async def update_subscription(self, subscription_row_id: Any, changes: Dict[str, Any]) -> None:
        await self._run(
            self.supabase.table("subscriptions").update(changes).eq("id", subscription_row_id)
        )

    async def list_listings(self, user_id: str) -> Dict[str, List[Dict[str, Any]]]:
        """
        Return the user's listings per category, keyed by the UI slug
        """
        listings = {}
        for service_type in ServiceType:
            response = await self._run(
                self.supabase.table(service_type.listing_table)
                .select("id, business_name, is_draft, created_at")
                .eq("user_id", user_id)
            )
            listings[service_type.url_slug] = response.data or []
        return listings
