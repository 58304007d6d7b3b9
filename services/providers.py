"""
FastAPI providers that assemble billing services from process configuration
"""
from fastapi import Depends

from auth.middleware import get_auth_middleware
from config.settings import Settings, get_settings
from services.billing_repository import BillingRepository
from services.billing_service import BillingService
from services.stripe_gateway import StripeGateway
from services.webhook_service import PaymentEventReconciler


def get_stripe_gateway(settings: Settings = Depends(get_settings)) -> StripeGateway:
    return StripeGateway(settings.stripe_secret_key)


def get_billing_repository() -> BillingRepository:
    return BillingRepository(get_auth_middleware().supabase)


def get_reconciler(
    settings: Settings = Depends(get_settings),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    repository: BillingRepository = Depends(get_billing_repository),
) -> PaymentEventReconciler:
    return PaymentEventReconciler(
        gateway,
        repository,
        webhook_secret=settings.stripe_webhook_secret,
        tolerance=settings.webhook_tolerance,
    )


def get_billing_service(
    settings: Settings = Depends(get_settings),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    repository: BillingRepository = Depends(get_billing_repository),
) -> BillingService:
    return BillingService(gateway, repository, settings)
