"""
Billing domain exceptions
"""


class BillingError(Exception):
    """Base class for billing failures."""


class WebhookSignatureError(BillingError):
    """Webhook body or signature header did not verify."""


class WebhookPayloadError(BillingError):
    """A verified event lacks data the reconciliation needs."""


class PaymentMethodReplacementError(BillingError):
    """The store rejected the atomic payment method replacement."""
