"""
Stripe webhook endpoint
"""
import logging
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from services.errors import WebhookSignatureError
from services.providers import get_reconciler
from services.webhook_service import PaymentEventReconciler

router = APIRouter(prefix="/api", tags=["Stripe Webhook"])
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    reconciler: PaymentEventReconciler = Depends(get_reconciler),
):
    """
    Handle Stripe webhook events.

    400 tells Stripe not to retry a delivery that failed verification;
    500 asks it to retry one whose reconciliation failed.
    """
    # Signature is computed over the exact bytes, never re-serialize
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        result = await reconciler.handle_webhook(payload, signature)
    except WebhookSignatureError as e:
        logger.warning(f"Webhook signature verification failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Webhook signature verification failed"},
        )
    except Exception as e:
        logger.error(f"Webhook processing error: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    return result
