"""
Stored payment method model (one card per user)
"""
from pydantic import BaseModel
from typing import Optional, Dict, Any


class PaymentMethodRecord(BaseModel):
    user_id: str
    stripe_payment_method_id: str
    stripe_customer_id: str
    is_default: bool = True
    last_4: Optional[str] = None
    card_brand: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    card_fingerprint: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump()


class SetupIntentRequest(BaseModel):
    email: Optional[str] = None


class SetupIntentResponse(BaseModel):
    client_secret: str
    customer_id: str
