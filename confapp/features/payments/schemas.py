"""
Pydantic schemas for payment intents and confirmation webhooks.
"""
from datetime import datetime
from pydantic import BaseModel, Field

from confapp.features.payments.models import PaymentStatus


class PaymentIntentResponse(BaseModel):
    id: str
    submission_id: str
    conference_id: str
    provider: str
    provider_ref: str
    amount_cents: int
    currency: str
    status: PaymentStatus
    is_superseded: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentWebhook(BaseModel):
    """Provider notification that a payment completed."""
    provider_ref: str = Field(..., min_length=1)
    org_id: str = Field(..., min_length=1)


class PaymentWebhookResponse(BaseModel):
    ok: bool = True
    status: PaymentStatus
