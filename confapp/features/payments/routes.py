"""
Payment routes: provider webhook and manual intent transitions.
"""
import hmac
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core import config
from confapp.core.database.engine import get_db
from confapp.core.errors import NotFoundError, UnauthorizedError
from confapp.features.payments import service as payments
from confapp.features.payments.models import PaymentIntent
from confapp.features.payments.schemas import PaymentIntentResponse, PaymentWebhook, PaymentWebhookResponse
from confapp.features.permissions.claims import ClaimSet
from confapp.features.permissions.dependencies import require_role
from confapp.features.permissions.engine import ScopeRef
from confapp.features.permissions.roles import Role, ScopeKind
from confapp.features.submissions import service as submissions
from confapp.features.users.dependencies import require_tenant_org_id
from confapp.utils import get_logger


log = get_logger(__name__)

router = APIRouter(tags=["payments"])


def verify_webhook_secret(x_shared_secret: Annotated[Optional[str], Header()] = None) -> None:
    """Reject webhook calls that do not carry the configured shared secret."""
    if not config.PAYMENT_WEBHOOK_SECRET:
        raise UnauthorizedError("Payment webhook is not configured")
    if not x_shared_secret or not hmac.compare_digest(x_shared_secret, config.PAYMENT_WEBHOOK_SECRET):
        raise UnauthorizedError("Invalid webhook secret")


async def payment_intent_scope(
    db: AsyncSession, request: Request, tenant_org_id: Optional[str]
) -> ScopeRef:
    """Conference scope of the intent named by ``{provider_ref}``."""
    if not tenant_org_id:
        return ScopeRef.conference(None, None)
    result = await db.execute(
        select(PaymentIntent).where(
            PaymentIntent.org_id == tenant_org_id,
            PaymentIntent.provider_ref == request.path_params["provider_ref"],
        )
    )
    intent = result.scalar_one_or_none()
    if intent is None:
        raise NotFoundError("Payment intent not found", code="PAYMENT_INTENT_NOT_FOUND")
    return ScopeRef.conference(intent.conference_id, intent.org_id)


require_payment_manager = require_role(
    [Role.MANAGER], ScopeKind.CONFERENCE, resolver=payment_intent_scope
)


@router.post(
    "/webhook",
    response_model=PaymentWebhookResponse,
    dependencies=[Depends(verify_webhook_secret)],
)
async def payment_webhook(
    payload: PaymentWebhook,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Provider confirmation callback.

    Duplicate deliveries are acknowledged without side effects.
    """
    intent = await submissions.confirm_payment(db, payload.org_id, payload.provider_ref)
    log.info(f"Webhook confirmed {payload.provider_ref} (status={intent.status.value})")
    return PaymentWebhookResponse(ok=True, status=intent.status)


@router.post("/{provider_ref}/confirm", response_model=PaymentIntentResponse)
async def confirm_intent(
    provider_ref: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(require_payment_manager)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Mark an intent PAID by hand (offline payments)."""
    return await submissions.confirm_payment(db, org_id, provider_ref, claims.user_id)


@router.post("/{provider_ref}/fail", response_model=PaymentIntentResponse)
async def fail_intent(
    provider_ref: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(require_payment_manager)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await payments.mark_failed(db, org_id, provider_ref)


@router.post("/{provider_ref}/expire", response_model=PaymentIntentResponse)
async def expire_intent(
    provider_ref: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(require_payment_manager)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await payments.expire_intent(db, org_id, provider_ref)
