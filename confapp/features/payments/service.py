"""
Payment intent sub-flow.

Implements:
- ``create_intent``: new authoritative intent (already PAID when the conference is free)
- ``latest_intent``: the authoritative intent of a submission
- ``mark_paid_by_provider_ref``: idempotent confirmation, safe under duplicate webhooks
- ``mark_failed`` / ``expire_intent``: the other terminal transitions
"""
import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.errors import InvalidStatusError, NotFoundError
from confapp.features.organizations.models import ConferenceSettings
from confapp.features.payments.models import PaymentIntent, PaymentStatus
from confapp.features.submissions.models import Submission, TimelineEventType
from confapp.features.submissions.timeline import append_event
from confapp.utils import get_logger


log = get_logger(__name__)


async def latest_intent(db: AsyncSession, org_id: str, submission_id: str) -> Optional[PaymentIntent]:
    result = await db.execute(
        select(PaymentIntent).where(
            PaymentIntent.org_id == org_id,
            PaymentIntent.submission_id == submission_id,
            PaymentIntent.is_superseded == False,  # noqa: E712
            PaymentIntent.is_deleted == False,  # noqa: E712
        )
    )
    return result.scalars().first()


async def list_intents(db: AsyncSession, org_id: str, submission_id: str) -> list[PaymentIntent]:
    """Full intent history of a submission, oldest first."""
    result = await db.execute(
        select(PaymentIntent)
        .where(PaymentIntent.org_id == org_id, PaymentIntent.submission_id == submission_id)
        .order_by(PaymentIntent.created_at, PaymentIntent.id)
    )
    return list(result.scalars().all())


async def create_intent(
    db: AsyncSession,
    submission: Submission,
    settings: ConferenceSettings,
    actor_user_id: str,
) -> PaymentIntent:
    """
    Create the authoritative payment intent for a submission.

    A latest intent that is already PAID is returned as is, so a paid
    submission never loses its payment. Free conferences get an intent that
    is PAID on creation and a PAYMENT_CONFIRMED event instead of
    PAYMENT_INTENT_CREATED.
    """
    current = await latest_intent(db, submission.org_id, submission.id)
    if current is not None and current.status == PaymentStatus.PAID:
        return current

    if current is not None:
        current.is_superseded = True

    requires_payment = settings.amount_cents > 0
    intent = PaymentIntent(
        org_id=submission.org_id,
        conference_id=submission.conference_id,
        submission_id=submission.id,
        author_user_id=submission.created_by_user_id,
        provider="stub",
        provider_ref=str(uuid.uuid4()),
        amount_cents=settings.amount_cents,
        currency=settings.currency,
        status=PaymentStatus.CREATED if requires_payment else PaymentStatus.PAID,
    )
    db.add(intent)
    await db.flush()

    if requires_payment:
        await append_event(
            db, submission.org_id, submission.id, TimelineEventType.PAYMENT_INTENT_CREATED, actor_user_id,
            {"paymentIntentId": intent.id, "amountCents": intent.amount_cents, "currency": intent.currency},
        )
    else:
        await append_event(
            db, submission.org_id, submission.id, TimelineEventType.PAYMENT_CONFIRMED, actor_user_id,
            {"paymentIntentId": intent.id, "providerRef": intent.provider_ref},
        )

    log.info(
        f"Created payment intent {intent.id} for submission {submission.id} "
        f"({intent.amount_cents} {intent.currency}, status={intent.status.value})"
    )
    return intent


async def _get_by_provider_ref(db: AsyncSession, org_id: str, provider_ref: str) -> PaymentIntent:
    result = await db.execute(
        select(PaymentIntent).where(
            PaymentIntent.org_id == org_id,
            PaymentIntent.provider_ref == provider_ref,
            PaymentIntent.is_deleted == False,  # noqa: E712
        )
    )
    intent = result.scalar_one_or_none()
    if intent is None:
        raise NotFoundError("Payment intent not found", code="PAYMENT_INTENT_NOT_FOUND")
    return intent


async def _transition_from_created(
    db: AsyncSession, intent: PaymentIntent, target: PaymentStatus
) -> bool:
    """
    Move a CREATED intent to ``target`` with a conditional UPDATE.

    Returns False when another request changed the status first.
    """
    result = await db.execute(
        update(PaymentIntent)
        .where(PaymentIntent.id == intent.id, PaymentIntent.status == PaymentStatus.CREATED)
        .values(status=target)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(intent)
    return result.rowcount == 1


async def _reinstate(db: AsyncSession, intent: PaymentIntent) -> None:
    """Make a paid, previously superseded intent the latest one again."""
    result = await db.execute(
        select(PaymentIntent).where(
            PaymentIntent.submission_id == intent.submission_id,
            PaymentIntent.id != intent.id,
            PaymentIntent.is_superseded == False,  # noqa: E712
        )
    )
    for newer in result.scalars().all():
        newer.is_superseded = True
    intent.is_superseded = False
    await db.flush()
    log.info(f"Payment intent {intent.id} paid after being superseded; reinstated as latest")


async def mark_paid_by_provider_ref(
    db: AsyncSession,
    org_id: str,
    provider_ref: str,
    actor_user_id: Optional[str] = None,
) -> PaymentIntent:
    """
    Confirm a payment reported by the payment provider.

    Confirming an intent that is already PAID succeeds without a second
    PAYMENT_CONFIRMED event. FAILED and EXPIRED intents cannot be confirmed.
    A superseded intent that gets paid becomes the latest intent again, since
    the money was collected. The submission status is not changed here.
    """
    intent = await _get_by_provider_ref(db, org_id, provider_ref)

    if intent.status == PaymentStatus.PAID:
        log.info(f"Payment intent {intent.id} already PAID; confirmation ignored")
        return intent
    if intent.status != PaymentStatus.CREATED:
        raise InvalidStatusError(f"Payment intent is {intent.status.value} and cannot be confirmed")

    if not await _transition_from_created(db, intent, PaymentStatus.PAID):
        if intent.status == PaymentStatus.PAID:
            return intent
        raise InvalidStatusError(f"Payment intent is {intent.status.value} and cannot be confirmed")

    if intent.is_superseded:
        await _reinstate(db, intent)

    await append_event(
        db, intent.org_id, intent.submission_id, TimelineEventType.PAYMENT_CONFIRMED,
        actor_user_id or intent.author_user_id,
        {"paymentIntentId": intent.id, "providerRef": provider_ref},
    )
    log.info(f"Payment intent {intent.id} marked PAID")
    return intent


async def _close(db: AsyncSession, org_id: str, provider_ref: str, target: PaymentStatus) -> PaymentIntent:
    intent = await _get_by_provider_ref(db, org_id, provider_ref)
    if intent.status == target:
        return intent
    if intent.status != PaymentStatus.CREATED or not await _transition_from_created(db, intent, target):
        if intent.status == target:
            return intent
        raise InvalidStatusError(
            f"Payment intent is {intent.status.value} and cannot become {target.value}"
        )
    log.info(f"Payment intent {intent.id} marked {target.value}")
    return intent


async def mark_failed(db: AsyncSession, org_id: str, provider_ref: str) -> PaymentIntent:
    return await _close(db, org_id, provider_ref, PaymentStatus.FAILED)


async def expire_intent(db: AsyncSession, org_id: str, provider_ref: str) -> PaymentIntent:
    return await _close(db, org_id, provider_ref, PaymentStatus.EXPIRED)
