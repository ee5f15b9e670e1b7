"""
Tests for the payment intent sub-flow.
"""
import pytest

from confapp.core.errors import InvalidStatusError, NotFoundError
from confapp.features.payments import service as payments
from confapp.features.payments.models import PaymentStatus
from confapp.features.submissions import service as submissions
from confapp.features.submissions.models import SubmissionStatus, TimelineEventType
from confapp.features.submissions.timeline import list_events

from tests.helpers import PAPER_METADATA, make_tenant, make_user


@pytest.fixture
async def paid_tenant(db):
    return await make_tenant(db, slug="paid", amount_cents=2500, currency="EUR")


async def pending_submission(db, tenant):
    author = await make_user(db, "author@example.com")
    draft = await submissions.create_draft(
        db, tenant.org.id, author.id, tenant.conference.id, tenant.track.id, PAPER_METADATA
    )
    intent = await submissions.create_payment_intent(db, tenant.org.id, draft.id, author.id)
    return author, draft, intent


async def confirmations(db, tenant, submission_id) -> int:
    events = await list_events(db, tenant.org.id, submission_id)
    return sum(1 for e in events if e.type == TimelineEventType.PAYMENT_CONFIRMED)


async def test_intent_copies_conference_price(db, paid_tenant):
    _, draft, intent = await pending_submission(db, paid_tenant)

    assert intent.status == PaymentStatus.CREATED
    assert intent.amount_cents == 2500
    assert intent.currency == "EUR"
    assert intent.provider_ref

    events = await list_events(db, paid_tenant.org.id, draft.id)
    assert TimelineEventType.PAYMENT_INTENT_CREATED in [e.type for e in events]


async def test_confirmation_is_idempotent(db, paid_tenant):
    _, draft, intent = await pending_submission(db, paid_tenant)

    first = await submissions.confirm_payment(db, paid_tenant.org.id, intent.provider_ref)
    second = await submissions.confirm_payment(db, paid_tenant.org.id, intent.provider_ref)

    assert first.status == PaymentStatus.PAID
    assert second.id == first.id
    assert await confirmations(db, paid_tenant, draft.id) == 1


async def test_new_intent_supersedes_previous(db, paid_tenant):
    author, draft, old = await pending_submission(db, paid_tenant)
    new = await submissions.create_payment_intent(db, paid_tenant.org.id, draft.id, author.id)

    assert new.id != old.id
    assert old.is_superseded is True
    latest = await payments.latest_intent(db, paid_tenant.org.id, draft.id)
    assert latest.id == new.id
    assert len(await payments.list_intents(db, paid_tenant.org.id, draft.id)) == 2


async def test_late_payment_of_superseded_intent_unblocks_submit(db, paid_tenant):
    author, draft, old = await pending_submission(db, paid_tenant)
    new = await submissions.create_payment_intent(db, paid_tenant.org.id, draft.id, author.id)

    confirmed = await submissions.confirm_payment(db, paid_tenant.org.id, old.provider_ref)
    assert confirmed.status == PaymentStatus.PAID
    assert confirmed.is_superseded is False
    assert new.is_superseded is True

    latest = await payments.latest_intent(db, paid_tenant.org.id, draft.id)
    assert latest.id == old.id

    submitted = await submissions.submit(db, paid_tenant.org.id, draft.id, author.id)
    assert submitted.status == SubmissionStatus.SUBMITTED
    assert await confirmations(db, paid_tenant, draft.id) == 1


async def test_paid_intent_is_kept_on_retry(db, paid_tenant):
    author, draft, intent = await pending_submission(db, paid_tenant)
    await submissions.confirm_payment(db, paid_tenant.org.id, intent.provider_ref)

    again = await submissions.create_payment_intent(db, paid_tenant.org.id, draft.id, author.id)
    assert again.id == intent.id
    assert again.status == PaymentStatus.PAID


async def test_failed_intent_cannot_be_confirmed(db, paid_tenant):
    _, _, intent = await pending_submission(db, paid_tenant)

    failed = await payments.mark_failed(db, paid_tenant.org.id, intent.provider_ref)
    assert failed.status == PaymentStatus.FAILED

    with pytest.raises(InvalidStatusError):
        await submissions.confirm_payment(db, paid_tenant.org.id, intent.provider_ref)


async def test_paid_intent_cannot_expire(db, paid_tenant):
    _, _, intent = await pending_submission(db, paid_tenant)
    await submissions.confirm_payment(db, paid_tenant.org.id, intent.provider_ref)

    with pytest.raises(InvalidStatusError):
        await payments.expire_intent(db, paid_tenant.org.id, intent.provider_ref)

    confirmed_again = await payments.mark_paid_by_provider_ref(db, paid_tenant.org.id, intent.provider_ref)
    assert confirmed_again.status == PaymentStatus.PAID


async def test_unknown_provider_ref(db, paid_tenant):
    with pytest.raises(NotFoundError) as exc:
        await submissions.confirm_payment(db, paid_tenant.org.id, "does-not-exist")
    assert exc.value.code == "PAYMENT_INTENT_NOT_FOUND"


async def test_provider_ref_is_tenant_scoped(db, paid_tenant):
    other = await make_tenant(db, slug="other")
    _, _, intent = await pending_submission(db, paid_tenant)

    with pytest.raises(NotFoundError):
        await submissions.confirm_payment(db, other.org.id, intent.provider_ref)
