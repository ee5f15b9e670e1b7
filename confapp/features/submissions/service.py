"""
Submission lifecycle.

DRAFT -> PAYMENT_PENDING -> SUBMITTED -> DECISION_MADE

Every operation mutates the submission and appends its timeline event in the
caller's session; ``get_db`` commits both together or neither.
"""
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.errors import (
    BadRequestError,
    FileTooLargeError,
    FileTypeNotAllowedError,
    ForbiddenError,
    InvalidStatusError,
    NotFoundError,
    PaymentRequiredError,
)
from confapp.features.organizations.models import Conference, ConferenceSettings, Track
from confapp.features.organizations.service import get_settings_or_raise
from confapp.features.payments import service as payments
from confapp.features.payments.models import PaymentIntent, PaymentStatus
from confapp.features.submissions.models import (
    PRE_SUBMISSION_STATUSES,
    FileVersion,
    Submission,
    SubmissionFile,
    SubmissionStatus,
    SubmissionTimelineEvent,
    TimelineEventType,
)
from confapp.features.submissions.storage import StorageProvider
from confapp.features.submissions.timeline import append_event, list_events
from confapp.utils import get_logger


log = get_logger(__name__)


@dataclass
class FileUpload:
    """Uploaded file contents plus client-declared attributes."""
    original_name: str
    mime_type: str
    data: bytes
    checksum: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class SubmissionDetail:
    submission: Submission
    timeline: list[SubmissionTimelineEvent] = field(default_factory=list)
    files: list[SubmissionFile] = field(default_factory=list)
    payment: Optional[PaymentIntent] = None


# ============================================================================
# Helpers
# ============================================================================

async def get_submission_or_raise(db: AsyncSession, org_id: str, submission_id: str) -> Submission:
    result = await db.execute(
        select(Submission).where(
            Submission.id == submission_id,
            Submission.org_id == org_id,
            Submission.is_deleted == False,  # noqa: E712
        )
    )
    submission = result.scalar_one_or_none()
    if submission is None:
        raise NotFoundError("Submission not found", code="SUBMISSION_NOT_FOUND")
    return submission


def assert_author(submission: Submission, user_id: str) -> None:
    if str(submission.created_by_user_id) != str(user_id):
        raise ForbiddenError("You do not own this submission")


def assert_status(submission: Submission, allowed: frozenset, message: str) -> None:
    if submission.status not in allowed:
        raise InvalidStatusError(message, details={"status": submission.status.value})


def validate_file_rules(settings: ConferenceSettings, upload: FileUpload) -> None:
    """Apply the conference's max size and MIME type rules."""
    max_mb = settings.max_file_size_mb
    if max_mb and upload.size_bytes > max_mb * 1024 * 1024:
        raise FileTooLargeError(
            f"File exceeds max size of {max_mb} MB",
            details={"maxFileSizeMb": max_mb, "sizeBytes": upload.size_bytes},
        )
    allowed_types = settings.allowed_types or []
    if allowed_types and upload.mime_type not in allowed_types:
        raise FileTypeNotAllowedError(
            "File type is not allowed",
            details={"mimeType": upload.mime_type, "allowedTypes": allowed_types},
        )


def payment_gate_applies(settings: ConferenceSettings) -> bool:
    """Submit needs a PAID intent only for paid conferences that require it."""
    return settings.payment_required_before_submit and settings.requires_payment


async def _set_status(
    db: AsyncSession,
    submission: Submission,
    status: SubmissionStatus,
    event_type: TimelineEventType,
    actor_user_id: str,
    payload: Optional[dict[str, Any]] = None,
) -> None:
    previous = submission.status
    submission.status = status
    await append_event(db, submission.org_id, submission.id, event_type, actor_user_id, payload)
    log.info(f"Submission {submission.id}: {previous.value} -> {status.value} ({event_type.value})")


async def _store_file(
    db: AsyncSession,
    storage: StorageProvider,
    submission: Submission,
    upload: FileUpload,
    version: FileVersion,
    user_id: str,
) -> SubmissionFile:
    storage_key = await storage.put_object(submission.org_id, submission.id, upload.original_name, upload.data)
    record = SubmissionFile(
        org_id=submission.org_id,
        submission_id=submission.id,
        version=version,
        storage_key=storage_key,
        original_name=upload.original_name,
        mime_type=upload.mime_type,
        size_bytes=upload.size_bytes,
        checksum=upload.checksum or hashlib.sha256(upload.data).hexdigest(),
        uploaded_by_user_id=user_id,
    )
    db.add(record)
    await db.flush()

    await append_event(
        db, submission.org_id, submission.id, TimelineEventType.FILE_UPLOADED, user_id,
        {"version": version.value, "storageKey": storage_key, "originalName": upload.original_name},
    )
    log.info(f"Stored {version.value} file {record.id} for submission {submission.id}")
    return record


# ============================================================================
# Author operations
# ============================================================================

async def create_draft(
    db: AsyncSession,
    org_id: str,
    user_id: str,
    conference_id: str,
    track_id: str,
    metadata: dict[str, Any],
) -> Submission:
    """Create a DRAFT submission in a track of the conference."""
    conference = await db.get(Conference, conference_id)
    if conference is None or conference.is_deleted or conference.org_id != org_id:
        raise NotFoundError("Conference not found for this org", code="CONFERENCE_NOT_FOUND")

    track = await db.get(Track, track_id)
    if track is None or track.is_deleted or track.conference_id != conference_id:
        raise NotFoundError("Track not found for this conference", code="TRACK_NOT_FOUND")

    submission = Submission(
        org_id=org_id,
        conference_id=conference_id,
        track_id=track_id,
        created_by_user_id=user_id,
        meta=dict(metadata),
        status=SubmissionStatus.DRAFT,
    )
    db.add(submission)
    await db.flush()

    await append_event(
        db, org_id, submission.id, TimelineEventType.CREATED, user_id,
        {"conferenceId": conference_id, "trackId": track_id},
    )
    log.info(f"Created draft submission {submission.id} in conference {conference_id}")
    return submission


async def update_draft(
    db: AsyncSession, org_id: str, submission_id: str, user_id: str, metadata: dict[str, Any]
) -> Submission:
    """Merge metadata changes into a DRAFT submission."""
    submission = await get_submission_or_raise(db, org_id, submission_id)
    assert_author(submission, user_id)
    assert_status(submission, frozenset({SubmissionStatus.DRAFT}), "Submission is not editable")

    submission.meta = {**(submission.meta or {}), **metadata}
    await append_event(
        db, org_id, submission.id, TimelineEventType.STATUS_CHANGED, user_id,
        {"status": submission.status.value, "changed": "metadata"},
    )
    return submission


async def upload_file(
    db: AsyncSession,
    storage: StorageProvider,
    org_id: str,
    submission_id: str,
    user_id: str,
    upload: FileUpload,
) -> SubmissionFile:
    """Store the author's ``v1`` file while the submission is pre-submission."""
    submission = await get_submission_or_raise(db, org_id, submission_id)
    assert_author(submission, user_id)
    assert_status(submission, PRE_SUBMISSION_STATUSES, "Cannot upload file for this submission status")

    settings = await get_settings_or_raise(db, org_id, submission.conference_id)
    validate_file_rules(settings, upload)

    return await _store_file(db, storage, submission, upload, FileVersion.V1, user_id)


async def create_payment_intent(
    db: AsyncSession, org_id: str, submission_id: str, user_id: str
) -> PaymentIntent:
    """
    Create the payment intent and hold the submission in PAYMENT_PENDING.

    Free conferences get an intent that is already PAID, but the submission
    still passes through PAYMENT_PENDING.
    """
    submission = await get_submission_or_raise(db, org_id, submission_id)
    assert_author(submission, user_id)
    assert_status(submission, PRE_SUBMISSION_STATUSES, "Payment is not possible in this submission status")

    settings = await get_settings_or_raise(db, org_id, submission.conference_id)
    intent = await payments.create_intent(db, submission, settings, user_id)

    if submission.status != SubmissionStatus.PAYMENT_PENDING:
        await _set_status(
            db, submission, SubmissionStatus.PAYMENT_PENDING, TimelineEventType.STATUS_CHANGED, user_id,
            {"status": SubmissionStatus.PAYMENT_PENDING.value},
        )
    return intent


async def confirm_payment(
    db: AsyncSession, org_id: str, provider_ref: str, actor_user_id: Optional[str] = None
) -> PaymentIntent:
    """External payment confirmation; the submission status is left unchanged."""
    return await payments.mark_paid_by_provider_ref(db, org_id, provider_ref, actor_user_id)


async def submit(db: AsyncSession, org_id: str, submission_id: str, user_id: str) -> Submission:
    """
    Move a pre-submission submission to SUBMITTED.

    Raises:
        PaymentRequiredError: the conference charges a fee, requires payment
            before submit and the latest intent is not PAID
    """
    submission = await get_submission_or_raise(db, org_id, submission_id)
    assert_author(submission, user_id)
    assert_status(
        submission, PRE_SUBMISSION_STATUSES, "Submission cannot be submitted in its current state"
    )

    settings = await get_settings_or_raise(db, org_id, submission.conference_id)
    if payment_gate_applies(settings):
        intent = await payments.latest_intent(db, org_id, submission.id)
        if intent is None or intent.status != PaymentStatus.PAID:
            raise PaymentRequiredError()

    await _set_status(
        db, submission, SubmissionStatus.SUBMITTED, TimelineEventType.SUBMITTED, user_id,
        {"status": SubmissionStatus.SUBMITTED.value},
    )
    return submission


async def list_my_submissions(
    db: AsyncSession, org_id: str, user_id: str, conference_id: Optional[str] = None
) -> list[Submission]:
    stmt = select(Submission).where(
        Submission.org_id == org_id,
        Submission.created_by_user_id == user_id,
        Submission.is_deleted == False,  # noqa: E712
    )
    if conference_id:
        stmt = stmt.where(Submission.conference_id == conference_id)
    result = await db.execute(stmt.order_by(Submission.created_at.desc()))
    return list(result.scalars().all())


async def list_files(db: AsyncSession, org_id: str, submission_id: str) -> list[SubmissionFile]:
    result = await db.execute(
        select(SubmissionFile)
        .where(
            SubmissionFile.org_id == org_id,
            SubmissionFile.submission_id == submission_id,
            SubmissionFile.is_deleted == False,  # noqa: E712
        )
        .order_by(SubmissionFile.uploaded_at, SubmissionFile.id)
    )
    return list(result.scalars().all())


async def get_submission_detail(
    db: AsyncSession, org_id: str, submission_id: str, user_id: Optional[str] = None
) -> SubmissionDetail:
    """
    Submission with its timeline, files and latest payment intent.

    When ``user_id`` is given the caller must own the submission.
    """
    submission = await get_submission_or_raise(db, org_id, submission_id)
    if user_id is not None:
        assert_author(submission, user_id)

    return SubmissionDetail(
        submission=submission,
        timeline=await list_events(db, org_id, submission_id),
        files=await list_files(db, org_id, submission_id),
        payment=await payments.latest_intent(db, org_id, submission_id),
    )


# ============================================================================
# Admin operations
# ============================================================================

async def admin_list_submissions(
    db: AsyncSession,
    org_id: str,
    conference_id: Optional[str] = None,
    track_id: Optional[str] = None,
    status: Optional[SubmissionStatus] = None,
    skip: int = 0,
    limit: int = 100,
) -> list[Submission]:
    stmt = select(Submission).where(Submission.org_id == org_id, Submission.is_deleted == False)  # noqa: E712
    if conference_id:
        stmt = stmt.where(Submission.conference_id == conference_id)
    if track_id:
        stmt = stmt.where(Submission.track_id == track_id)
    if status:
        stmt = stmt.where(Submission.status == status)
    result = await db.execute(stmt.order_by(Submission.created_at.desc()).offset(skip).limit(limit))
    return list(result.scalars().all())


async def set_decision(
    db: AsyncSession,
    org_id: str,
    submission_id: str,
    admin_user_id: str,
    decision_status: str,
    notes: Optional[str] = None,
) -> Submission:
    """
    Record a decision and force DECISION_MADE.

    Decisions can be overridden: every call records a new DECISION_SET event.
    """
    submission = await get_submission_or_raise(db, org_id, submission_id)
    settings = await get_settings_or_raise(db, org_id, submission.conference_id)

    decision_status = decision_status.strip().upper()
    vocabulary = [s.upper() for s in settings.decision_statuses or []]
    if vocabulary and decision_status not in vocabulary:
        raise BadRequestError(
            f"Decision status {decision_status} is not configured for this conference",
            code="INVALID_DECISION_STATUS",
            details={"allowed": vocabulary},
        )

    submission.decision_status = decision_status
    submission.decision_notes = notes
    submission.decided_by_id = admin_user_id
    submission.decided_at = datetime.now(timezone.utc)
    await _set_status(
        db, submission, SubmissionStatus.DECISION_MADE, TimelineEventType.DECISION_SET, admin_user_id,
        {"status": decision_status, "notes": notes},
    )
    return submission


async def upload_final_file(
    db: AsyncSession,
    storage: StorageProvider,
    org_id: str,
    submission_id: str,
    admin_user_id: str,
    upload: FileUpload,
) -> SubmissionFile:
    """Store an admin-provided camera-ready ``final`` file."""
    submission = await get_submission_or_raise(db, org_id, submission_id)
    settings = await get_settings_or_raise(db, org_id, submission.conference_id)
    if not settings.allow_admin_upload_final:
        raise ForbiddenError("Admin final upload is disabled", code="FINAL_UPLOAD_NOT_ALLOWED")

    validate_file_rules(settings, upload)
    return await _store_file(db, storage, submission, upload, FileVersion.FINAL, admin_user_id)
