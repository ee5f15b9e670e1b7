"""
AI analysis orchestration.

Implements:
- Consent capture (one record per submission and user, latest capture wins)
- ``trigger_analysis``: precondition gate, dedup by job key, hand-off to an executor
- ``run_analysis``: the QUEUED -> RUNNING -> DONE | FAILED state machine, also
  available as ``start_analysis`` and ``complete_analysis`` for the worker
- Report queries and queue statistics
"""
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.errors import BadRequestError, ForbiddenError, NotFoundError
from confapp.features.ai.extraction import extract_text
from confapp.features.ai.models import (
    ACTIVE_REPORT_STATUSES,
    AIReport,
    AIReportStatus,
    AnalysisJob,
    AnalysisJobStatus,
    ConsentRecord,
    RunBy,
)
from confapp.features.ai.providers import ProviderRegistry
from confapp.features.organizations.models import AIRunMode
from confapp.features.organizations.service import get_settings_or_raise
from confapp.features.submissions.models import Submission, SubmissionFile
from confapp.features.submissions.service import assert_author, get_submission_or_raise
from confapp.features.submissions.storage import StorageProvider
from confapp.utils import get_logger


log = get_logger(__name__)

CORPUS_CANDIDATES = 50
CORPUS_SIZE = 10
MIN_CORPUS_TEXT = 100

TERMINAL_JOB_STATUSES = (AnalysisJobStatus.COMPLETED, AnalysisJobStatus.FAILED)
ORPHANED_REPORT_MESSAGE = "Analysis job ended before the report finished"


class AnalysisExecutor(Protocol):
    async def submit(self, db: AsyncSession, report: AIReport) -> None:
        """Run the report now or arrange for it to run later."""
        ...


def job_key_for(submission_id: str, file_id: str) -> str:
    return f"ai-{submission_id}-{file_id}"


def classify_failure(message: str, provider_label: str = "AI") -> tuple[str, str]:
    """
    Bucket a provider error message into a failure code.

    Returns (code, message shown on the report).
    """
    message = message or ""
    label = provider_label.upper()
    if "API key" in message:
        return "API_KEY_INVALID", f"{label} API key is invalid or missing."
    lowered = message.lower()
    if "rate limit" in lowered:
        return "RATE_LIMIT_EXCEEDED", f"{label} API rate limit exceeded. Please try again later."
    if "quota" in lowered:
        return "QUOTA_EXCEEDED", f"{label} API quota exceeded. Please check billing."
    return "PROCESSING_ERROR", message


# ============================================================================
# Consent
# ============================================================================

async def get_consent(db: AsyncSession, submission_id: str, user_id: str) -> Optional[ConsentRecord]:
    result = await db.execute(
        select(ConsentRecord).where(
            ConsentRecord.submission_id == submission_id,
            ConsentRecord.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def capture_consent(
    db: AsyncSession,
    org_id: str,
    submission_id: str,
    user_id: str,
    consent_ai: bool,
    consent_fine_tune: bool = False,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ConsentRecord:
    """Create or overwrite the author's consent for this submission."""
    submission = await get_submission_or_raise(db, org_id, submission_id)
    assert_author(submission, user_id)

    record = await get_consent(db, submission.id, user_id)
    if record is None:
        try:
            async with db.begin_nested():
                record = ConsentRecord(org_id=org_id, submission_id=submission.id, user_id=user_id)
                db.add(record)
        except IntegrityError:
            record = await get_consent(db, submission.id, user_id)

    record.consent_ai = consent_ai
    record.consent_fine_tune = consent_fine_tune
    record.captured_at = datetime.now(timezone.utc)
    record.ip = ip
    record.user_agent = (user_agent or "")[:500] or None
    await db.flush()

    log.info(f"Captured AI consent for submission {submission.id} (consent_ai={consent_ai})")
    return record


async def has_consent(db: AsyncSession, submission_id: str, user_id: str) -> bool:
    record = await get_consent(db, submission_id, user_id)
    return record is not None and record.consent_ai


# ============================================================================
# Trigger
# ============================================================================

async def get_submission_file(
    db: AsyncSession, org_id: str, submission_id: str, file_id: Optional[str] = None
) -> SubmissionFile:
    """The named file of a submission, or its most recent upload when ``file_id`` is empty."""
    stmt = select(SubmissionFile).where(
        SubmissionFile.org_id == org_id,
        SubmissionFile.submission_id == submission_id,
        SubmissionFile.is_deleted == False,  # noqa: E712
    )
    if file_id:
        stmt = stmt.where(SubmissionFile.id == file_id)
    result = await db.execute(stmt.order_by(SubmissionFile.uploaded_at.desc(), SubmissionFile.id.desc()))
    file = result.scalars().first()
    if file is None:
        raise NotFoundError("File not found", code="FILE_NOT_FOUND")
    return file


async def _active_report(db: AsyncSession, job_key: str) -> Optional[AIReport]:
    """
    The queued or running report for ``job_key``.

    A queued run whose job was re-armed for another report, or already
    ended, will never be picked up again; such reports are failed here so a
    new run can start. Inline reports have no job row.
    """
    result = await db.execute(
        select(AIReport)
        .where(AIReport.job_key == job_key, AIReport.status.in_(ACTIVE_REPORT_STATUSES))
        .order_by(AIReport.created_at.desc())
    )
    reports = list(result.scalars().all())
    if not reports:
        return None

    job_result = await db.execute(select(AnalysisJob).where(AnalysisJob.job_key == job_key))
    job = job_result.scalar_one_or_none()

    active = None
    for report in reports:
        orphaned = job is not None and (
            job.report_id != report.id or job.status in TERMINAL_JOB_STATUSES
        )
        if orphaned:
            log.warning(f"AI report {report.id} has no live job ({job.status.value}); marking FAILED")
            mark_failed(report, "PROCESSING_ERROR", ORPHANED_REPORT_MESSAGE)
        elif active is None:
            active = report
    await db.flush()
    return active


async def trigger_analysis(
    db: AsyncSession,
    executor: AnalysisExecutor,
    org_id: str,
    submission_id: str,
    file_id: Optional[str] = None,
    run_by: RunBy = RunBy.MANUAL,
    user_id: Optional[str] = None,
) -> Optional[AIReport]:
    """
    Start an analysis of one submission file.

    Preconditions are checked in order: submission, file, conference
    settings with AI enabled, author consent (when required), and run mode
    for automatic triggers. An automatic trigger in ``manual_only`` mode
    returns None. While a run for the same file is queued or running, that
    report is returned instead of starting another.

    Raises:
        NotFoundError: submission, file or settings missing
        BadRequestError: AI disabled for the conference
        ForbiddenError: author consent required but not given
    """
    submission = await get_submission_or_raise(db, org_id, submission_id)
    file = await get_submission_file(db, org_id, submission.id, file_id)

    settings = await get_settings_or_raise(db, org_id, submission.conference_id)
    if not settings.ai_enabled:
        raise BadRequestError("AI analysis is not enabled for this conference", code="AI_DISABLED")

    if settings.ai_consent_required and not await has_consent(db, submission.id, submission.created_by_user_id):
        raise ForbiddenError("AI analysis requires author consent", code="CONSENT_REQUIRED")

    if run_by == RunBy.AUTO and settings.ai_run_mode == AIRunMode.MANUAL_ONLY:
        log.info(f"Skipping automatic AI analysis of {submission.id}: manual_only mode")
        return None

    job_key = job_key_for(submission.id, file.id)
    existing = await _active_report(db, job_key)
    if existing is not None:
        log.info(f"AI analysis {job_key} already {existing.status.value}; returning report {existing.id}")
        return existing

    report = AIReport(
        org_id=org_id,
        conference_id=submission.conference_id,
        submission_id=submission.id,
        file_id=file.id,
        job_key=job_key,
        status=AIReportStatus.QUEUED,
        run_by=run_by,
        run_by_user_id=user_id,
    )
    db.add(report)
    await db.flush()
    log.info(f"Queued AI report {report.id} ({job_key}, run_by={run_by.value})")

    await executor.submit(db, report)
    return report


async def auto_trigger_on_submit(
    db: AsyncSession, executor: AnalysisExecutor, submission: Submission
) -> Optional[AIReport]:
    """
    Automatic analysis after submit.

    Only runs when every precondition already holds; a submission is never
    refused because its analysis cannot start.
    """
    settings = await get_settings_or_raise(db, submission.org_id, submission.conference_id)
    if not settings.ai_enabled or settings.ai_run_mode == AIRunMode.MANUAL_ONLY:
        return None
    if settings.ai_consent_required and not await has_consent(db, submission.id, submission.created_by_user_id):
        log.info(f"No AI consent for submission {submission.id}; automatic analysis skipped")
        return None

    result = await db.execute(
        select(func.count(SubmissionFile.id)).where(
            SubmissionFile.submission_id == submission.id,
            SubmissionFile.is_deleted == False,  # noqa: E712
        )
    )
    if not result.scalar_one():
        return None

    return await trigger_analysis(db, executor, submission.org_id, submission.id, run_by=RunBy.AUTO)


# ============================================================================
# Execution
# ============================================================================

async def fetch_corpus(db: AsyncSession, org_id: str, conference_id: str, submission_id: str) -> list[str]:
    """Title and abstract of other submissions in the conference."""
    result = await db.execute(
        select(Submission)
        .where(
            Submission.org_id == org_id,
            Submission.conference_id == conference_id,
            Submission.id != submission_id,
            Submission.is_deleted == False,  # noqa: E712
        )
        .order_by(Submission.created_at.desc())
        .limit(CORPUS_CANDIDATES)
    )
    corpus = []
    for other in result.scalars().all():
        text = f"{other.title}\n{other.abstract}"
        if len(text) > MIN_CORPUS_TEXT:
            corpus.append(text)
    return corpus[:CORPUS_SIZE]


async def run_analysis(
    db: AsyncSession,
    report_id: str,
    registry: ProviderRegistry,
    storage: StorageProvider,
) -> AIReport:
    """
    Execute a QUEUED report.

    Any failure ends the report FAILED with a classified code; results are
    only attached when every step succeeded. Reports that are no longer
    QUEUED are returned untouched.
    """
    report = await start_analysis(db, report_id)
    if report is None:
        return await db.get(AIReport, report_id)
    return await complete_analysis(db, report, registry, storage)


async def start_analysis(db: AsyncSession, report_id: str, resume: bool = False) -> Optional[AIReport]:
    """
    Move a report to RUNNING.

    Returns None when the report cannot start. ``resume`` also accepts a
    RUNNING report, for a job reclaimed after its worker stopped.
    """
    report = await db.get(AIReport, report_id)
    if report is None:
        raise NotFoundError("AI report not found", code="AI_REPORT_NOT_FOUND")
    startable = ACTIVE_REPORT_STATUSES if resume else {AIReportStatus.QUEUED}
    if report.status not in startable:
        log.info(f"AI report {report.id} is {report.status.value}; not running again")
        return None

    report.status = AIReportStatus.RUNNING
    report.started_at = datetime.now(timezone.utc)
    await db.flush()
    return report


async def complete_analysis(
    db: AsyncSession,
    report: AIReport,
    registry: ProviderRegistry,
    storage: StorageProvider,
) -> AIReport:
    """Do the provider work for a RUNNING report and record the outcome."""
    provider_label = "AI"
    try:
        submission = await get_submission_or_raise(db, report.org_id, report.submission_id)
        file = await get_submission_file(db, report.org_id, report.submission_id, report.file_id)
        settings = await get_settings_or_raise(db, report.org_id, report.conference_id)

        providers = settings.ai_providers or {}
        summarization = providers.get("summarization") or {}
        similarity_cfg = providers.get("similarity") or {}
        summarizer = registry.get(summarization.get("name"))
        similarity_provider = registry.get(similarity_cfg.get("name"))
        provider_label = summarizer.name.value

        data = await storage.get_object(file.storage_key)
        text = extract_text(data, file.mime_type)

        log.info(f"AI report {report.id}: summarizing with {summarizer.name.value}")
        summary = await summarizer.generate_summary(text, model=summarization.get("model"))
        format_check = await summarizer.run_format_checks(text, submission.meta)

        corpus = await fetch_corpus(db, report.org_id, report.conference_id, submission.id)
        log.info(f"AI report {report.id}: similarity against {len(corpus)} submissions")
        similarity = await similarity_provider.compute_similarity(
            text,
            corpus,
            threshold_pct=settings.plagiarism_threshold_pct,
            exclude_references=settings.exclude_references,
            model=similarity_cfg.get("model"),
        )
    except Exception as e:
        code, message = classify_failure(str(e), provider_label)
        log.error(f"AI report {report.id} failed ({code}): {e}")
        mark_failed(report, code, message)
        await db.flush()
        return report

    report.summary = summary
    report.format_check = format_check
    report.similarity = similarity
    report.flagged = bool(similarity.get("flagged"))
    report.summarization_provider = summarizer.name.value
    report.similarity_provider = similarity_provider.name.value
    report.failure_code = None
    report.failure_message = None
    report.status = AIReportStatus.DONE
    report.completed_at = datetime.now(timezone.utc)
    await db.flush()

    log.info(f"AI report {report.id} done (similarity={similarity.get('score_pct')}%)")
    return report


def mark_failed(report: AIReport, code: str, message: str) -> None:
    report.summary = None
    report.format_check = None
    report.similarity = None
    report.flagged = None
    report.failure_code = code
    report.failure_message = message
    report.status = AIReportStatus.FAILED
    report.completed_at = datetime.now(timezone.utc)


# ============================================================================
# Queries
# ============================================================================

async def get_report(
    db: AsyncSession, org_id: str, submission_id: str, file_id: Optional[str] = None
) -> Optional[AIReport]:
    """Latest report of a submission, optionally for one file."""
    stmt = select(AIReport).where(AIReport.org_id == org_id, AIReport.submission_id == submission_id)
    if file_id:
        stmt = stmt.where(AIReport.file_id == file_id)
    result = await db.execute(stmt.order_by(AIReport.created_at.desc(), AIReport.id.desc()))
    return result.scalars().first()


async def list_reports(
    db: AsyncSession,
    org_id: str,
    conference_id: str,
    status: Optional[AIReportStatus] = None,
    flagged: Optional[bool] = None,
    limit: int = 100,
    skip: int = 0,
) -> tuple[list[AIReport], int]:
    """Reports of a conference, newest first, with the unpaged total."""
    conditions = [AIReport.org_id == org_id, AIReport.conference_id == conference_id]
    if status is not None:
        conditions.append(AIReport.status == status)
    if flagged is not None:
        conditions.append(AIReport.flagged == flagged)

    total = (await db.execute(select(func.count(AIReport.id)).where(*conditions))).scalar_one()
    result = await db.execute(
        select(AIReport)
        .where(*conditions)
        .order_by(AIReport.created_at.desc(), AIReport.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def queue_stats(db: AsyncSession, org_id: str) -> dict[str, Any]:
    """Analysis job counts for the org, by queue state."""
    result = await db.execute(
        select(AnalysisJob.status, func.count(AnalysisJob.id))
        .where(AnalysisJob.org_id == org_id)
        .group_by(AnalysisJob.status)
    )
    counts = {status: count for status, count in result.all()}
    return {
        "waiting": counts.get(AnalysisJobStatus.PENDING, 0),
        "active": counts.get(AnalysisJobStatus.RUNNING, 0),
        "completed": counts.get(AnalysisJobStatus.COMPLETED, 0),
        "failed": counts.get(AnalysisJobStatus.FAILED, 0),
    }
