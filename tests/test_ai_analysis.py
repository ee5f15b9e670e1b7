"""
Tests for AI consent, analysis triggering and the report state machine.
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from confapp.core import config
from confapp.core.database.base import utcnow
from confapp.core.errors import BadRequestError, ForbiddenError, NotFoundError
from confapp.features.ai import service as ai
from confapp.features.ai.executors import (
    QueuedExecutor,
    claim_job,
    fail_exhausted_jobs,
    fail_job,
    get_pending_jobs,
    process_job,
)
from confapp.features.ai.extraction import ExtractionError, extract_text
from confapp.features.ai.models import AIReport, AIReportStatus, AnalysisJob, AnalysisJobStatus, RunBy
from confapp.features.ai.providers import (
    GeminiProvider,
    ProviderError,
    ProviderRegistry,
    ngram_similarity,
    remove_references_section,
)
from confapp.features.organizations.models import AIRunMode
from confapp.features.submissions import service as submissions
from confapp.features.submissions.service import FileUpload

from tests.helpers import PAPER_METADATA, PAPER_TEXT, FakeProvider, make_tenant, make_user


ANALYSABLE_TYPES = ["application/pdf", "text/plain"]


class RecordingExecutor:
    """Keeps reports QUEUED so tests can drive ``run_analysis`` themselves."""

    def __init__(self):
        self.reports = []

    async def submit(self, db, report):
        self.reports.append(report)


@pytest.fixture
async def ai_tenant(db):
    return await make_tenant(db, slug="ai", allowed_types=ANALYSABLE_TYPES)


async def submission_with_file(db, tenant, storage, email="author@example.com", text=PAPER_TEXT):
    author = await make_user(db, email)
    draft = await submissions.create_draft(
        db, tenant.org.id, author.id, tenant.conference.id, tenant.track.id, PAPER_METADATA
    )
    upload = FileUpload(original_name="paper.txt", mime_type="text/plain", data=text.encode())
    file = await submissions.upload_file(db, storage, tenant.org.id, draft.id, author.id, upload)
    return author, draft, file


async def consent(db, tenant, draft, author, value=True):
    return await ai.capture_consent(db, tenant.org.id, draft.id, author.id, consent_ai=value)


# =============================================================================
# Consent
# =============================================================================

async def test_consent_is_one_record_per_author(db, ai_tenant, storage):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)

    first = await consent(db, ai_tenant, draft, author, value=False)
    second = await ai.capture_consent(
        db, ai_tenant.org.id, draft.id, author.id, consent_ai=True, ip="10.0.0.1", user_agent="pytest"
    )

    assert second.id == first.id
    assert second.consent_ai is True
    assert second.ip == "10.0.0.1"
    assert await ai.has_consent(db, draft.id, author.id)


async def test_only_the_author_can_consent(db, ai_tenant, storage):
    _, draft, _ = await submission_with_file(db, ai_tenant, storage)
    stranger = await make_user(db, "stranger@example.com")

    with pytest.raises(ForbiddenError):
        await ai.capture_consent(db, ai_tenant.org.id, draft.id, stranger.id, consent_ai=True)


# =============================================================================
# Trigger
# =============================================================================

async def test_trigger_requires_consent(db, ai_tenant, storage, executor):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)

    with pytest.raises(ForbiddenError) as exc:
        await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)
    assert exc.value.code == "CONSENT_REQUIRED"

    await consent(db, ai_tenant, draft, author)
    report = await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)
    assert report.status == AIReportStatus.DONE


async def test_trigger_without_consent_requirement(db, storage, executor):
    tenant = await make_tenant(db, slug="open", allowed_types=ANALYSABLE_TYPES, ai_consent_required=False)
    _, draft, _ = await submission_with_file(db, tenant, storage)

    report = await ai.trigger_analysis(db, executor, tenant.org.id, draft.id)
    assert report.status == AIReportStatus.DONE


async def test_trigger_when_ai_disabled(db, storage, executor):
    tenant = await make_tenant(db, slug="off", allowed_types=ANALYSABLE_TYPES, ai_enabled=False)
    author, draft, _ = await submission_with_file(db, tenant, storage)
    await consent(db, tenant, draft, author)

    with pytest.raises(BadRequestError) as exc:
        await ai.trigger_analysis(db, executor, tenant.org.id, draft.id)
    assert exc.value.code == "AI_DISABLED"


async def test_trigger_unknown_file(db, ai_tenant, storage, executor):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)

    with pytest.raises(NotFoundError) as exc:
        await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id, file_id="missing")
    assert exc.value.code == "FILE_NOT_FOUND"


async def test_automatic_trigger_skipped_in_manual_only_mode(db, storage, executor):
    tenant = await make_tenant(
        db, slug="manual", allowed_types=ANALYSABLE_TYPES, ai_run_mode=AIRunMode.MANUAL_ONLY
    )
    author, draft, _ = await submission_with_file(db, tenant, storage)
    await consent(db, tenant, draft, author)

    assert await ai.trigger_analysis(db, executor, tenant.org.id, draft.id, run_by=RunBy.AUTO) is None

    manual = await ai.trigger_analysis(db, executor, tenant.org.id, draft.id, run_by=RunBy.MANUAL)
    assert manual.status == AIReportStatus.DONE


async def test_active_run_is_deduplicated(db, ai_tenant, storage):
    author, draft, file = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    recording = RecordingExecutor()

    first = await ai.trigger_analysis(db, recording, ai_tenant.org.id, draft.id)
    second = await ai.trigger_analysis(db, recording, ai_tenant.org.id, draft.id)

    assert first.status == AIReportStatus.QUEUED
    assert first.job_key == ai.job_key_for(draft.id, file.id)
    assert second.id == first.id
    assert len(recording.reports) == 1


async def test_finished_run_can_be_repeated(db, ai_tenant, storage, executor):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)

    first = await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)
    second = await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)

    assert first.status == second.status == AIReportStatus.DONE
    assert second.id != first.id


async def test_auto_trigger_after_submit(db, ai_tenant, storage, executor):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    submitted = await submissions.submit(db, ai_tenant.org.id, draft.id, author.id)

    report = await ai.auto_trigger_on_submit(db, executor, submitted)
    assert report.run_by == RunBy.AUTO
    assert report.status == AIReportStatus.DONE


async def test_auto_trigger_without_consent_is_silent(db, ai_tenant, storage, executor):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    submitted = await submissions.submit(db, ai_tenant.org.id, draft.id, author.id)

    assert await ai.auto_trigger_on_submit(db, executor, submitted) is None


# =============================================================================
# Execution
# =============================================================================

async def test_run_passes_through_running(db, ai_tenant, storage, provider):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    report = await ai.trigger_analysis(db, RecordingExecutor(), ai_tenant.org.id, draft.id)

    seen = []
    provider.observe = lambda: seen.append(report.status)
    registry = ProviderRegistry([provider])
    done = await ai.run_analysis(db, report.id, registry, storage)

    assert seen == [AIReportStatus.RUNNING]
    assert done.status == AIReportStatus.DONE
    assert done.started_at is not None and done.completed_at is not None
    assert done.summary["text"] == "A short summary."
    assert done.format_check["score"] == 75
    assert done.similarity["threshold_pct"] == 20
    assert done.summarization_provider == "gemini"
    assert done.failure_code is None


async def test_run_is_not_repeated_once_finished(db, ai_tenant, storage, provider, executor):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    report = await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)

    again = await ai.run_analysis(db, report.id, ProviderRegistry([provider]), storage)
    assert again.status == AIReportStatus.DONE
    assert provider.summary_calls == 1


async def test_provider_failure_marks_report_failed(db, ai_tenant, storage, provider, executor):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    provider.error = ProviderError("Gemini rate limit exceeded")

    report = await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)

    assert report.status == AIReportStatus.FAILED
    assert report.failure_code == "RATE_LIMIT_EXCEEDED"
    assert report.failure_message.startswith("GEMINI API rate limit exceeded")
    assert report.summary is None
    assert report.similarity is None
    assert report.flagged is None


async def test_too_little_text_fails_with_processing_error(db, ai_tenant, storage, executor):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage, text="Too short.")
    await consent(db, ai_tenant, draft, author)

    report = await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)

    assert report.status == AIReportStatus.FAILED
    assert report.failure_code == "PROCESSING_ERROR"
    assert report.failure_message == "Insufficient text extracted from document"


async def test_similarity_uses_other_submissions(db, ai_tenant, storage, provider, executor):
    await submission_with_file(db, ai_tenant, storage, email="first@example.com")
    author, draft, _ = await submission_with_file(db, ai_tenant, storage, email="second@example.com")
    await consent(db, ai_tenant, draft, author)

    report = await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)

    assert report.status == AIReportStatus.DONE
    assert provider.corpus_sizes == [1]


async def test_unconfigured_provider_fails_report(db, storage, executor):
    tenant = await make_tenant(
        db, slug="cfg", allowed_types=ANALYSABLE_TYPES,
        ai_providers={"summarization": {"name": "openai"}},
    )
    author, draft, _ = await submission_with_file(db, tenant, storage)
    await consent(db, tenant, draft, author)

    report = await ai.trigger_analysis(db, executor, tenant.org.id, draft.id)
    assert report.status == AIReportStatus.FAILED
    assert report.failure_code == "PROCESSING_ERROR"
    assert "not registered" in report.failure_message


# =============================================================================
# Queued execution
# =============================================================================

async def test_queued_job_processed_by_worker(db, session_factory, ai_tenant, storage, provider):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)

    report = await ai.trigger_analysis(db, QueuedExecutor(), ai_tenant.org.id, draft.id)
    await db.commit()
    assert report.status == AIReportStatus.QUEUED
    assert await ai.queue_stats(db, ai_tenant.org.id) == {"waiting": 1, "active": 0, "completed": 0, "failed": 0}

    [job] = await get_pending_jobs(db)
    status = await process_job(session_factory, job.id, ProviderRegistry([provider]), storage)
    assert status == AIReportStatus.DONE

    await db.refresh(report)
    await db.refresh(job)
    assert report.status == AIReportStatus.DONE
    assert job.status == AnalysisJobStatus.COMPLETED
    assert job.attempts == 1
    assert await ai.queue_stats(db, ai_tenant.org.id) == {"waiting": 0, "active": 0, "completed": 1, "failed": 0}

    assert await process_job(session_factory, job.id, ProviderRegistry([provider]), storage) is None


async def test_queued_job_is_rearmed_for_next_run(db, session_factory, ai_tenant, storage, provider):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    queued = QueuedExecutor()

    first = await ai.trigger_analysis(db, queued, ai_tenant.org.id, draft.id)
    await db.commit()
    [job] = await get_pending_jobs(db)
    await process_job(session_factory, job.id, ProviderRegistry([provider]), storage)
    await db.refresh(first)

    second = await ai.trigger_analysis(db, queued, ai_tenant.org.id, draft.id)
    await db.commit()
    await db.refresh(job)

    assert second.id != first.id
    assert job.report_id == second.id
    assert job.status == AnalysisJobStatus.PENDING
    job_count = (await db.execute(select(func.count(AnalysisJob.id)))).scalar_one()
    assert job_count == 1


async def test_queued_report_is_running_while_provider_works(db, session_factory, ai_tenant, storage, provider):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    report = await ai.trigger_analysis(db, QueuedExecutor(), ai_tenant.org.id, draft.id)
    await db.commit()

    seen = []

    async def read_from_another_session():
        async with session_factory() as other:
            current = await other.get(AIReport, report.id)
            job = (await other.execute(select(AnalysisJob))).scalar_one()
            seen.append((current.status, job.status))

    provider.observe = read_from_another_session
    [job] = await get_pending_jobs(db)
    status = await process_job(session_factory, job.id, ProviderRegistry([provider]), storage)

    assert status == AIReportStatus.DONE
    assert seen == [(AIReportStatus.RUNNING, AnalysisJobStatus.RUNNING)]


async def start_job_and_abandon(session_factory, job_id, lease_expired=True):
    """Claim a job and start its report, as a worker that stops right after."""
    async with session_factory() as worker_db:
        job = await worker_db.get(AnalysisJob, job_id)
        assert await claim_job(worker_db, job)
        await ai.start_analysis(worker_db, job.report_id)
        await worker_db.commit()
        if lease_expired:
            await worker_db.execute(
                update(AnalysisJob)
                .where(AnalysisJob.id == job_id)
                .values(updated_at=utcnow() - timedelta(seconds=config.WORKER_JOB_LEASE_SECONDS + 60))
            )
            await worker_db.commit()


async def test_running_job_is_reclaimed_after_lease_expires(db, session_factory, ai_tenant, storage, provider):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    report = await ai.trigger_analysis(db, QueuedExecutor(), ai_tenant.org.id, draft.id)
    await db.commit()
    [job] = await get_pending_jobs(db)

    await start_job_and_abandon(session_factory, job.id, lease_expired=False)
    assert await get_pending_jobs(db) == []
    assert await process_job(session_factory, job.id, ProviderRegistry([provider]), storage) is None

    await db.execute(
        update(AnalysisJob)
        .where(AnalysisJob.id == job.id)
        .values(updated_at=utcnow() - timedelta(seconds=config.WORKER_JOB_LEASE_SECONDS + 60))
    )
    await db.commit()
    [stale] = await get_pending_jobs(db)
    assert stale.id == job.id

    status = await process_job(session_factory, job.id, ProviderRegistry([provider]), storage)
    assert status == AIReportStatus.DONE

    await db.refresh(report)
    await db.refresh(job)
    assert report.status == AIReportStatus.DONE
    assert job.status == AnalysisJobStatus.COMPLETED
    assert job.attempts == 2


async def test_jobs_out_of_attempts_fail_with_their_report(db, session_factory, ai_tenant, storage, monkeypatch):
    monkeypatch.setattr(config, "WORKER_MAX_ATTEMPTS", 1)
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    report = await ai.trigger_analysis(db, QueuedExecutor(), ai_tenant.org.id, draft.id)
    await db.commit()
    [job] = await get_pending_jobs(db)

    await start_job_and_abandon(session_factory, job.id)
    assert await get_pending_jobs(db) == []
    assert await fail_exhausted_jobs(db) == 1
    await db.commit()

    await db.refresh(report)
    await db.refresh(job)
    assert job.status == AnalysisJobStatus.FAILED
    assert report.status == AIReportStatus.FAILED
    assert report.failure_code == "PROCESSING_ERROR"


async def test_failed_job_fails_report_and_allows_rerun(db, session_factory, ai_tenant, storage):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    queued = QueuedExecutor()
    first = await ai.trigger_analysis(db, queued, ai_tenant.org.id, draft.id)
    await db.commit()
    [job] = await get_pending_jobs(db)

    await start_job_and_abandon(session_factory, job.id, lease_expired=False)
    async with session_factory() as worker_db:
        await fail_job(worker_db, job.id, "worker process killed")
        await worker_db.commit()

    await db.refresh(first)
    await db.refresh(job)
    assert first.status == AIReportStatus.FAILED
    assert first.failure_code == "PROCESSING_ERROR"
    assert first.failure_message == "worker process killed"

    second = await ai.trigger_analysis(db, queued, ai_tenant.org.id, draft.id)
    assert second.id != first.id
    assert second.status == AIReportStatus.QUEUED


async def test_queued_report_of_finished_job_does_not_block_rerun(db, ai_tenant, storage):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    queued = QueuedExecutor()
    stuck = await ai.trigger_analysis(db, queued, ai_tenant.org.id, draft.id)
    [job] = await get_pending_jobs(db)
    job.status = AnalysisJobStatus.FAILED
    await db.flush()

    fresh = await ai.trigger_analysis(db, queued, ai_tenant.org.id, draft.id)

    assert fresh.id != stuck.id
    assert stuck.status == AIReportStatus.FAILED
    assert stuck.failure_code == "PROCESSING_ERROR"
    assert job.report_id == fresh.id
    assert job.status == AnalysisJobStatus.PENDING


# =============================================================================
# Queries
# =============================================================================

async def test_reports_listed_per_conference(db, ai_tenant, storage, provider, executor):
    author, draft, _ = await submission_with_file(db, ai_tenant, storage)
    await consent(db, ai_tenant, draft, author)
    done = await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)
    provider.error = ProviderError("Invalid Gemini API key")
    failed = await ai.trigger_analysis(db, executor, ai_tenant.org.id, draft.id)
    assert failed.failure_code == "API_KEY_INVALID"

    reports, total = await ai.list_reports(db, ai_tenant.org.id, ai_tenant.conference.id)
    assert total == 2
    assert {r.id for r in reports} == {done.id, failed.id}

    only_failed, total = await ai.list_reports(
        db, ai_tenant.org.id, ai_tenant.conference.id, status=AIReportStatus.FAILED
    )
    assert total == 1
    assert only_failed[0].id == failed.id

    latest = await ai.get_report(db, ai_tenant.org.id, draft.id)
    assert latest.id == failed.id


# =============================================================================
# Helpers
# =============================================================================

@pytest.mark.parametrize(
    "message,code",
    [
        ("Invalid OpenAI API key", "API_KEY_INVALID"),
        ("OpenAI rate limit exceeded", "RATE_LIMIT_EXCEEDED"),
        ("Gemini quota exceeded", "QUOTA_EXCEEDED"),
        ("Connection reset", "PROCESSING_ERROR"),
    ],
)
def test_classify_failure(message, code):
    assert ai.classify_failure(message, "openai")[0] == code


def test_processing_error_keeps_message():
    assert ai.classify_failure("Connection reset") == ("PROCESSING_ERROR", "Connection reset")


def test_extract_text_rules():
    assert extract_text(PAPER_TEXT.encode(), "text/plain").startswith("Scalable Consensus")
    with pytest.raises(ExtractionError):
        extract_text(b"short", "text/plain")
    with pytest.raises(ExtractionError):
        extract_text(PAPER_TEXT.encode(), "application/msword")


def test_references_removed_before_similarity():
    stripped = remove_references_section(PAPER_TEXT)
    assert "Paxos" not in stripped
    assert stripped.startswith("Scalable Consensus")


def test_ngram_similarity():
    assert ngram_similarity(PAPER_TEXT, [PAPER_TEXT]) == 100
    assert ngram_similarity(PAPER_TEXT, ["entirely unrelated words about cooking pasta tonight"]) == 0
    assert ngram_similarity("too short", [PAPER_TEXT]) == 0


async def test_format_checks(provider):
    result = await provider.run_format_checks(PAPER_TEXT, PAPER_METADATA)
    checks = {c["key"]: c["passed"] for c in result["checks"]}
    assert checks == {
        "minimum_word_count": False,
        "has_abstract": True,
        "has_title": True,
        "has_references": True,
    }
    assert result["score"] == 75


def test_registry_lookup():
    fake = FakeProvider()
    registry = ProviderRegistry([fake])
    assert registry.get() is fake
    assert registry.get("google") is fake
    with pytest.raises(ProviderError):
        registry.get("openai")
    with pytest.raises(ProviderError):
        registry.get("llama")


async def test_gemini_without_key_fails_before_any_request():
    with pytest.raises(ProviderError) as exc:
        await GeminiProvider(api_key=None).generate_summary(PAPER_TEXT)
    assert ai.classify_failure(str(exc.value), "gemini")[0] == "API_KEY_INVALID"
