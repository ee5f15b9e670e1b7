"""
Analysis executors.

``InlineExecutor`` runs a report inside the triggering request.
``QueuedExecutor`` records an ``AnalysisJob`` that ``confapp.worker`` picks
up. Both drive the same ``run_analysis`` state machine.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from confapp.core import config
from confapp.core.database.base import utcnow
from confapp.features.ai.models import (
    ACTIVE_REPORT_STATUSES,
    AIReport,
    AIReportStatus,
    AnalysisJob,
    AnalysisJobStatus,
)
from confapp.features.ai.providers import ProviderRegistry, get_provider_registry
from confapp.features.ai.service import complete_analysis, mark_failed, run_analysis, start_analysis
from confapp.features.submissions.storage import StorageProvider, get_storage
from confapp.utils import get_logger


log = get_logger(__name__)


class InlineExecutor:
    """Runs the analysis immediately, in the caller's session."""

    def __init__(self, registry: Optional[ProviderRegistry] = None, storage: Optional[StorageProvider] = None):
        self.registry = registry
        self.storage = storage

    async def submit(self, db: AsyncSession, report: AIReport) -> None:
        await run_analysis(
            db,
            report.id,
            self.registry or get_provider_registry(),
            self.storage or get_storage(),
        )


class QueuedExecutor:
    """Persists one job per job key for the worker process."""

    async def _get_job(self, db: AsyncSession, job_key: str) -> Optional[AnalysisJob]:
        result = await db.execute(select(AnalysisJob).where(AnalysisJob.job_key == job_key))
        return result.scalar_one_or_none()

    async def submit(self, db: AsyncSession, report: AIReport) -> None:
        job = await self._get_job(db, report.job_key)
        if job is None:
            try:
                async with db.begin_nested():
                    job = AnalysisJob(org_id=report.org_id, job_key=report.job_key, report_id=report.id)
                    db.add(job)
            except IntegrityError:
                job = await self._get_job(db, report.job_key)

        if job.report_id != report.id or job.status in (AnalysisJobStatus.COMPLETED, AnalysisJobStatus.FAILED):
            # Re-arm the finished job of a previous run
            job.report_id = report.id
            job.status = AnalysisJobStatus.PENDING
            job.attempts = 0
            job.last_error = None
            job.completed_at = None
        await db.flush()
        log.info(f"Enqueued analysis job {job.job_key} for report {report.id}")


_executor = None


def get_analysis_executor():
    """Executor selected by ``AI_EXECUTION_MODE``; FastAPI dependency."""
    global _executor
    if _executor is None:
        _executor = QueuedExecutor() if config.AI_EXECUTION_MODE == "queued" else InlineExecutor()
    return _executor


def set_analysis_executor(executor) -> None:
    global _executor
    _executor = executor


# ============================================================================
# Worker side
# ============================================================================

def _lease_cutoff() -> datetime:
    return utcnow() - timedelta(seconds=config.WORKER_JOB_LEASE_SECONDS)


def _claimable(cutoff: datetime):
    """PENDING jobs, plus RUNNING jobs whose worker let the lease expire."""
    return or_(
        AnalysisJob.status == AnalysisJobStatus.PENDING,
        and_(
            AnalysisJob.status == AnalysisJobStatus.RUNNING,
            AnalysisJob.updated_at < cutoff,
            AnalysisJob.attempts < config.WORKER_MAX_ATTEMPTS,
        ),
    )


async def get_pending_jobs(db: AsyncSession, limit: int = 10) -> list[AnalysisJob]:
    result = await db.execute(
        select(AnalysisJob)
        .where(_claimable(_lease_cutoff()))
        .order_by(AnalysisJob.updated_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def claim_job(db: AsyncSession, job: AnalysisJob) -> bool:
    """Move a claimable job to RUNNING; False when another worker holds it."""
    result = await db.execute(
        update(AnalysisJob)
        .where(AnalysisJob.id == job.id, _claimable(_lease_cutoff()))
        .values(status=AnalysisJobStatus.RUNNING, attempts=AnalysisJob.attempts + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.refresh(job)
    return result.rowcount == 1


def _finish_job(job: AnalysisJob, report: AIReport) -> None:
    job.status = (
        AnalysisJobStatus.COMPLETED if report.status == AIReportStatus.DONE else AnalysisJobStatus.FAILED
    )
    job.last_error = report.failure_message
    job.completed_at = utcnow()


async def process_job(
    session_factory: async_sessionmaker,
    job_id: str,
    registry: ProviderRegistry,
    storage: StorageProvider,
) -> Optional[AIReportStatus]:
    """
    Claim and run one job.

    The claim and the report's move to RUNNING are committed together before
    any provider call; the results are committed in a second transaction.
    Returns the final report status, or None when the job was not claimed.
    """
    async with session_factory() as db:
        job = await db.get(AnalysisJob, job_id)
        if job is None:
            return None
        resume = job.status == AnalysisJobStatus.RUNNING
        if not await claim_job(db, job):
            await db.rollback()
            return None
        if resume:
            log.warning(f"Analysis job {job.job_key} lease expired; reclaimed (attempt {job.attempts})")

        report = await start_analysis(db, job.report_id, resume=resume)
        if report is None:
            # Finished outside this job
            report = await db.get(AIReport, job.report_id)
            _finish_job(job, report)
            await db.commit()
            return report.status
        report_id = report.id
        await db.commit()

    async with session_factory() as db:
        report = await db.get(AIReport, report_id)
        report = await complete_analysis(db, report, registry, storage)
        job = await db.get(AnalysisJob, job_id)
        _finish_job(job, report)
        await db.commit()
        log.info(f"Analysis job {job.job_key} finished: report {report.id} {report.status.value}")
        return report.status


async def fail_job(db: AsyncSession, job_id: str, error: str) -> Optional[AnalysisJob]:
    """Mark a job FAILED, along with its report if that is still queued or running."""
    job = await db.get(AnalysisJob, job_id)
    if job is None:
        return None
    job.status = AnalysisJobStatus.FAILED
    job.last_error = error
    job.completed_at = utcnow()

    report = await db.get(AIReport, job.report_id)
    if report is not None and report.status in ACTIVE_REPORT_STATUSES:
        mark_failed(report, "PROCESSING_ERROR", error)
    await db.flush()
    log.error(f"Analysis job {job.job_key} failed: {error}")
    return job


async def fail_exhausted_jobs(db: AsyncSession) -> int:
    """Fail RUNNING jobs whose lease expired after the last allowed attempt."""
    result = await db.execute(
        select(AnalysisJob).where(
            AnalysisJob.status == AnalysisJobStatus.RUNNING,
            AnalysisJob.updated_at < _lease_cutoff(),
            AnalysisJob.attempts >= config.WORKER_MAX_ATTEMPTS,
        )
    )
    jobs = list(result.scalars().all())
    for job in jobs:
        await fail_job(db, job.id, f"Gave up after {job.attempts} attempts")
    return len(jobs)
