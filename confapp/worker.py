"""
Background worker for queued AI analysis jobs.

Usage:
    python -m confapp.worker

Only needed with AI_EXECUTION_MODE=queued. The worker polls for pending
analysis jobs and runs them one at a time; run it as a separate process.
Jobs left RUNNING by a stopped worker are picked up again once their lease
(WORKER_JOB_LEASE_SECONDS) expires, up to WORKER_MAX_ATTEMPTS times.
"""
import asyncio

from confapp.core import config
from confapp.core.database.engine import AsyncSessionLocal, init_db
from confapp.features.ai.executors import fail_exhausted_jobs, fail_job, get_pending_jobs, process_job
from confapp.features.ai.providers import get_provider_registry
from confapp.features.submissions.storage import get_storage
from confapp.utils import get_logger


log = get_logger(__name__)


async def _mark_crashed(job_id: str, error: str) -> None:
    async with AsyncSessionLocal() as db:
        await fail_job(db, job_id, error)
        await db.commit()


async def process_pending_jobs(batch_size: int = config.WORKER_BATCH_SIZE) -> int:
    """Run up to ``batch_size`` pending jobs; returns how many were processed."""
    async with AsyncSessionLocal() as db:
        exhausted = await fail_exhausted_jobs(db)
        await db.commit()
        if exhausted:
            log.warning(f"Failed {exhausted} analysis jobs that ran out of attempts")
        job_ids = [job.id for job in await get_pending_jobs(db, limit=batch_size)]

    registry = get_provider_registry()
    storage = get_storage()
    processed = 0
    for job_id in job_ids:
        try:
            status = await process_job(AsyncSessionLocal, job_id, registry, storage)
        except Exception as e:
            log.error(f"Analysis job {job_id} crashed: {e}", exc_info=True)
            await _mark_crashed(job_id, str(e))
            continue
        if status is not None:
            processed += 1
    return processed


async def main() -> None:
    log.info(
        f"AI worker started (poll every {config.WORKER_POLL_INTERVAL}s, batch {config.WORKER_BATCH_SIZE})"
    )
    await init_db()
    while True:
        processed = await process_pending_jobs()
        if processed:
            log.info(f"Processed {processed} analysis jobs")
        await asyncio.sleep(config.WORKER_POLL_INTERVAL)


if __name__ == "__main__":
    asyncio.run(main())
