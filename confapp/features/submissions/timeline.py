"""
Timeline append and read helpers shared by the submission and payment flows.
"""
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.features.submissions.models import SubmissionTimelineEvent, TimelineEventType


async def append_event(
    db: AsyncSession,
    org_id: str,
    submission_id: str,
    event_type: TimelineEventType,
    actor_user_id: Optional[str],
    payload: Optional[dict[str, Any]] = None,
) -> SubmissionTimelineEvent:
    """
    Append an event in the caller's session.

    The event is flushed together with any pending status change, so both
    are committed by the same transaction.
    """
    last = await db.execute(
        select(func.max(SubmissionTimelineEvent.sequence)).where(
            SubmissionTimelineEvent.submission_id == submission_id
        )
    )
    event = SubmissionTimelineEvent(
        org_id=org_id,
        submission_id=submission_id,
        sequence=(last.scalar_one_or_none() or 0) + 1,
        type=event_type,
        actor_user_id=actor_user_id,
        payload=payload or {},
    )
    db.add(event)
    await db.flush()
    return event


async def list_events(db: AsyncSession, org_id: str, submission_id: str) -> list[SubmissionTimelineEvent]:
    result = await db.execute(
        select(SubmissionTimelineEvent)
        .where(
            SubmissionTimelineEvent.org_id == org_id,
            SubmissionTimelineEvent.submission_id == submission_id,
        )
        .order_by(SubmissionTimelineEvent.sequence)
    )
    return list(result.scalars().all())
