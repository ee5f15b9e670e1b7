"""
Submission route dependencies: scope resolvers for admin routes.
"""
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.features.permissions.dependencies import require_role
from confapp.features.permissions.engine import ScopeRef
from confapp.features.permissions.roles import Role, ScopeKind
from confapp.features.submissions.service import get_submission_or_raise


async def submission_conference_scope(
    db: AsyncSession, request: Request, tenant_org_id: Optional[str]
) -> ScopeRef:
    """Conference scope of the ``{submission_id}`` in the path."""
    if not tenant_org_id:
        return ScopeRef.conference(None, None)
    submission = await get_submission_or_raise(db, tenant_org_id, request.path_params["submission_id"])
    return ScopeRef.conference(submission.conference_id, submission.org_id)


async def submission_track_scope(
    db: AsyncSession, request: Request, tenant_org_id: Optional[str]
) -> ScopeRef:
    """Track scope of the ``{submission_id}`` in the path."""
    if not tenant_org_id:
        return ScopeRef.track(None, None, None)
    submission = await get_submission_or_raise(db, tenant_org_id, request.path_params["submission_id"])
    return ScopeRef.track(submission.track_id, submission.conference_id, submission.org_id)


# Decisions and final uploads belong to conference managers (org ADMIN/MANAGER inherit)
require_submission_manager = require_role(
    [Role.MANAGER], ScopeKind.CONFERENCE, resolver=submission_conference_scope
)

# Track sub-managers may read the submissions of their tracks
require_submission_reviewer = require_role(
    [Role.SUB_MANAGER], ScopeKind.TRACK, resolver=submission_track_scope
)
