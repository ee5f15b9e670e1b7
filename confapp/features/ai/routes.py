"""
AI analysis routes: author consent, manual runs, report queries.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core import config
from confapp.core.database.engine import get_db
from confapp.core.errors import ForbiddenError, NotFoundError
from confapp.features.ai import service
from confapp.features.ai.executors import get_analysis_executor
from confapp.features.ai.models import AIReportStatus, RunBy
from confapp.features.ai.schemas import (
    AIReportListResponse,
    AIReportResponse,
    AnalysisRunRequest,
    ConsentCreate,
    ConsentResponse,
    QueueStatsResponse,
)
from confapp.features.organizations.dependencies import get_conference_by_id
from confapp.features.organizations.models import AIVisibility, Conference
from confapp.features.organizations.service import get_settings_or_raise
from confapp.features.permissions.claims import ClaimSet
from confapp.features.permissions.dependencies import require_role
from confapp.features.permissions.roles import Role, ScopeKind
from confapp.features.submissions.dependencies import require_submission_manager, require_submission_reviewer
from confapp.features.submissions.service import assert_author, get_submission_or_raise
from confapp.features.users.dependencies import get_current_claims, require_tenant_org_id


router = APIRouter(tags=["ai"])


def _report_or_404(report):
    if report is None:
        raise NotFoundError("AI report not found", code="AI_REPORT_NOT_FOUND")
    return report


# Author endpoints
@router.post("/submissions/{submission_id}/ai-consent", response_model=ConsentResponse)
async def capture_consent(
    submission_id: str,
    payload: ConsentCreate,
    request: Request,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Record the author's AI consent; a later call replaces the earlier one."""
    return await service.capture_consent(
        db,
        org_id,
        submission_id,
        claims.user_id,
        consent_ai=payload.consent_ai,
        consent_fine_tune=payload.consent_fine_tune,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.get("/submissions/{submission_id}/ai", response_model=AIReportResponse)
async def get_my_report(
    submission_id: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Latest report, when the conference shows reports to authors."""
    submission = await get_submission_or_raise(db, org_id, submission_id)
    assert_author(submission, claims.user_id)
    settings = await get_settings_or_raise(db, org_id, submission.conference_id)
    if settings.ai_visibility != AIVisibility.AUTHOR_VISIBLE:
        raise ForbiddenError("AI reports are not visible to authors", code="AI_REPORT_NOT_VISIBLE")
    return _report_or_404(await service.get_report(db, org_id, submission.id))


# Admin endpoints
@router.post(
    "/admin/submissions/{submission_id}/ai/run",
    response_model=AIReportResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def run_analysis(
    submission_id: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(require_submission_manager)],
    db: Annotated[AsyncSession, Depends(get_db)],
    executor=Depends(get_analysis_executor),
    payload: Optional[AnalysisRunRequest] = None
):
    """Manually start (or join the in-flight) analysis of a submission file."""
    return await service.trigger_analysis(
        db,
        executor,
        org_id,
        submission_id,
        file_id=payload.file_id if payload else None,
        run_by=RunBy.MANUAL,
        user_id=claims.user_id,
    )


@router.get(
    "/admin/submissions/{submission_id}/ai",
    response_model=AIReportResponse,
    dependencies=[Depends(require_submission_reviewer)],
)
async def get_report(
    submission_id: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    file_id: Optional[str] = None
):
    return _report_or_404(await service.get_report(db, org_id, submission_id, file_id))


@router.get(
    "/conferences/{conference_id}/ai/reports",
    response_model=AIReportListResponse,
    dependencies=[Depends(require_role([Role.MANAGER], ScopeKind.CONFERENCE))],
)
async def list_reports(
    conference: Annotated[Conference, Depends(get_conference_by_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    report_status: Optional[AIReportStatus] = None,
    flagged: Optional[bool] = None,
    limit: int = 100,
    skip: int = 0
):
    limit = max(1, min(limit, 500))
    reports, total = await service.list_reports(
        db, conference.org_id, conference.id, status=report_status, flagged=flagged, limit=limit, skip=skip
    )
    return {"data": reports, "total": total, "limit": limit, "skip": skip}


@router.get(
    "/ai/queue-stats",
    response_model=QueueStatsResponse,
    dependencies=[Depends(require_role([Role.ADMIN, Role.MANAGER, Role.SUPER_ADMIN], ScopeKind.ORG))],
)
async def get_queue_stats(
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    stats = await service.queue_stats(db, org_id)
    return {**stats, "mode": config.AI_EXECUTION_MODE}
