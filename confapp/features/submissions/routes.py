"""
Submission routes.

Author routes act on the caller's own submissions; ownership is checked by
the lifecycle service. Admin routes are scoped to the submission's
conference or track.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.database.engine import get_db
from confapp.features.ai.executors import get_analysis_executor
from confapp.features.ai.service import auto_trigger_on_submit
from confapp.features.payments.schemas import PaymentIntentResponse
from confapp.features.permissions.claims import ClaimSet
from confapp.features.permissions.dependencies import load_track_in_tenant
from confapp.features.permissions.engine import ScopeRef, ensure_authorized
from confapp.features.permissions.roles import Role
from confapp.features.submissions import service
from confapp.features.submissions.dependencies import require_submission_manager, require_submission_reviewer
from confapp.features.submissions.models import SubmissionStatus
from confapp.features.submissions.schemas import (
    DecisionCreate,
    SubmissionCreate,
    SubmissionDetailResponse,
    SubmissionFileResponse,
    SubmissionResponse,
    SubmissionUpdate,
)
from confapp.features.submissions.storage import StorageProvider, get_storage
from confapp.features.users.dependencies import get_current_claims, require_tenant_org_id


router = APIRouter(tags=["submissions"])
admin_router = APIRouter(tags=["admin-submissions"])

# Conference roles that may open a submission; org ADMIN and super admin inherit
SUBMITTER_ROLES = [Role.AUTHOR, Role.SUB_MANAGER, Role.MANAGER]


async def _read_upload(file: UploadFile) -> service.FileUpload:
    return service.FileUpload(
        original_name=file.filename or "upload",
        mime_type=file.content_type or "application/octet-stream",
        data=await file.read(),
    )


# Author endpoints
@router.post("/", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def create_submission(
    payload: SubmissionCreate,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a DRAFT submission in a conference track."""
    ensure_authorized(claims, SUBMITTER_ROLES, ScopeRef.conference(payload.conference_id, org_id))
    return await service.create_draft(
        db, org_id, claims.user_id, payload.conference_id, payload.track_id,
        payload.metadata.model_dump(),
    )


@router.get("/", response_model=list[SubmissionResponse])
async def list_my_submissions(
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)],
    conference_id: Optional[str] = None
):
    return await service.list_my_submissions(db, org_id, claims.user_id, conference_id)


@router.get("/{submission_id}", response_model=SubmissionDetailResponse)
async def get_my_submission(
    submission_id: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Submission with timeline, files and latest payment intent (owner only)."""
    detail = await service.get_submission_detail(db, org_id, submission_id, claims.user_id)
    return SubmissionDetailResponse.model_validate(detail)


@router.patch("/{submission_id}", response_model=SubmissionResponse)
async def update_submission(
    submission_id: str,
    payload: SubmissionUpdate,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update metadata while the submission is a DRAFT."""
    return await service.update_draft(
        db, org_id, submission_id, claims.user_id,
        payload.metadata.model_dump(exclude_unset=True),
    )


@router.post("/{submission_id}/files", response_model=SubmissionFileResponse, status_code=status.HTTP_201_CREATED)
async def upload_submission_file(
    submission_id: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)],
    storage: Annotated[StorageProvider, Depends(get_storage)],
    file: UploadFile = File(...)
):
    upload = await _read_upload(file)
    return await service.upload_file(db, storage, org_id, submission_id, claims.user_id, upload)


@router.post(
    "/{submission_id}/payment-intent",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment_intent(
    submission_id: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await service.create_payment_intent(db, org_id, submission_id, claims.user_id)


@router.post("/{submission_id}/submit", response_model=SubmissionResponse)
async def submit_submission(
    submission_id: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)],
    executor=Depends(get_analysis_executor)
):
    """Submit for review; starts the automatic AI analysis when the conference allows it."""
    submission = await service.submit(db, org_id, submission_id, claims.user_id)
    await auto_trigger_on_submit(db, executor, submission)
    return submission


# Admin endpoints
@admin_router.get("/", response_model=list[SubmissionResponse])
async def admin_list_submissions(
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)],
    conference_id: Optional[str] = None,
    track_id: Optional[str] = None,
    submission_status: Optional[SubmissionStatus] = None,
    skip: int = 0,
    limit: int = 100
):
    """
    List submissions of the org, optionally filtered.

    The narrowest filter decides the check: track filters need track
    SUB_MANAGER, conference filters conference MANAGER, no filter org staff.
    """
    if track_id:
        track = await load_track_in_tenant(db, track_id, org_id)
        ensure_authorized(claims, [Role.SUB_MANAGER], ScopeRef.track(track.id, track.conference_id, org_id))
    elif conference_id:
        ensure_authorized(claims, [Role.MANAGER], ScopeRef.conference(conference_id, org_id))
    else:
        ensure_authorized(claims, [Role.ADMIN, Role.MANAGER, Role.SUPER_ADMIN], ScopeRef.org(org_id))

    return await service.admin_list_submissions(
        db, org_id, conference_id=conference_id, track_id=track_id, status=submission_status,
        skip=skip, limit=min(limit, 500),
    )


@admin_router.get(
    "/{submission_id}",
    response_model=SubmissionDetailResponse,
    dependencies=[Depends(require_submission_reviewer)],
)
async def admin_get_submission(
    submission_id: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    detail = await service.get_submission_detail(db, org_id, submission_id)
    return SubmissionDetailResponse.model_validate(detail)


@admin_router.post("/{submission_id}/decision", response_model=SubmissionResponse)
async def set_decision(
    submission_id: str,
    payload: DecisionCreate,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(require_submission_manager)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Record (or override) the decision for a submission."""
    return await service.set_decision(db, org_id, submission_id, claims.user_id, payload.status, payload.notes)


@admin_router.post(
    "/{submission_id}/final-file",
    response_model=SubmissionFileResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_final_file(
    submission_id: str,
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    claims: Annotated[ClaimSet, Depends(require_submission_manager)],
    db: Annotated[AsyncSession, Depends(get_db)],
    storage: Annotated[StorageProvider, Depends(get_storage)],
    file: UploadFile = File(...)
):
    upload = await _read_upload(file)
    return await service.upload_final_file(db, storage, org_id, submission_id, claims.user_id, upload)
