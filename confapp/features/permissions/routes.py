"""
Membership and authorization API routes.

Provides endpoints for assigning and removing org, conference and track roles,
plus read-only authorization queries for the current caller.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.database.engine import get_db
from confapp.features.organizations.schemas import ConferenceJoinInfo
from confapp.features.organizations.service import get_conference_by_access_token
from confapp.features.permissions import memberships
from confapp.features.permissions.claims import ClaimSet
from confapp.features.permissions.dependencies import require_role, resolve_scope
from confapp.features.permissions.engine import authorize, effective_role
from confapp.features.permissions.roles import Role, ScopeKind
from confapp.features.permissions.schemas import (
    AuthorizationCheckRequest,
    AuthorizationCheckResponse,
    ConferenceMemberAddResponse,
    ConferenceMemberCreate,
    ConferenceMembershipResponse,
    EffectiveRoleResponse,
    OrgMemberAddResponse,
    OrgMemberCreate,
    OrgMembershipResponse,
    TrackMemberAddResponse,
    TrackMemberCreate,
    TrackMembershipResponse,
    UserMembershipsResponse,
)
from confapp.features.users.auth import issue_token_for_user
from confapp.features.users.dependencies import get_current_claims, get_current_user, get_tenant_org_id
from confapp.features.users.models import User
from confapp.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _added(result: memberships.MembershipResult, response: Response) -> dict:
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return {"member": result.member, "created": result.created}


# ============================================================================
# Organization members
# ============================================================================

@router.post("/orgs/{org_id}/members", response_model=OrgMemberAddResponse)
async def add_org_member(
    org_id: str,
    payload: OrgMemberCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(require_role([Role.ADMIN, Role.SUPER_ADMIN], ScopeKind.ORG)),
):
    """Assign an org-level role (org ADMIN or super admin)."""
    result = await memberships.add_org_member(db, org_id, payload.user_id, payload.role, claims)
    return _added(result, response)


@router.get("/orgs/{org_id}/members", response_model=List[OrgMembershipResponse])
async def list_org_members(
    org_id: str,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(require_role([Role.ADMIN, Role.MANAGER, Role.SUPER_ADMIN], ScopeKind.ORG)),
):
    return await memberships.list_org_members(db, org_id)


@router.delete("/orgs/{org_id}/members/{user_id}", response_model=List[OrgMembershipResponse])
async def remove_org_member(
    org_id: str,
    user_id: str,
    role: Optional[Role] = None,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(require_role([Role.ADMIN, Role.SUPER_ADMIN], ScopeKind.ORG)),
):
    """Deactivate an org membership; the row is kept for history."""
    return await memberships.remove_org_member(db, org_id, user_id, role)


# ============================================================================
# Conference members
# ============================================================================

@router.post("/conferences/{conference_id}/members", response_model=ConferenceMemberAddResponse)
async def add_conference_member(
    conference_id: str,
    payload: ConferenceMemberCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(require_role([Role.MANAGER], ScopeKind.CONFERENCE)),
):
    """
    Assign a conference-level role.

    Only roles strictly below the caller's own effective role can be granted.
    """
    result = await memberships.add_conference_member(
        db,
        conference_id,
        payload.user_id,
        payload.role,
        claims,
        manages_full_conference=payload.manages_full_conference,
    )
    return _added(result, response)


@router.get("/conferences/{conference_id}/members", response_model=List[ConferenceMembershipResponse])
async def list_conference_members(
    conference_id: str,
    role: Optional[Role] = None,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(require_role([Role.MANAGER, Role.SUB_MANAGER], ScopeKind.CONFERENCE)),
):
    return await memberships.list_conference_members(db, conference_id, role)


@router.delete(
    "/conferences/{conference_id}/members/{user_id}",
    response_model=List[ConferenceMembershipResponse],
)
async def remove_conference_member(
    conference_id: str,
    user_id: str,
    role: Optional[Role] = None,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(require_role([Role.MANAGER], ScopeKind.CONFERENCE)),
):
    return await memberships.remove_conference_member(db, conference_id, user_id, role)


@router.post("/conferences/{conference_id}/join")
async def join_conference(
    conference_id: str,
    response: Response,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    tenant_org_id: Optional[str] = Depends(get_tenant_org_id),
):
    """
    Enroll the caller as AUTHOR and return a token carrying the new role.
    """
    await resolve_scope(db, ScopeKind.CONFERENCE, {"conference_id": conference_id}, tenant_org_id)
    result = await memberships.enroll_author(db, conference_id, user.id)
    return await _enrolled(db, user, result, response)


async def _enrolled(
    db: AsyncSession, user: User, result: memberships.MembershipResult, response: Response
) -> dict:
    body = _added(result, response)
    return {
        "member": ConferenceMembershipResponse.model_validate(body["member"]),
        "created": body["created"],
        "access_token": await issue_token_for_user(db, user),
        "token_type": "bearer",
    }


@router.get("/conference/join/{access_token}", response_model=ConferenceJoinInfo)
async def conference_join_info(access_token: str, db: AsyncSession = Depends(get_db)):
    """Public: the conference behind a join link."""
    return await get_conference_by_access_token(db, access_token)


@router.post("/conference/join/{access_token}")
async def join_conference_by_link(
    access_token: str,
    response: Response,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Enroll the caller as AUTHOR of the conference behind a join link.

    Users already holding a role in the conference keep it. The response
    carries a fresh token, as for ``/conferences/{conference_id}/join``.
    """
    conference = await get_conference_by_access_token(db, access_token)
    result = await memberships.enroll_author(db, conference.id, user.id)
    log.info(f"User {user.id} joined conference {conference.id} via access link")
    return {
        **await _enrolled(db, user, result, response),
        "conference": ConferenceJoinInfo.model_validate(conference),
    }


# ============================================================================
# Track members
# ============================================================================

@router.post("/tracks/{track_id}/members", response_model=TrackMemberAddResponse)
async def add_track_member(
    track_id: str,
    payload: TrackMemberCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(require_role([Role.MANAGER], ScopeKind.TRACK)),
):
    """Assign a track SUB_MANAGER (conference MANAGER or above)."""
    result = await memberships.add_track_member(db, track_id, payload.user_id, claims)
    return _added(result, response)


@router.get("/tracks/{track_id}/members", response_model=List[TrackMembershipResponse])
async def list_track_members(
    track_id: str,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(require_role([Role.SUB_MANAGER], ScopeKind.TRACK)),
):
    return await memberships.list_track_members(db, track_id)


@router.delete("/tracks/{track_id}/members/{user_id}", response_model=List[TrackMembershipResponse])
async def remove_track_member(
    track_id: str,
    user_id: str,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(require_role([Role.MANAGER], ScopeKind.TRACK)),
):
    return await memberships.remove_track_member(db, track_id, user_id)


# ============================================================================
# Authorization queries
# ============================================================================

@router.get("/permissions/me/memberships", response_model=UserMembershipsResponse)
async def my_memberships(
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(get_current_claims),
):
    """Live ACTIVE memberships of the caller (may differ from token claims)."""
    return await memberships.list_user_memberships(db, claims.user_id)


@router.get("/permissions/effective-role", response_model=EffectiveRoleResponse)
async def get_effective_role(
    org_id: str,
    conference_id: Optional[str] = None,
    track_id: Optional[str] = None,
    claims: ClaimSet = Depends(get_current_claims),
):
    """Highest role the caller holds across the given scopes."""
    role = effective_role(claims, org_id, conference_id, track_id)
    return EffectiveRoleResponse(
        user_id=claims.user_id,
        org_id=org_id,
        conference_id=conference_id,
        track_id=track_id,
        role=role,
    )


@router.post("/permissions/check", response_model=AuthorizationCheckResponse)
async def check_authorization(
    check: AuthorizationCheckRequest,
    db: AsyncSession = Depends(get_db),
    claims: ClaimSet = Depends(get_current_claims),
    tenant_org_id: Optional[str] = Depends(get_tenant_org_id),
):
    """Evaluate an authorization decision for the caller without side effects."""
    path_params = {f"{check.scope_kind.value}_id": check.scope_id} if check.scope_id else {}
    scope = await resolve_scope(db, check.scope_kind, path_params, tenant_org_id)
    decision = authorize(claims, check.allowed_roles, scope, require_org=check.require_org)
    return AuthorizationCheckResponse(allowed=decision.allowed, reason=decision.reason)
