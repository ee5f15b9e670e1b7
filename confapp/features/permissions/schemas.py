"""
Pydantic schemas for memberships and authorization checks.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from confapp.features.permissions.models import MembershipStatus
from confapp.features.permissions.roles import Role, ScopeKind


# ============================================================================
# Membership Schemas
# ============================================================================

class OrgMemberCreate(BaseModel):
    """Assign an org-level role."""
    user_id: str = Field(..., min_length=1)
    role: Role = Field(..., description="ADMIN or MANAGER")


class ConferenceMemberCreate(BaseModel):
    """Assign a conference-level role."""
    user_id: str = Field(..., min_length=1)
    role: Role = Field(..., description="MANAGER, SUB_MANAGER or AUTHOR")
    manages_full_conference: bool = Field(
        False, description="Only meaningful for SUB_MANAGER: authority over every track"
    )


class TrackMemberCreate(BaseModel):
    """Assign a track SUB_MANAGER."""
    user_id: str = Field(..., min_length=1)


class MembershipBase(BaseModel):
    id: str
    user_id: str
    role: Role
    status: MembershipStatus
    assigned_by_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrgMembershipResponse(MembershipBase):
    org_id: str


class ConferenceMembershipResponse(MembershipBase):
    org_id: str
    conference_id: str
    manages_full_conference: bool


class TrackMembershipResponse(MembershipBase):
    org_id: str
    conference_id: str
    track_id: str


class OrgMemberAddResponse(BaseModel):
    member: OrgMembershipResponse
    created: bool


class ConferenceMemberAddResponse(BaseModel):
    member: ConferenceMembershipResponse
    created: bool


class TrackMemberAddResponse(BaseModel):
    member: TrackMembershipResponse
    created: bool


class UserMembershipsResponse(BaseModel):
    """All active memberships of a user, grouped by scope."""
    org: List[OrgMembershipResponse]
    conference: List[ConferenceMembershipResponse]
    track: List[TrackMembershipResponse]


# ============================================================================
# Authorization Check Schemas
# ============================================================================

class AuthorizationCheckRequest(BaseModel):
    """Ask whether the caller may act with any of ``allowed_roles`` on a scope."""
    allowed_roles: List[Role] = Field(..., min_length=1)
    scope_kind: ScopeKind
    scope_id: Optional[str] = None
    require_org: bool = True


class AuthorizationCheckResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class EffectiveRoleResponse(BaseModel):
    user_id: str
    org_id: str
    conference_id: Optional[str] = None
    track_id: Optional[str] = None
    role: Optional[Role] = None
