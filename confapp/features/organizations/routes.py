"""
Organization, conference and track routes.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.database.engine import get_db
from confapp.features.organizations import service
from confapp.features.organizations.dependencies import (
    get_conference_by_id,
    get_conference_settings,
    get_organization_by_id,
)
from confapp.features.organizations.models import Conference, ConferenceSettings, ConferenceStatus, Organization
from confapp.features.organizations.schemas import (
    ConferenceAccessLinkResponse,
    ConferenceCreate,
    ConferenceResponse,
    ConferenceSettingsResponse,
    ConferenceSettingsUpdate,
    ConferenceUpdate,
    OrganizationCreate,
    OrganizationResponse,
    TrackCreate,
    TrackResponse,
)
from confapp.features.permissions.claims import ClaimSet
from confapp.features.permissions.dependencies import require_role
from confapp.features.permissions.roles import Role, ScopeKind
from confapp.features.users.dependencies import get_current_claims, get_super_admin_claims


router = APIRouter(tags=["organizations"])
conference_router = APIRouter(tags=["conferences"])

OrgAdmin = Depends(require_role([Role.ADMIN, Role.SUPER_ADMIN], ScopeKind.ORG))
OrgStaff = Depends(require_role([Role.ADMIN, Role.MANAGER, Role.SUPER_ADMIN], ScopeKind.ORG))
ConferenceManager = Depends(require_role([Role.MANAGER], ScopeKind.CONFERENCE))
ConferenceStaff = Depends(require_role([Role.MANAGER, Role.SUB_MANAGER], ScopeKind.CONFERENCE))


# Organization endpoints
@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    admin: Annotated[ClaimSet, Depends(get_super_admin_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization (super admin only)."""
    return await service.create_organization(
        db, org_data.name, slug=org_data.slug, admin_user_id=org_data.admin_user_id
    )


@router.get("/mine", response_model=list[OrganizationResponse])
async def get_my_organizations(
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Organizations the caller is an active member of."""
    return await service.list_organizations_for_user(db, claims.user_id)


@router.get("/{org_id}", response_model=OrganizationResponse, dependencies=[OrgStaff])
async def get_organization(
    organization: Annotated[Organization, Depends(get_organization_by_id)]
):
    return organization


@router.post(
    "/{org_id}/conferences",
    response_model=ConferenceResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[OrgAdmin],
)
async def create_conference(
    org_id: str,
    conference_data: ConferenceCreate,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a conference and its default settings (org ADMIN)."""
    payload = conference_data.model_dump(exclude={"settings"})
    if conference_data.settings is not None:
        payload["settings"] = conference_data.settings.model_dump(exclude_none=True)
    return await service.create_conference(db, org_id, payload)


@router.get("/{org_id}/conferences", response_model=list[ConferenceResponse])
async def list_conferences(
    org_id: str,
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)],
    conference_status: Optional[ConferenceStatus] = None
):
    return await service.list_conferences(db, org_id, conference_status)


# Conference endpoints
@conference_router.get("/{conference_id}", response_model=ConferenceResponse)
async def get_conference(
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    conference: Annotated[Conference, Depends(get_conference_by_id)]
):
    return conference


@conference_router.patch("/{conference_id}", response_model=ConferenceResponse, dependencies=[ConferenceManager])
async def update_conference(
    update_data: ConferenceUpdate,
    conference: Annotated[Conference, Depends(get_conference_by_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await service.update_conference(db, conference, update_data.model_dump(exclude_unset=True, exclude_none=True))


def _access_link(conference: Conference) -> ConferenceAccessLinkResponse:
    return ConferenceAccessLinkResponse(
        conference_id=conference.id,
        access_token=conference.access_token,
        access_link=f"/conference/join/{conference.access_token}",
    )


@conference_router.get(
    "/{conference_id}/access-link", response_model=ConferenceAccessLinkResponse, dependencies=[ConferenceManager]
)
async def get_access_link(
    conference: Annotated[Conference, Depends(get_conference_by_id)]
):
    return _access_link(conference)


@conference_router.post(
    "/{conference_id}/access-link", response_model=ConferenceAccessLinkResponse, dependencies=[ConferenceManager]
)
async def rotate_access_link(
    conference: Annotated[Conference, Depends(get_conference_by_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Replace the join link; links already shared stop working."""
    return _access_link(await service.rotate_access_token(db, conference))


@conference_router.post(
    "/{conference_id}/tracks",
    response_model=TrackResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[ConferenceManager],
)
async def create_track(
    track_data: TrackCreate,
    conference: Annotated[Conference, Depends(get_conference_by_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await service.create_track(db, conference, track_data.name, track_data.code)


@conference_router.get("/{conference_id}/tracks", response_model=list[TrackResponse])
async def list_tracks(
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    conference: Annotated[Conference, Depends(get_conference_by_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await service.list_tracks(db, conference.id)


@conference_router.get(
    "/{conference_id}/settings", response_model=ConferenceSettingsResponse, dependencies=[ConferenceStaff]
)
async def get_settings(
    settings: Annotated[ConferenceSettings, Depends(get_conference_settings)]
):
    return settings


@conference_router.patch(
    "/{conference_id}/settings", response_model=ConferenceSettingsResponse, dependencies=[ConferenceManager]
)
async def update_settings(
    update_data: ConferenceSettingsUpdate,
    settings: Annotated[ConferenceSettings, Depends(get_conference_settings)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update conference settings; only provided fields change."""
    return await service.update_settings(db, settings, update_data.model_dump(exclude_unset=True, exclude_none=True))
