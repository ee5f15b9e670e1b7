"""
Organization-related dependency injection functions.
"""
from typing import Annotated, Optional
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.database.engine import get_db
from confapp.features.organizations import service
from confapp.features.organizations.models import Conference, ConferenceSettings, Organization, Track
from confapp.features.permissions.dependencies import load_conference_in_tenant, load_track_in_tenant
from confapp.features.users.dependencies import get_tenant_org_id


async def get_organization_by_id(
    org_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get organization by ID or raise 404.

    Raises:
        NotFoundError: ORG_NOT_FOUND if the organization is missing or deleted
    """
    return await service.get_organization(db, org_id)


async def get_conference_by_id(
    conference_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    tenant_org_id: Annotated[Optional[str], Depends(get_tenant_org_id)]
) -> Conference:
    """Get a conference visible to the tenant org or raise 404."""
    return await load_conference_in_tenant(db, conference_id, tenant_org_id)


async def get_track_by_id(
    track_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    tenant_org_id: Annotated[Optional[str], Depends(get_tenant_org_id)]
) -> Track:
    return await load_track_in_tenant(db, track_id, tenant_org_id)


async def get_conference_settings(
    conference: Annotated[Conference, Depends(get_conference_by_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> ConferenceSettings:
    return await service.get_settings_or_raise(db, conference.org_id, conference.id)
