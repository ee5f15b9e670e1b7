"""
Author profiles: per-organization author details (name, affiliation, ORCID, phone).
"""
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.errors import ForbiddenError, NotFoundError
from confapp.features.organizations.models import Organization
from confapp.features.permissions.claims import ClaimSet
from confapp.features.users.models import AuthorProfile
from confapp.utils import get_logger


log = get_logger(__name__)


async def ensure_org_member(db: AsyncSession, claims: ClaimSet, org_id: str) -> None:
    """Any org or conference role in the organization, or super admin."""
    org = await db.get(Organization, org_id)
    if org is None or org.is_deleted:
        raise NotFoundError("Organization not found", code="ORG_NOT_FOUND")
    if claims.is_super_admin or claims.org_roles_for(org_id):
        return
    if any(c.org_id == org_id for c in claims.conference_roles):
        return
    raise ForbiddenError("Not a member of this organization")


async def get_profile(db: AsyncSession, org_id: str, user_id: str) -> Optional[AuthorProfile]:
    result = await db.execute(
        select(AuthorProfile).where(
            AuthorProfile.org_id == org_id,
            AuthorProfile.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def upsert_profile(
    db: AsyncSession, org_id: str, user_id: str, fields: dict[str, Any]
) -> AuthorProfile:
    """Create the caller's profile in ``org_id`` or overwrite it."""
    profile = await get_profile(db, org_id, user_id)
    if profile is None:
        try:
            async with db.begin_nested():
                profile = AuthorProfile(org_id=org_id, user_id=user_id, **fields)
                db.add(profile)
        except IntegrityError:
            profile = await get_profile(db, org_id, user_id)

    for field, value in fields.items():
        setattr(profile, field, value)
    await db.flush()
    log.info(f"Saved author profile of user {user_id} in org {org_id}")
    return profile
