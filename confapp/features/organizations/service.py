"""
Organization, conference, track and conference-settings operations.
"""
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.errors import ConflictError, NotFoundError
from confapp.features.organizations.models import (
    Conference,
    ConferenceSettings,
    ConferenceStatus,
    Organization,
    Track,
    generate_access_token,
)
from confapp.features.permissions.models import MembershipStatus, OrgMembership
from confapp.features.permissions.roles import Role
from confapp.utils import get_logger, slugify


log = get_logger(__name__)


async def _flush_or_conflict(db: AsyncSession, message: str, code: str) -> None:
    try:
        async with db.begin_nested():
            await db.flush()
    except IntegrityError:
        raise ConflictError(message, code=code)


async def create_organization(
    db: AsyncSession,
    name: str,
    slug: Optional[str] = None,
    admin_user_id: Optional[str] = None,
) -> Organization:
    """Create an organization, optionally with an initial ADMIN member."""
    final_slug = (slug or slugify(name)).lower()

    existing = await db.execute(select(Organization.id).where(Organization.slug == final_slug))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Organization slug already exists", code="ORG_EXISTS")

    org = Organization(name=name, slug=final_slug)
    db.add(org)
    await _flush_or_conflict(db, "Organization slug already exists", "ORG_EXISTS")

    if admin_user_id:
        db.add(OrgMembership(
            org_id=org.id,
            user_id=admin_user_id,
            role=Role.ADMIN,
            status=MembershipStatus.ACTIVE,
        ))
        await db.flush()

    log.info(f"Created organization {org.id} ({org.slug})")
    return org


async def get_organization(db: AsyncSession, org_id: str) -> Organization:
    org = await db.get(Organization, org_id)
    if org is None or org.is_deleted:
        raise NotFoundError("Organization not found", code="ORG_NOT_FOUND")
    return org


async def list_organizations_for_user(db: AsyncSession, user_id: str) -> list[Organization]:
    result = await db.execute(
        select(Organization)
        .join(OrgMembership, OrgMembership.org_id == Organization.id)
        .where(
            OrgMembership.user_id == user_id,
            OrgMembership.status == MembershipStatus.ACTIVE,
            Organization.is_deleted == False,  # noqa: E712
        )
        .distinct()
    )
    return list(result.scalars().all())


async def create_conference(db: AsyncSession, org_id: str, payload: dict[str, Any]) -> Conference:
    """
    Create a conference together with its settings row.

    Settings start from defaults; ``settings`` in the payload overrides them.
    """
    await get_organization(db, org_id)

    settings_overrides = payload.pop("settings", None) or {}
    slug = (payload.pop("slug", None) or slugify(payload["name"])).lower()

    existing = await db.execute(
        select(Conference.id).where(Conference.org_id == org_id, Conference.slug == slug)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Conference slug already exists for this org", code="CONFERENCE_EXISTS")

    conference = Conference(org_id=org_id, slug=slug, **payload)
    db.add(conference)
    await _flush_or_conflict(db, "Conference slug already exists for this org", "CONFERENCE_EXISTS")

    db.add(ConferenceSettings(org_id=org_id, conference_id=conference.id, **settings_overrides))
    await db.flush()

    log.info(f"Created conference {conference.id} ({slug}) in org {org_id}")
    return conference


async def list_conferences(db: AsyncSession, org_id: str, status: Optional[ConferenceStatus] = None) -> list[Conference]:
    stmt = select(Conference).where(Conference.org_id == org_id, Conference.is_deleted == False)  # noqa: E712
    if status is not None:
        stmt = stmt.where(Conference.status == status)
    result = await db.execute(stmt.order_by(Conference.created_at))
    return list(result.scalars().all())


async def update_conference(db: AsyncSession, conference: Conference, changes: dict[str, Any]) -> Conference:
    for field, value in changes.items():
        setattr(conference, field, value)
    await _flush_or_conflict(db, "Conference slug already exists for this org", "CONFERENCE_EXISTS")
    return conference


async def get_conference_by_access_token(db: AsyncSession, access_token: str) -> Conference:
    """Resolve a join link; deleted conferences are not found."""
    result = await db.execute(
        select(Conference).where(
            Conference.access_token == access_token,
            Conference.is_deleted == False,  # noqa: E712
        )
    )
    conference = result.scalar_one_or_none()
    if conference is None:
        raise NotFoundError("Conference not found", code="CONFERENCE_NOT_FOUND")
    return conference


async def rotate_access_token(db: AsyncSession, conference: Conference) -> Conference:
    """Issue a new join link; the previous one stops working."""
    conference.access_token = generate_access_token()
    await db.flush()
    log.info(f"Rotated access link of conference {conference.id}")
    return conference


async def create_track(db: AsyncSession, conference: Conference, name: str, code: str) -> Track:
    existing = await db.execute(
        select(Track.id).where(Track.conference_id == conference.id, Track.code == code)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Track code already exists for this conference", code="TRACK_EXISTS")

    track = Track(org_id=conference.org_id, conference_id=conference.id, name=name, code=code)
    db.add(track)
    await _flush_or_conflict(db, "Track code already exists for this conference", "TRACK_EXISTS")
    log.info(f"Created track {track.id} ({code}) in conference {conference.id}")
    return track


async def list_tracks(db: AsyncSession, conference_id: str) -> list[Track]:
    result = await db.execute(
        select(Track)
        .where(Track.conference_id == conference_id, Track.is_deleted == False)  # noqa: E712
        .order_by(Track.created_at)
    )
    return list(result.scalars().all())


async def get_settings_or_raise(db: AsyncSession, org_id: str, conference_id: str) -> ConferenceSettings:
    result = await db.execute(
        select(ConferenceSettings).where(
            ConferenceSettings.org_id == org_id,
            ConferenceSettings.conference_id == conference_id,
            ConferenceSettings.is_deleted == False,  # noqa: E712
        )
    )
    settings = result.scalar_one_or_none()
    if settings is None:
        raise NotFoundError(
            "Conference settings not configured for this conference",
            code="CONFERENCE_SETTINGS_NOT_FOUND",
        )
    return settings


async def update_settings(
    db: AsyncSession, settings: ConferenceSettings, changes: dict[str, Any]
) -> ConferenceSettings:
    for field, value in changes.items():
        setattr(settings, field, value)
    await db.flush()
    log.info(f"Updated settings for conference {settings.conference_id}: {sorted(changes)}")
    return settings
