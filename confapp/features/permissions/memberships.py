"""
Membership store for the org / conference / track role relations.

Every ``add_*`` operation is create-or-reactivate: there is at most one row per
(scope, user, role), an INACTIVE row is flipped back to ACTIVE, and an insert
that loses a race against the unique constraint re-reads the winning row.
"""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.errors import BadRequestError, ForbiddenError, NotFoundError
from confapp.features.organizations.models import Conference, ConferenceStatus, Organization, Track
from confapp.features.permissions.claims import ClaimSet
from confapp.features.permissions.engine import can_grant, effective_role
from confapp.features.permissions.models import (
    ConferenceMembership,
    MembershipStatus,
    OrgMembership,
    TrackMembership,
)
from confapp.features.permissions.roles import Role, ScopeKind, is_valid_for_scope
from confapp.features.users.models import User
from confapp.utils import get_logger


log = get_logger(__name__)

M = TypeVar("M", OrgMembership, ConferenceMembership, TrackMembership)


@dataclass
class MembershipResult(Generic[M]):
    member: M
    created: bool


def _validate_role(role: Role, kind: ScopeKind) -> Role:
    try:
        role = Role(role)
    except ValueError:
        raise BadRequestError(f"Unknown role {role}", code="INVALID_ROLE")
    if not is_valid_for_scope(role, kind):
        raise BadRequestError(
            f"Role {role.value} cannot be assigned at {kind.value} level", code="INVALID_ROLE"
        )
    return role


def _ensure_can_grant(grantor: ClaimSet, grantor_role: Optional[Role], target_role: Role) -> None:
    if not can_grant(grantor_role, target_role, grantor_is_super_admin=grantor.is_super_admin):
        raise ForbiddenError("Cannot assign a role equal to or higher than your own")


async def _ensure_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


async def _upsert(db: AsyncSession, model: type[M], lookup: dict, values: dict) -> MembershipResult[M]:
    """Create the membership row, or reactivate the existing one."""
    stmt = select(model).filter_by(**lookup)
    existing = (await db.execute(stmt)).scalar_one_or_none()

    if existing is None:
        member = model(**lookup, **values, status=MembershipStatus.ACTIVE)
        try:
            async with db.begin_nested():
                db.add(member)
        except IntegrityError:
            # Lost the race; another request inserted the same triple
            existing = (await db.execute(stmt)).scalar_one()
        else:
            log.info(f"Created {model.__tablename__} row for user {lookup['user_id']} role {lookup['role'].value}")
            return MembershipResult(member=member, created=True)

    if existing.status == MembershipStatus.INACTIVE:
        existing.status = MembershipStatus.ACTIVE
        for key, value in values.items():
            setattr(existing, key, value)
        await db.flush()
        log.info(f"Reactivated {model.__tablename__} row {existing.id}")
    return MembershipResult(member=existing, created=False)


async def _deactivate(db: AsyncSession, model: type[M], lookup: dict) -> list[M]:
    rows = (await db.execute(
        select(model).filter_by(**lookup).where(model.status == MembershipStatus.ACTIVE)
    )).scalars().all()
    if not rows:
        raise NotFoundError("Membership not found", code="MEMBERSHIP_NOT_FOUND")
    for row in rows:
        row.status = MembershipStatus.INACTIVE
    await db.flush()
    log.info(f"Deactivated {len(rows)} {model.__tablename__} row(s) for {lookup}")
    return list(rows)


# ============================================================================
# Organization members
# ============================================================================

async def add_org_member(
    db: AsyncSession,
    org_id: str,
    user_id: str,
    role: Role,
    grantor: ClaimSet,
) -> MembershipResult[OrgMembership]:
    role = _validate_role(role, ScopeKind.ORG)

    org = await db.get(Organization, org_id)
    if org is None or org.is_deleted:
        raise NotFoundError("Organization not found", code="ORG_NOT_FOUND")
    await _ensure_user(db, user_id)

    _ensure_can_grant(grantor, effective_role(grantor, org_id), role)

    return await _upsert(
        db,
        OrgMembership,
        {"org_id": org_id, "user_id": user_id, "role": role},
        {"assigned_by_id": grantor.user_id},
    )


async def remove_org_member(
    db: AsyncSession, org_id: str, user_id: str, role: Optional[Role] = None
) -> list[OrgMembership]:
    lookup = {"org_id": org_id, "user_id": user_id}
    if role is not None:
        lookup["role"] = Role(role)
    return await _deactivate(db, OrgMembership, lookup)


async def list_org_members(db: AsyncSession, org_id: str) -> list[OrgMembership]:
    result = await db.execute(
        select(OrgMembership)
        .where(OrgMembership.org_id == org_id, OrgMembership.status == MembershipStatus.ACTIVE)
        .order_by(OrgMembership.created_at)
    )
    return list(result.scalars().all())


# ============================================================================
# Conference members
# ============================================================================

async def add_conference_member(
    db: AsyncSession,
    conference_id: str,
    user_id: str,
    role: Role,
    grantor: ClaimSet,
    manages_full_conference: bool = False,
) -> MembershipResult[ConferenceMembership]:
    """
    Assign a conference-level role.

    The grantor's effective role at the conference (org role included) must be
    strictly above the role being granted, unless they are super-admin.
    """
    role = _validate_role(role, ScopeKind.CONFERENCE)

    conference = await db.get(Conference, conference_id)
    if conference is None or conference.is_deleted:
        raise NotFoundError("Conference not found", code="CONFERENCE_NOT_FOUND")
    await _ensure_user(db, user_id)

    grantor_role = effective_role(grantor, conference.org_id, conference_id)
    _ensure_can_grant(grantor, grantor_role, role)

    return await _upsert(
        db,
        ConferenceMembership,
        {"conference_id": conference_id, "user_id": user_id, "role": role},
        {
            "org_id": conference.org_id,
            "assigned_by_id": grantor.user_id,
            "manages_full_conference": bool(manages_full_conference and role == Role.SUB_MANAGER),
        },
    )


async def enroll_author(
    db: AsyncSession, conference_id: str, user_id: str
) -> MembershipResult[ConferenceMembership]:
    """
    Self-enrollment as AUTHOR of an active conference.

    Users that already hold any ACTIVE role in the conference keep it and no
    AUTHOR row is added.
    """
    conference = await db.get(Conference, conference_id)
    if conference is None or conference.is_deleted:
        raise NotFoundError("Conference not found", code="CONFERENCE_NOT_FOUND")
    if conference.status != ConferenceStatus.ACTIVE:
        raise BadRequestError("Conference is not accepting authors", code="CONFERENCE_NOT_ACTIVE")

    existing = (await db.execute(
        select(ConferenceMembership).where(
            ConferenceMembership.conference_id == conference_id,
            ConferenceMembership.user_id == user_id,
            ConferenceMembership.status == MembershipStatus.ACTIVE,
        ).limit(1)
    )).scalar_one_or_none()
    if existing is not None:
        return MembershipResult(member=existing, created=False)

    return await _upsert(
        db,
        ConferenceMembership,
        {"conference_id": conference_id, "user_id": user_id, "role": Role.AUTHOR},
        {"org_id": conference.org_id, "assigned_by_id": user_id, "manages_full_conference": False},
    )


async def remove_conference_member(
    db: AsyncSession, conference_id: str, user_id: str, role: Optional[Role] = None
) -> list[ConferenceMembership]:
    lookup = {"conference_id": conference_id, "user_id": user_id}
    if role is not None:
        lookup["role"] = Role(role)
    return await _deactivate(db, ConferenceMembership, lookup)


async def list_conference_members(
    db: AsyncSession, conference_id: str, role: Optional[Role] = None
) -> list[ConferenceMembership]:
    stmt = select(ConferenceMembership).where(
        ConferenceMembership.conference_id == conference_id,
        ConferenceMembership.status == MembershipStatus.ACTIVE,
    )
    if role is not None:
        stmt = stmt.where(ConferenceMembership.role == Role(role))
    result = await db.execute(stmt.order_by(ConferenceMembership.created_at))
    return list(result.scalars().all())


# ============================================================================
# Track members
# ============================================================================

async def add_track_member(
    db: AsyncSession,
    track_id: str,
    user_id: str,
    grantor: ClaimSet,
    role: Role = Role.SUB_MANAGER,
) -> MembershipResult[TrackMembership]:
    role = _validate_role(role, ScopeKind.TRACK)

    track = await db.get(Track, track_id)
    if track is None or track.is_deleted:
        raise NotFoundError("Track not found", code="TRACK_NOT_FOUND")
    await _ensure_user(db, user_id)

    grantor_role = effective_role(grantor, track.org_id, track.conference_id, track_id)
    _ensure_can_grant(grantor, grantor_role, role)

    return await _upsert(
        db,
        TrackMembership,
        {"track_id": track_id, "user_id": user_id, "role": role},
        {
            "org_id": track.org_id,
            "conference_id": track.conference_id,
            "assigned_by_id": grantor.user_id,
        },
    )


async def remove_track_member(db: AsyncSession, track_id: str, user_id: str) -> list[TrackMembership]:
    return await _deactivate(db, TrackMembership, {"track_id": track_id, "user_id": user_id})


async def list_track_members(db: AsyncSession, track_id: str) -> list[TrackMembership]:
    result = await db.execute(
        select(TrackMembership)
        .where(TrackMembership.track_id == track_id, TrackMembership.status == MembershipStatus.ACTIVE)
        .order_by(TrackMembership.created_at)
    )
    return list(result.scalars().all())


async def list_user_memberships(db: AsyncSession, user_id: str) -> dict[str, list]:
    """All ACTIVE memberships of a user, grouped by scope."""
    orgs = (await db.execute(
        select(OrgMembership).where(
            OrgMembership.user_id == user_id, OrgMembership.status == MembershipStatus.ACTIVE
        )
    )).scalars().all()
    conferences = (await db.execute(
        select(ConferenceMembership).where(
            ConferenceMembership.user_id == user_id, ConferenceMembership.status == MembershipStatus.ACTIVE
        )
    )).scalars().all()
    tracks = (await db.execute(
        select(TrackMembership).where(
            TrackMembership.user_id == user_id, TrackMembership.status == MembershipStatus.ACTIVE
        )
    )).scalars().all()
    return {"org": list(orgs), "conference": list(conferences), "track": list(tracks)}
