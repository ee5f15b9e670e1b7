"""
Tests for the membership store and claim resolution.
"""
import pytest
from sqlalchemy import func, select

from confapp.core.errors import BadRequestError, ForbiddenError
from confapp.features.organizations import service as organizations
from confapp.features.organizations.models import ConferenceStatus
from confapp.features.permissions import memberships
from confapp.features.permissions.claims import resolve_claims
from confapp.features.permissions.engine import ScopeRef, authorize
from confapp.features.permissions.models import ConferenceMembership, MembershipStatus
from confapp.features.permissions.roles import Role

from tests.helpers import make_user, super_admin_claims


async def count_conference_rows(db, conference_id, user_id) -> int:
    result = await db.execute(
        select(func.count(ConferenceMembership.id)).where(
            ConferenceMembership.conference_id == conference_id,
            ConferenceMembership.user_id == user_id,
        )
    )
    return result.scalar_one()


async def test_add_conference_member_is_idempotent(db, tenant):
    user = await make_user(db, "chair@example.com")
    root = super_admin_claims()

    first = await memberships.add_conference_member(db, tenant.conference.id, user.id, Role.MANAGER, root)
    second = await memberships.add_conference_member(db, tenant.conference.id, user.id, Role.MANAGER, root)

    assert first.created is True
    assert second.created is False
    assert second.member.id == first.member.id
    assert await count_conference_rows(db, tenant.conference.id, user.id) == 1


async def test_removed_member_is_reactivated_not_duplicated(db, tenant):
    user = await make_user(db, "chair@example.com")
    root = super_admin_claims()

    first = await memberships.add_conference_member(db, tenant.conference.id, user.id, Role.MANAGER, root)
    removed = await memberships.remove_conference_member(db, tenant.conference.id, user.id)
    assert [m.status for m in removed] == [MembershipStatus.INACTIVE]

    again = await memberships.add_conference_member(db, tenant.conference.id, user.id, Role.MANAGER, root)
    assert again.created is False
    assert again.member.id == first.member.id
    assert again.member.status == MembershipStatus.ACTIVE
    assert await count_conference_rows(db, tenant.conference.id, user.id) == 1


async def test_grantor_cannot_assign_equal_role(db, tenant):
    manager = await make_user(db, "manager@example.com")
    other = await make_user(db, "other@example.com")
    await memberships.add_conference_member(db, tenant.conference.id, manager.id, Role.MANAGER, super_admin_claims())

    claims = await resolve_claims(db, manager.id, manager.email)
    with pytest.raises(ForbiddenError):
        await memberships.add_conference_member(db, tenant.conference.id, other.id, Role.MANAGER, claims)

    result = await memberships.add_conference_member(db, tenant.conference.id, other.id, Role.SUB_MANAGER, claims)
    assert result.created is True


async def test_org_admin_can_grant_conference_manager(db, tenant):
    admin = await make_user(db, "admin@example.com")
    chair = await make_user(db, "chair@example.com")
    await memberships.add_org_member(db, tenant.org.id, admin.id, Role.ADMIN, super_admin_claims())

    claims = await resolve_claims(db, admin.id, admin.email)
    result = await memberships.add_conference_member(db, tenant.conference.id, chair.id, Role.MANAGER, claims)
    assert result.member.org_id == tenant.org.id


async def test_role_must_fit_scope(db, tenant):
    user = await make_user(db, "user@example.com")
    with pytest.raises(BadRequestError) as exc:
        await memberships.add_org_member(db, tenant.org.id, user.id, Role.AUTHOR, super_admin_claims())
    assert exc.value.code == "INVALID_ROLE"


async def test_enroll_author_keeps_existing_role(db, tenant):
    reviewer = await make_user(db, "reviewer@example.com")
    await memberships.add_conference_member(
        db, tenant.conference.id, reviewer.id, Role.SUB_MANAGER, super_admin_claims()
    )

    result = await memberships.enroll_author(db, tenant.conference.id, reviewer.id)
    assert result.created is False
    assert result.member.role == Role.SUB_MANAGER


async def test_enroll_author_requires_active_conference(db, tenant):
    tenant.conference.status = ConferenceStatus.ARCHIVED
    await db.flush()
    user = await make_user(db, "late@example.com")

    with pytest.raises(BadRequestError) as exc:
        await memberships.enroll_author(db, tenant.conference.id, user.id)
    assert exc.value.code == "CONFERENCE_NOT_ACTIVE"


async def test_track_member_claims_authorize_only_their_track(db, tenant):
    other_track = await organizations.create_track(db, tenant.conference, "Workshops", "WS")
    reviewer = await make_user(db, "reviewer@example.com")
    await memberships.add_track_member(db, tenant.track.id, reviewer.id, super_admin_claims())

    claims = await resolve_claims(db, reviewer.id, reviewer.email)
    own = ScopeRef.track(tenant.track.id, tenant.conference.id, tenant.org.id)
    other = ScopeRef.track(other_track.id, tenant.conference.id, tenant.org.id)
    assert authorize(claims, [Role.SUB_MANAGER], own).allowed
    assert not authorize(claims, [Role.SUB_MANAGER], other).allowed


async def test_inactive_memberships_are_not_resolved(db, tenant):
    user = await make_user(db, "gone@example.com")
    await memberships.add_org_member(db, tenant.org.id, user.id, Role.MANAGER, super_admin_claims())
    await memberships.remove_org_member(db, tenant.org.id, user.id)

    claims = await resolve_claims(db, user.id, user.email)
    assert claims.org_roles == ()


async def test_super_admin_email_resolves_global_role(db):
    user = await make_user(db, "ROOT@example.com")
    claims = await resolve_claims(db, user.id, user.email)
    assert claims.is_super_admin
