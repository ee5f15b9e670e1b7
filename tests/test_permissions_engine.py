"""
Tests for the pure authorization engine (no database).
"""
from confapp.features.permissions.claims import (
    ClaimSet,
    ConferenceRoleClaim,
    OrgRoleClaim,
    TrackRoleClaim,
)
from confapp.features.permissions.engine import (
    FORBIDDEN,
    ORG_REQUIRED,
    ScopeRef,
    authorize,
    can_grant,
    effective_role,
)
from confapp.features.permissions.models import MembershipStatus
from confapp.features.permissions.roles import Role, is_at_least


ORG = "org-1"
OTHER_ORG = "org-2"
CONF = "conf-1"
OTHER_CONF = "conf-2"
TRACK = "track-1"
OTHER_TRACK = "track-2"


def claims(**kwargs) -> ClaimSet:
    return ClaimSet(user_id="u1", email="u1@example.com", **kwargs)


def conference_scope(conference_id: str = CONF) -> ScopeRef:
    return ScopeRef.conference(conference_id, ORG)


def track_scope(track_id: str = TRACK, conference_id: str = CONF) -> ScopeRef:
    return ScopeRef.track(track_id, conference_id, ORG)


class TestOrgScope:
    def test_org_member_with_allowed_role(self):
        c = claims(org_roles=(OrgRoleClaim(ORG, Role.MANAGER),))
        assert authorize(c, [Role.MANAGER], ScopeRef.org(ORG)).allowed

    def test_role_from_another_org_does_not_count(self):
        c = claims(org_roles=(OrgRoleClaim(OTHER_ORG, Role.ADMIN),))
        decision = authorize(c, [Role.ADMIN], ScopeRef.org(ORG))
        assert not decision.allowed
        assert decision.reason == FORBIDDEN

    def test_missing_org_is_org_required(self):
        c = claims(org_roles=(OrgRoleClaim(ORG, Role.ADMIN),))
        decision = authorize(c, [Role.ADMIN], ScopeRef.org(None))
        assert decision.reason == ORG_REQUIRED

    def test_missing_org_without_requirement_is_forbidden(self):
        decision = authorize(claims(), [Role.ADMIN], ScopeRef.org(None), require_org=False)
        assert decision.reason == FORBIDDEN

    def test_super_admin_needs_super_admin_in_allowed_for_org_checks(self):
        c = claims(global_roles=frozenset({Role.SUPER_ADMIN}))
        assert not authorize(c, [Role.ADMIN], ScopeRef.org(ORG)).allowed
        assert authorize(c, [Role.ADMIN, Role.SUPER_ADMIN], ScopeRef.org(ORG)).allowed

    def test_super_admin_still_needs_an_org(self):
        c = claims(global_roles=frozenset({Role.SUPER_ADMIN}))
        decision = authorize(c, [Role.SUPER_ADMIN], ScopeRef.org(None))
        assert decision.reason == ORG_REQUIRED


class TestConferenceScope:
    def test_org_admin_inherits(self):
        c = claims(org_roles=(OrgRoleClaim(ORG, Role.ADMIN),))
        assert authorize(c, [Role.AUTHOR], conference_scope()).allowed

    def test_org_manager_only_passes_manager_checks(self):
        c = claims(org_roles=(OrgRoleClaim(ORG, Role.MANAGER),))
        assert authorize(c, [Role.MANAGER], conference_scope()).allowed
        assert not authorize(c, [Role.SUB_MANAGER], conference_scope()).allowed

    def test_active_conference_role(self):
        c = claims(conference_roles=(ConferenceRoleClaim(CONF, ORG, Role.SUB_MANAGER),))
        assert authorize(c, [Role.SUB_MANAGER], conference_scope()).allowed
        assert not authorize(c, [Role.SUB_MANAGER], conference_scope(OTHER_CONF)).allowed

    def test_inactive_conference_role_is_ignored(self):
        c = claims(conference_roles=(
            ConferenceRoleClaim(CONF, ORG, Role.MANAGER, status=MembershipStatus.INACTIVE),
        ))
        assert not authorize(c, [Role.MANAGER], conference_scope()).allowed

    def test_author_cannot_pass_manager_check(self):
        c = claims(conference_roles=(ConferenceRoleClaim(CONF, ORG, Role.AUTHOR),))
        assert not authorize(c, [Role.MANAGER], conference_scope()).allowed

    def test_super_admin_bypasses(self):
        c = claims(global_roles=frozenset({Role.SUPER_ADMIN}))
        assert authorize(c, [Role.MANAGER], conference_scope()).allowed


class TestTrackScope:
    def test_conference_manager_inherits(self):
        c = claims(conference_roles=(ConferenceRoleClaim(CONF, ORG, Role.MANAGER),))
        assert authorize(c, [Role.SUB_MANAGER], track_scope()).allowed

    def test_full_conference_sub_manager_covers_every_track(self):
        c = claims(conference_roles=(
            ConferenceRoleClaim(CONF, ORG, Role.SUB_MANAGER, manages_full_conference=True),
        ))
        assert authorize(c, [Role.SUB_MANAGER], track_scope(OTHER_TRACK)).allowed

    def test_plain_conference_sub_manager_needs_track_membership(self):
        c = claims(conference_roles=(ConferenceRoleClaim(CONF, ORG, Role.SUB_MANAGER),))
        assert not authorize(c, [Role.SUB_MANAGER], track_scope()).allowed

    def test_track_member_limited_to_their_track(self):
        c = claims(track_roles=(TrackRoleClaim(TRACK, CONF),))
        assert authorize(c, [Role.SUB_MANAGER], track_scope()).allowed
        assert not authorize(c, [Role.SUB_MANAGER], track_scope(OTHER_TRACK)).allowed

    def test_manager_of_other_conference_denied(self):
        c = claims(conference_roles=(ConferenceRoleClaim(OTHER_CONF, ORG, Role.MANAGER),))
        assert not authorize(c, [Role.SUB_MANAGER], track_scope()).allowed

    def test_org_admin_inherits(self):
        c = claims(org_roles=(OrgRoleClaim(ORG, Role.ADMIN),))
        assert authorize(c, [Role.SUB_MANAGER], track_scope()).allowed


class TestCanGrant:
    def test_only_strictly_lower_roles(self):
        assert can_grant(Role.ADMIN, Role.MANAGER)
        assert can_grant(Role.MANAGER, Role.SUB_MANAGER)
        assert not can_grant(Role.MANAGER, Role.MANAGER)
        assert not can_grant(Role.SUB_MANAGER, Role.MANAGER)

    def test_no_role_grants_nothing(self):
        assert not can_grant(None, Role.AUTHOR)

    def test_super_admin_exempt(self):
        assert can_grant(None, Role.ADMIN, grantor_is_super_admin=True)

    def test_role_values_from_payloads(self):
        assert can_grant("ADMIN", "MANAGER")
        assert not can_grant("AUTHOR", "AUTHOR")

    def test_hierarchy_comparison(self):
        assert is_at_least(Role.MANAGER, Role.MANAGER)
        assert is_at_least(Role.SUPER_ADMIN, Role.ADMIN)
        assert not is_at_least(Role.SUB_MANAGER, Role.MANAGER)


class TestEffectiveRole:
    def test_highest_across_scopes(self):
        c = claims(
            org_roles=(OrgRoleClaim(ORG, Role.MANAGER),),
            conference_roles=(ConferenceRoleClaim(CONF, ORG, Role.AUTHOR),),
            track_roles=(TrackRoleClaim(TRACK, CONF),),
        )
        assert effective_role(c, ORG, CONF, TRACK) == Role.MANAGER
        assert effective_role(c, OTHER_ORG, CONF) == Role.AUTHOR

    def test_inactive_claims_skipped(self):
        c = claims(track_roles=(TrackRoleClaim(TRACK, CONF, status=MembershipStatus.INACTIVE),))
        assert effective_role(c, ORG, CONF, TRACK) is None

    def test_super_admin_wins(self):
        c = claims(global_roles=frozenset({Role.SUPER_ADMIN}), org_roles=(OrgRoleClaim(ORG, Role.ADMIN),))
        assert effective_role(c, ORG) == Role.SUPER_ADMIN


def test_claims_survive_token_payload():
    c = claims(
        org_roles=(OrgRoleClaim(ORG, Role.ADMIN),),
        conference_roles=(ConferenceRoleClaim(CONF, ORG, Role.SUB_MANAGER, manages_full_conference=True),),
        track_roles=(TrackRoleClaim(TRACK, CONF),),
    )
    assert ClaimSet.from_payload(c.to_payload()) == c


def test_unknown_roles_in_token_payload_are_dropped():
    payload = {
        "sub": "u1",
        "globalRoles": ["SUPER_ADMIN", "ROOT"],
        "orgRoles": [{"orgId": ORG, "role": "OWNER"}],
        "conferenceRoles": [{"conferenceId": CONF, "orgId": ORG, "role": "CHAIR"}],
        "trackRoles": [
            {"trackId": TRACK, "conferenceId": CONF, "role": "REVIEWER"},
            {"trackId": OTHER_TRACK, "conferenceId": CONF},
        ],
    }
    c = ClaimSet.from_payload(payload)

    assert c.global_roles == frozenset({Role.SUPER_ADMIN})
    assert c.org_roles == ()
    assert c.conference_roles == ()
    assert c.track_roles == (TrackRoleClaim(OTHER_TRACK, CONF),)
