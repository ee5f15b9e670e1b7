"""
Authorization engine for the org / conference / track hierarchy.

Implements:
- ``authorize``: allow/deny for an operation bound to a scope
- ``can_grant``: the "assign only strictly lower roles" rule
- ``effective_role``: highest role across all applicable scopes (audit/reporting)
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from confapp.core.errors import ForbiddenError, OrgRequiredError
from confapp.features.permissions.claims import ClaimSet
from confapp.features.permissions.models import MembershipStatus
from confapp.features.permissions.roles import Role, ScopeKind, highest_role, is_at_least
from confapp.utils import get_logger


log = get_logger(__name__)

ORG_REQUIRED = "ORG_REQUIRED"
FORBIDDEN = "FORBIDDEN"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def _deny(reason: str) -> Decision:
    return Decision(False, reason)


@dataclass(frozen=True)
class ScopeRef:
    """
    Target scope of an operation plus the ids of its parent scopes.

    Parents are needed for inheritance: an org ADMIN passes conference checks
    of conferences in that org, a conference MANAGER passes checks on every
    track of that conference.
    """
    kind: ScopeKind
    scope_id: Optional[str]
    org_id: Optional[str] = None
    conference_id: Optional[str] = None

    @classmethod
    def org(cls, org_id: Optional[str]) -> "ScopeRef":
        return cls(ScopeKind.ORG, org_id, org_id=org_id)

    @classmethod
    def conference(cls, conference_id: Optional[str], org_id: Optional[str]) -> "ScopeRef":
        return cls(ScopeKind.CONFERENCE, conference_id, org_id=org_id, conference_id=conference_id)

    @classmethod
    def track(cls, track_id: Optional[str], conference_id: Optional[str], org_id: Optional[str]) -> "ScopeRef":
        return cls(ScopeKind.TRACK, track_id, org_id=org_id, conference_id=conference_id)


def authorize(
    claims: ClaimSet,
    allowed_roles: Iterable[Role],
    scope: ScopeRef,
    *,
    require_org: bool = True,
) -> Decision:
    """
    Decide whether ``claims`` may perform an operation restricted to
    ``allowed_roles`` on ``scope``.

    Resolution order:
        1. global super-admin (org checks only when SUPER_ADMIN is allowed;
           conference and track checks always)
        2. scope id presence (ORG_REQUIRED)
        3. org scope: org membership role in allowed
        4. conference scope: org ADMIN, org MANAGER if MANAGER allowed,
           ACTIVE conference membership role in allowed
        5. track scope: org ADMIN, conference MANAGER, full-conference
           SUB_MANAGER, ACTIVE track membership role in allowed
        6. FORBIDDEN
    """
    allowed = frozenset(Role(r) for r in allowed_roles)

    if claims.is_super_admin:
        if scope.kind != ScopeKind.ORG:
            return ALLOW
        if Role.SUPER_ADMIN in allowed:
            if require_org and not scope.scope_id:
                return _deny(ORG_REQUIRED)
            return ALLOW

    if not scope.scope_id:
        return _deny(ORG_REQUIRED if require_org else FORBIDDEN)

    if scope.kind == ScopeKind.ORG:
        decision = _authorize_org(claims, allowed, scope)
    elif scope.kind == ScopeKind.CONFERENCE:
        decision = _authorize_conference(claims, allowed, scope)
    else:
        decision = _authorize_track(claims, allowed, scope)

    if not decision:
        log.debug(
            f"Denied {scope.kind.value} access for user {claims.user_id} "
            f"on {scope.scope_id} (allowed={sorted(r.value for r in allowed)})"
        )
    return decision


def _authorize_org(claims: ClaimSet, allowed: frozenset[Role], scope: ScopeRef) -> Decision:
    if any(role in allowed for role in claims.org_roles_for(scope.scope_id)):
        return ALLOW
    return _deny(FORBIDDEN)


def _authorize_conference(claims: ClaimSet, allowed: frozenset[Role], scope: ScopeRef) -> Decision:
    org_roles = claims.org_roles_for(scope.org_id)
    if Role.ADMIN in org_roles:
        return ALLOW
    # An org manager gains nothing a conference manager would not have
    if Role.MANAGER in org_roles and Role.MANAGER in allowed:
        return ALLOW
    for claim in claims.conference_claims_for(scope.scope_id):
        if claim.status == MembershipStatus.ACTIVE and claim.role in allowed:
            return ALLOW
    return _deny(FORBIDDEN)


def _authorize_track(claims: ClaimSet, allowed: frozenset[Role], scope: ScopeRef) -> Decision:
    if Role.ADMIN in claims.org_roles_for(scope.org_id):
        return ALLOW
    for claim in claims.conference_claims_for(scope.conference_id):
        if claim.status != MembershipStatus.ACTIVE:
            continue
        if claim.role == Role.MANAGER:
            return ALLOW
        if claim.role == Role.SUB_MANAGER and claim.manages_full_conference:
            return ALLOW
    for claim in claims.track_claims_for(scope.scope_id):
        if claim.status == MembershipStatus.ACTIVE and claim.role in allowed:
            return ALLOW
    return _deny(FORBIDDEN)


def ensure_authorized(
    claims: ClaimSet,
    allowed_roles: Iterable[Role],
    scope: ScopeRef,
    *,
    require_org: bool = True,
) -> None:
    """Raise the typed error matching a denial."""
    decision = authorize(claims, allowed_roles, scope, require_org=require_org)
    if decision:
        return
    if decision.reason == ORG_REQUIRED:
        raise OrgRequiredError()
    raise ForbiddenError("Insufficient role for this operation")


def can_grant(grantor_role: Optional[Role], target_role: Role, *, grantor_is_super_admin: bool = False) -> bool:
    """
    A grantor may only assign roles strictly below their own effective role.

    Super-admins are exempt. A grantor without any role can grant nothing.
    """
    if grantor_is_super_admin:
        return True
    if grantor_role is None:
        return False
    return not is_at_least(target_role, grantor_role)


def effective_role(
    claims: ClaimSet,
    org_id: Optional[str],
    conference_id: Optional[str] = None,
    track_id: Optional[str] = None,
) -> Optional[Role]:
    """Highest role among global, org, ACTIVE conference and ACTIVE track claims."""
    candidates: list[Role] = list(claims.global_roles)
    candidates.extend(claims.org_roles_for(org_id))
    candidates.extend(
        c.role for c in claims.conference_claims_for(conference_id) if c.status == MembershipStatus.ACTIVE
    )
    candidates.extend(
        c.role for c in claims.track_claims_for(track_id) if c.status == MembershipStatus.ACTIVE
    )
    return highest_role(candidates)
