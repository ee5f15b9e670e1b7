"""
FastAPI dependencies for role-based route protection.

Implements:
- Scope resolution from path parameters and the ``x-org-id`` tenant header
- ``require_role`` dependency factory backed by the authorization engine
"""
from typing import Awaitable, Callable, Iterable, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.database.engine import get_db
from confapp.core.errors import NotFoundError
from confapp.features.organizations.models import Conference, Track
from confapp.features.permissions.claims import ClaimSet
from confapp.features.permissions.engine import ScopeRef, ensure_authorized
from confapp.features.permissions.roles import Role, ScopeKind
from confapp.features.users.dependencies import get_current_claims, get_tenant_org_id


ScopeResolver = Callable[[AsyncSession, Request, Optional[str]], Awaitable[ScopeRef]]


async def load_conference_in_tenant(
    db: AsyncSession, conference_id: str, tenant_org_id: Optional[str] = None
) -> Conference:
    """Load a live conference, hiding conferences outside the tenant org."""
    conference = await db.get(Conference, conference_id)
    if conference is None or conference.is_deleted:
        raise NotFoundError("Conference not found", code="CONFERENCE_NOT_FOUND")
    if tenant_org_id and conference.org_id != tenant_org_id:
        raise NotFoundError("Conference not found for this org", code="CONFERENCE_NOT_FOUND")
    return conference


async def load_track_in_tenant(
    db: AsyncSession, track_id: str, tenant_org_id: Optional[str] = None
) -> Track:
    track = await db.get(Track, track_id)
    if track is None or track.is_deleted:
        raise NotFoundError("Track not found", code="TRACK_NOT_FOUND")
    if tenant_org_id and track.org_id != tenant_org_id:
        raise NotFoundError("Track not found for this org", code="TRACK_NOT_FOUND")
    return track


async def resolve_scope(
    db: AsyncSession,
    kind: ScopeKind,
    path_params: dict,
    tenant_org_id: Optional[str],
) -> ScopeRef:
    """
    Build the target scope of a request.

    Org scope comes from ``{org_id}`` in the path or the tenant header.
    Conference and track scopes load the entity to learn their parent ids.
    """
    if kind == ScopeKind.ORG:
        return ScopeRef.org(path_params.get("org_id") or tenant_org_id)

    if kind == ScopeKind.CONFERENCE:
        conference_id = path_params.get("conference_id")
        if not conference_id:
            return ScopeRef.conference(None, tenant_org_id)
        conference = await load_conference_in_tenant(db, conference_id, tenant_org_id)
        return ScopeRef.conference(conference.id, conference.org_id)

    track_id = path_params.get("track_id")
    if not track_id:
        return ScopeRef.track(None, None, tenant_org_id)
    track = await load_track_in_tenant(db, track_id, tenant_org_id)
    return ScopeRef.track(track.id, track.conference_id, track.org_id)


def require_role(
    allowed_roles: Iterable[Role],
    scope_kind: ScopeKind = ScopeKind.ORG,
    *,
    require_org: bool = True,
    resolver: Optional[ScopeResolver] = None,
):
    """
    FastAPI dependency to require one of ``allowed_roles`` on the request scope.

    Usage:
        @router.post("/conferences/{conference_id}/members")
        async def add_member(
            claims: ClaimSet = Depends(require_role([Role.MANAGER], ScopeKind.CONFERENCE))
        ):
            pass

    Args:
        allowed_roles: Roles that may perform the operation
        scope_kind: Scope the operation is bound to
        require_org: Fail with ORG_REQUIRED when no scope id can be resolved
        resolver: Custom scope resolver for routes whose scope is derived
            from another entity (e.g. a submission's conference)

    Returns:
        Dependency function that returns the caller's claim set when allowed

    Raises:
        OrgRequiredError: 400 if no scope id could be resolved
        ForbiddenError: 403 if the caller's roles do not allow the operation
    """
    allowed = frozenset(Role(r) for r in allowed_roles)

    async def role_dependency(
        request: Request,
        claims: ClaimSet = Depends(get_current_claims),
        db: AsyncSession = Depends(get_db),
        tenant_org_id: Optional[str] = Depends(get_tenant_org_id),
    ) -> ClaimSet:
        if resolver is not None:
            scope = await resolver(db, request, tenant_org_id)
        else:
            scope = await resolve_scope(db, scope_kind, dict(request.path_params), tenant_org_id)

        ensure_authorized(claims, allowed, scope, require_org=require_org)
        return claims

    return role_dependency
