"""
FastAPI dependencies for authentication.
"""
from typing import Annotated, Optional
from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core import config
from confapp.core.database.engine import get_db
from confapp.core.errors import ForbiddenError, OrgRequiredError, UnauthorizedError
from confapp.features.permissions.claims import ClaimSet, resolve_claims
from confapp.features.users.auth import verify_access_token
from confapp.features.users.models import User


security = HTTPBearer(auto_error=False)


async def get_current_claims(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> ClaimSet:
    """
    Get the caller's claim set from the bearer token.

    This dependency:
    1. Verifies the JWT signature and expiry
    2. Checks the user still exists and is active
    3. Re-resolves claims from live memberships when RBAC_LIVE_CLAIMS is on

    Usage:
        @router.get("/me")
        async def get_me(claims: ClaimSet = Depends(get_current_claims)):
            return claims
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Authorization header missing")

    claims = verify_access_token(credentials.credentials)

    result = await db.execute(select(User).where(User.id == claims.user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise UnauthorizedError("User no longer exists")
    if not user.is_active:
        raise ForbiddenError("User account is deactivated")

    if config.RBAC_LIVE_CLAIMS:
        live = await resolve_claims(db, user.id, user.email)
        # The super-admin claim is decided at issuance and survives re-resolution
        if claims.is_super_admin and not live.is_super_admin:
            live = ClaimSet(
                user_id=live.user_id,
                email=live.email,
                global_roles=claims.global_roles,
                org_roles=live.org_roles,
                conference_roles=live.conference_roles,
                track_roles=live.track_roles,
            )
        return live

    return claims


async def get_current_user(
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """Load the authenticated user row."""
    user = await db.get(User, claims.user_id)
    if user is None:
        raise UnauthorizedError("User no longer exists")
    return user


async def get_super_admin_claims(
    claims: Annotated[ClaimSet, Depends(get_current_claims)]
) -> ClaimSet:
    """Require the global super-admin claim."""
    if not claims.is_super_admin:
        raise ForbiddenError("Super admin privileges required")
    return claims


def get_tenant_org_id(x_org_id: Annotated[Optional[str], Header()] = None) -> Optional[str]:
    """Tenant organization from the ``x-org-id`` header."""
    return x_org_id or None


def require_tenant_org_id(
    org_id: Annotated[Optional[str], Depends(get_tenant_org_id)]
) -> str:
    """Tenant organization, failing with ORG_REQUIRED when the header is absent."""
    if not org_id:
        raise OrgRequiredError("orgId is required on x-org-id header")
    return org_id


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
