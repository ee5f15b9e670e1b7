"""
Access token utilities.

Tokens are HS256 JWTs whose payload is the caller's ``ClaimSet``. Credential
checks (passwords, SSO) happen upstream; this module only mints and verifies
the claim-bearing token.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core import config
from confapp.core.errors import UnauthorizedError
from confapp.features.permissions.claims import ClaimSet, resolve_claims
from confapp.features.users.models import User


def create_access_token(claims: ClaimSet, expires_minutes: Optional[int] = None) -> str:
    """
    Mint an access token embedding the caller's role claims.

    Tokens are short-lived: role claims are a snapshot of memberships at
    issuance and go stale when memberships change.
    """
    now = datetime.now(timezone.utc)
    payload = claims.to_payload()
    payload["iat"] = now
    payload["exp"] = now + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_access_token(token: str) -> ClaimSet:
    """
    Verify a token signature and expiry and return its claim set.

    Raises:
        UnauthorizedError: If the token is invalid, expired or malformed
    """
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise UnauthorizedError(f"Invalid token: {str(e)}")

    if not payload.get("sub"):
        raise UnauthorizedError("Invalid token payload")

    try:
        return ClaimSet.from_payload(payload)
    except (KeyError, ValueError, TypeError) as e:
        raise UnauthorizedError(f"Invalid token claims: {str(e)}")


async def issue_token_for_user(db: AsyncSession, user: User) -> str:
    """Resolve the user's live memberships into claims and mint a token."""
    claims = await resolve_claims(db, user.id, user.email)
    user.last_login_at = datetime.now(timezone.utc)
    await db.flush()
    return create_access_token(claims)
