"""
User feature routes.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core.database.engine import get_db
from confapp.core.errors import ConflictError, NotFoundError
from confapp.features.permissions.claims import ClaimSet
from confapp.features.users import profiles
from confapp.features.users.auth import issue_token_for_user
from confapp.features.users.models import User
from confapp.features.users.schemas import (
    AuthorProfileResponse, AuthorProfileUpsert, TokenResponse, UserCreate, UserPublic, UserResponse, UserUpdate
)
from confapp.features.users.dependencies import (
    get_current_claims, get_current_user, get_super_admin_claims, require_tenant_org_id
)


router = APIRouter(tags=["users"])


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    admin: Annotated[ClaimSet, Depends(get_super_admin_claims)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a user account (super admin only)."""
    user = User(**user_data.model_dump())
    user.email = user.email.lower()
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User with this email already exists")
    await db.refresh(user)
    return user


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    for field, value in update_data.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    await db.flush()
    await db.refresh(user)
    return user


@router.post("/me/token", response_model=TokenResponse)
async def refresh_token(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Re-issue the access token with claims resolved from live memberships.

    Clients call this after membership changes so that new or revoked roles
    take effect before the current token expires.
    """
    return TokenResponse(access_token=await issue_token_for_user(db, user))


@router.get("/me/profile", response_model=Optional[AuthorProfileResponse])
async def get_author_profile(
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Caller's author profile in the tenant org; null until saved."""
    await profiles.ensure_org_member(db, claims, org_id)
    return await profiles.get_profile(db, org_id, claims.user_id)


@router.put("/me/profile", response_model=AuthorProfileResponse)
async def save_author_profile(
    profile_data: AuthorProfileUpsert,
    claims: Annotated[ClaimSet, Depends(get_current_claims)],
    org_id: Annotated[str, Depends(require_tenant_org_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await profiles.ensure_org_member(db, claims, org_id)
    return await profiles.upsert_profile(db, org_id, claims.user_id, profile_data.model_dump())


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get public user profile by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    found = result.scalar_one_or_none()

    if found is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    return found
