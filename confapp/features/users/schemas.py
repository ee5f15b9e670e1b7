"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    affiliation: str | None = Field(None, max_length=255)


class UserCreate(UserBase):
    """Schema for creating a new user (super admin only)."""
    pass


class UserUpdate(BaseModel):
    """Schema for updating user information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    affiliation: str | None = Field(None, max_length=255)


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """Public user information (limited fields)."""
    id: str
    name: str
    affiliation: str | None = None

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthorProfileUpsert(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    affiliation: str = Field(..., min_length=1, max_length=255)
    orcid: str = Field(..., min_length=1, max_length=50)
    phone: str | None = Field(None, max_length=50)


class AuthorProfileResponse(AuthorProfileUpsert):
    id: str
    org_id: str
    user_id: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
