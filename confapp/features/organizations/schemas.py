"""
Pydantic schemas for organization, conference, track and settings requests.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator

from confapp.features.organizations.models import AIRunMode, AIVisibility, ConferenceStatus


SLUG_PATTERN = r"^[a-z0-9]+(?:[-_][a-z0-9]+)*$"


# Organization schemas
class OrganizationCreate(BaseModel):
    """Schema for creating an organization (super admin only)."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=100, pattern=SLUG_PATTERN)
    admin_user_id: Optional[str] = Field(None, description="User granted org ADMIN on creation")


class OrganizationResponse(BaseModel):
    id: str
    name: str
    slug: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# Conference settings schemas
class ConferenceSettingsBase(BaseModel):
    max_file_size_mb: Optional[int] = Field(None, gt=0)
    allowed_types: Optional[list[str]] = None
    allow_author_revision_after_submit: Optional[bool] = None
    allow_admin_upload_final: Optional[bool] = None
    payment_required_before_submit: Optional[bool] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    amount_cents: Optional[int] = Field(None, ge=0)
    refund_policy: Optional[str] = Field(None, max_length=50)
    decision_statuses: Optional[list[str]] = Field(None, min_length=1)
    ai_enabled: Optional[bool] = None
    ai_visibility: Optional[AIVisibility] = None
    ai_run_mode: Optional[AIRunMode] = None
    ai_consent_required: Optional[bool] = None
    plagiarism_threshold_pct: Optional[int] = Field(None, ge=0, le=100)
    exclude_references: Optional[bool] = None
    ai_providers: Optional[dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def currency_upper(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @field_validator("decision_statuses")
    @classmethod
    def decision_statuses_upper(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return v
        return [s.strip().upper() for s in v if s.strip()]


class ConferenceSettingsUpdate(ConferenceSettingsBase):
    """Partial settings update; only provided fields change."""
    pass


class ConferenceSettingsResponse(BaseModel):
    id: str
    org_id: str
    conference_id: str
    max_file_size_mb: Optional[int]
    allowed_types: list[str]
    allow_author_revision_after_submit: bool
    allow_admin_upload_final: bool
    payment_required_before_submit: bool
    currency: str
    amount_cents: int
    refund_policy: str
    decision_statuses: list[str]
    ai_enabled: bool
    ai_visibility: AIVisibility
    ai_run_mode: AIRunMode
    ai_consent_required: bool
    plagiarism_threshold_pct: int
    exclude_references: bool
    ai_providers: Optional[dict[str, Any]] = None
    updated_at: datetime

    model_config = {"from_attributes": True}


# Conference schemas
class ConferenceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=100, pattern=SLUG_PATTERN)
    status: ConferenceStatus = ConferenceStatus.ACTIVE
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    settings: Optional[ConferenceSettingsBase] = None


class ConferenceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[ConferenceStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ConferenceResponse(BaseModel):
    id: str
    org_id: str
    name: str
    slug: str
    status: ConferenceStatus
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ConferenceAccessLinkResponse(BaseModel):
    """Join link handed to prospective authors."""
    conference_id: str
    access_token: str
    access_link: str


class ConferenceJoinInfo(BaseModel):
    """Public view of a conference, resolved from its join link."""
    id: str
    org_id: str
    name: str
    slug: str
    status: ConferenceStatus
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    model_config = {"from_attributes": True}


# Track schemas
class TrackCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=50)

    @field_validator("code")
    @classmethod
    def code_upper(cls, v: str) -> str:
        return v.strip().upper()


class TrackResponse(BaseModel):
    id: str
    org_id: str
    conference_id: str
    name: str
    code: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}
