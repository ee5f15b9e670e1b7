"""
Pydantic schemas for submission requests and responses.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, Field

from confapp.features.payments.schemas import PaymentIntentResponse
from confapp.features.submissions.models import FileVersion, SubmissionStatus, TimelineEventType


class AuthorMeta(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    affiliation: str = Field(..., min_length=1, max_length=255)
    orcid: Optional[str] = Field(None, max_length=50)
    corresponding: bool = False


class SubmissionMetadata(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    abstract: str = Field(..., min_length=1)
    keywords: list[str] = Field(default_factory=list)
    authors: list[AuthorMeta] = Field(default_factory=list)


class SubmissionMetadataUpdate(BaseModel):
    """Partial metadata update; only provided fields change."""
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    abstract: Optional[str] = Field(None, min_length=1)
    keywords: Optional[list[str]] = None
    authors: Optional[list[AuthorMeta]] = None


class SubmissionCreate(BaseModel):
    conference_id: str = Field(..., min_length=1)
    track_id: str = Field(..., min_length=1)
    metadata: SubmissionMetadata


class SubmissionUpdate(BaseModel):
    metadata: SubmissionMetadataUpdate


class DecisionCreate(BaseModel):
    status: str = Field(..., min_length=1, max_length=50, description="One of the conference decision statuses")
    notes: Optional[str] = Field(None, max_length=5000)


class SubmissionResponse(BaseModel):
    id: str
    org_id: str
    conference_id: str
    track_id: str
    created_by_user_id: str
    metadata: dict[str, Any] = Field(validation_alias=AliasChoices("meta", "metadata"))
    status: SubmissionStatus
    decision_status: Optional[str] = None
    decision_notes: Optional[str] = None
    decided_by_id: Optional[str] = None
    decided_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SubmissionFileResponse(BaseModel):
    id: str
    submission_id: str
    version: FileVersion
    storage_key: str
    original_name: str
    mime_type: str
    size_bytes: int
    checksum: Optional[str] = None
    uploaded_by_user_id: str
    uploaded_at: datetime

    model_config = {"from_attributes": True}


class TimelineEventResponse(BaseModel):
    id: str
    sequence: int
    type: TimelineEventType
    actor_user_id: Optional[str] = None
    payload: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}


class SubmissionDetailResponse(BaseModel):
    submission: SubmissionResponse
    timeline: list[TimelineEventResponse]
    files: list[SubmissionFileResponse]
    payment: Optional[PaymentIntentResponse] = None

    model_config = {"from_attributes": True}
