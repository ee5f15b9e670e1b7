"""
Pydantic schemas for AI consent, analysis reports and queue statistics.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field

from confapp.features.ai.models import AIReportStatus, RunBy


class ConsentCreate(BaseModel):
    consent_ai: bool
    consent_fine_tune: bool = False


class ConsentResponse(BaseModel):
    id: str
    submission_id: str
    user_id: str
    consent_ai: bool
    consent_fine_tune: bool
    captured_at: datetime
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = {"from_attributes": True}


class AnalysisRunRequest(BaseModel):
    file_id: Optional[str] = Field(None, description="Defaults to the most recent upload")


class AIReportResponse(BaseModel):
    id: str
    conference_id: str
    submission_id: str
    file_id: str
    job_key: str
    status: AIReportStatus
    summary: Optional[dict[str, Any]] = None
    format_check: Optional[dict[str, Any]] = None
    similarity: Optional[dict[str, Any]] = None
    flagged: Optional[bool] = None
    run_by: RunBy
    run_by_user_id: Optional[str] = None
    summarization_provider: Optional[str] = None
    similarity_provider: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AIReportListResponse(BaseModel):
    data: list[AIReportResponse]
    total: int
    limit: int
    skip: int


class QueueStatsResponse(BaseModel):
    waiting: int
    active: int
    completed: int
    failed: int
    mode: str
