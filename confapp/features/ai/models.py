"""
AI analysis models: author consent, analysis reports and queued analysis jobs.

A report moves QUEUED -> RUNNING -> DONE | FAILED. DONE reports carry all
result sections; FAILED reports carry only the failure code and message.
"""
import enum
from datetime import datetime
from typing import Any
from sqlalchemy import (
    String, ForeignKey, Boolean, Integer, JSON, DateTime, Text, UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column

from confapp.core.database.base import Base, TimestampMixin, generate_ulid, utcnow


class AIReportStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"


ACTIVE_REPORT_STATUSES = frozenset({AIReportStatus.QUEUED, AIReportStatus.RUNNING})


class RunBy(str, enum.Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class AnalysisJobStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ConsentRecord(Base, TimestampMixin):
    """Latest AI consent captured from a user for one submission."""
    __tablename__ = "ai_consent_records"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    submission_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)

    consent_ai: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consent_fine_tune: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        UniqueConstraint("submission_id", "user_id", name="uq_ai_consent_submission_user"),
    )

    def __repr__(self) -> str:
        return f"<ConsentRecord(submission_id={self.submission_id}, user_id={self.user_id}, consent_ai={self.consent_ai})>"


class AIReport(Base, TimestampMixin):
    """
    One analysis run of a submission file.

    ``summary``, ``format_check`` and ``similarity`` are set together when the
    run succeeds; ``failure_code``/``failure_message`` only when it fails.
    """
    __tablename__ = "ai_reports"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conference_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("conferences.id", ondelete="CASCADE"), nullable=False, index=True
    )
    submission_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    file_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("submission_files.id", ondelete="CASCADE"), nullable=False
    )
    job_key: Mapped[str] = mapped_column(String(80), nullable=False, index=True)

    status: Mapped[AIReportStatus] = mapped_column(
        SQLEnum(AIReportStatus), default=AIReportStatus.QUEUED, nullable=False
    )

    # Results: {"text", "word_count", "provider_meta"}
    summary: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # {"score", "checks": [{"key", "passed", "notes"}]}
    format_check: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # {"score_pct", "threshold_pct", "flagged", "exclude_references_used"}
    similarity: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    flagged: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # Provenance
    run_by: Mapped[RunBy] = mapped_column(SQLEnum(RunBy), default=RunBy.MANUAL, nullable=False)
    run_by_user_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    summarization_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    similarity_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    failure_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    failure_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_ai_reports_submission_file", "submission_id", "file_id"),
    )

    def __repr__(self) -> str:
        return f"<AIReport(id={self.id}, submission_id={self.submission_id}, status={self.status})>"


class AnalysisJob(Base, TimestampMixin):
    """
    Queued analysis run, picked up by ``confapp.worker``.

    ``job_key`` is derived from (submission, file), so there is never more
    than one job row per pair; a finished job is re-armed for the next run.
    """
    __tablename__ = "ai_analysis_jobs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_key: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    report_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("ai_reports.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[AnalysisJobStatus] = mapped_column(
        SQLEnum(AnalysisJobStatus), default=AnalysisJobStatus.PENDING, nullable=False, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<AnalysisJob(job_key={self.job_key}, status={self.status})>"
