"""
Submission, submission file and timeline models.

A submission moves DRAFT -> PAYMENT_PENDING -> SUBMITTED -> DECISION_MADE.
Files and timeline events are append-only: rows are never updated once written.
"""
import enum
from datetime import datetime
from typing import Any
from sqlalchemy import (
    String, ForeignKey, Boolean, Integer, JSON, DateTime, Text, UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column

from confapp.core.database.base import Base, TimestampMixin, generate_ulid, utcnow


class SubmissionStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    SUBMITTED = "SUBMITTED"
    DECISION_MADE = "DECISION_MADE"


# Statuses in which the author may still upload files and move towards submit
PRE_SUBMISSION_STATUSES = frozenset({SubmissionStatus.DRAFT, SubmissionStatus.PAYMENT_PENDING})


class TimelineEventType(str, enum.Enum):
    CREATED = "CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    FILE_UPLOADED = "FILE_UPLOADED"
    PAYMENT_INTENT_CREATED = "PAYMENT_INTENT_CREATED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    SUBMITTED = "SUBMITTED"
    DECISION_SET = "DECISION_SET"


class FileVersion(str, enum.Enum):
    V1 = "v1"
    FINAL = "final"


class Submission(Base, TimestampMixin):
    """
    Paper submitted to one track of a conference, owned by its creator.

    ``meta`` holds title, abstract, keywords and the author list; the column
    is named ``metadata`` in the table.
    """
    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conference_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("conferences.id", ondelete="CASCADE"), nullable=False
    )
    track_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_by_user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=False
    )

    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    status: Mapped[SubmissionStatus] = mapped_column(
        SQLEnum(SubmissionStatus), default=SubmissionStatus.DRAFT, nullable=False
    )

    # Decision
    decision_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    decision_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_submissions_conference_status", "conference_id", "status"),
        Index("ix_submissions_author_conference", "created_by_user_id", "conference_id"),
    )

    @property
    def title(self) -> str:
        return (self.meta or {}).get("title", "")

    @property
    def abstract(self) -> str:
        return (self.meta or {}).get("abstract", "")

    def __repr__(self) -> str:
        return f"<Submission(id={self.id}, status={self.status})>"


class SubmissionFile(Base, TimestampMixin):
    """Immutable uploaded artifact; ``v1`` from the author, ``final`` from an admin."""
    __tablename__ = "submission_files"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    submission_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[FileVersion] = mapped_column(
        SQLEnum(FileVersion, values_callable=lambda e: [m.value for m in e]),
        default=FileVersion.V1,
        nullable=False,
    )
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    uploaded_by_user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_submission_files_submission_uploaded", "submission_id", "uploaded_at"),
    )

    def __repr__(self) -> str:
        return f"<SubmissionFile(id={self.id}, submission_id={self.submission_id}, version={self.version})>"


class SubmissionTimelineEvent(Base):
    """
    Append-only audit record of a lifecycle transition.

    ``sequence`` is dense per submission and gives the definitive order, even
    when several events share a timestamp.
    """
    __tablename__ = "submission_timeline_events"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    submission_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TimelineEventType] = mapped_column(SQLEnum(TimelineEventType), nullable=False)
    actor_user_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("submission_id", "sequence", name="uq_timeline_submission_sequence"),
    )

    def __repr__(self) -> str:
        return f"<SubmissionTimelineEvent(submission_id={self.submission_id}, seq={self.sequence}, type={self.type})>"
