"""
Organization, conference and track models.

Organizations own conferences, conferences own tracks. Each conference has
exactly one ConferenceSettings row holding the rules the submission lifecycle
reads (file rules, payments, decision vocabulary, AI toggles).
"""
import enum
import secrets
from typing import Any
from sqlalchemy import (
    String, ForeignKey, Boolean, Integer, JSON, DateTime, UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime

from confapp.core.database.base import Base, TimestampMixin, generate_ulid


def generate_access_token() -> str:
    return secrets.token_hex(32)


class ConferenceStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class AIRunMode(str, enum.Enum):
    BOTH = "both"
    PLAGIARISM_ONLY = "plagiarism_only"
    ASSIST_ONLY = "assist_only"
    MANUAL_ONLY = "manual_only"


class AIVisibility(str, enum.Enum):
    ADMIN_ONLY = "admin_only"
    AUTHOR_VISIBLE = "author_visible"


DEFAULT_ALLOWED_TYPES = ["application/pdf"]
DEFAULT_DECISION_STATUSES = ["ACCEPT", "REJECT", "REVISION"]


class Organization(Base, TimestampMixin):
    """Tenant owning conferences. Slugs are globally unique."""
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    conferences: Mapped[list["Conference"]] = relationship(
        "Conference",
        back_populates="organization",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug={self.slug!r})>"


class Conference(Base, TimestampMixin):
    """Conference within an organization. Slugs are unique per organization."""
    __tablename__ = "conferences"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[ConferenceStatus] = mapped_column(
        SQLEnum(ConferenceStatus), default=ConferenceStatus.ACTIVE, nullable=False
    )
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Secret behind the author join link
    access_token: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, default=generate_access_token
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="conferences", lazy="selectin"
    )
    tracks: Mapped[list["Track"]] = relationship(
        "Track", back_populates="conference", lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint("org_id", "slug", name="uq_conference_org_slug"),
    )

    def __repr__(self) -> str:
        return f"<Conference(id={self.id}, org_id={self.org_id}, slug={self.slug!r})>"


class Track(Base, TimestampMixin):
    """Track within a conference. Codes are unique per conference."""
    __tablename__ = "tracks"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conference_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("conferences.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    conference: Mapped["Conference"] = relationship(
        "Conference", back_populates="tracks", lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint("conference_id", "code", name="uq_track_conference_code"),
    )

    def __repr__(self) -> str:
        return f"<Track(id={self.id}, conference_id={self.conference_id}, code={self.code!r})>"


class ConferenceSettings(Base, TimestampMixin):
    """
    Per-conference configuration, owned by conference admins.

    Read-only to the submission lifecycle and the AI orchestration.
    """
    __tablename__ = "conference_settings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conference_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("conferences.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    # Submission rules
    max_file_size_mb: Mapped[int | None] = mapped_column(Integer, default=25, nullable=True)
    allowed_types: Mapped[list[str]] = mapped_column(JSON, default=lambda: list(DEFAULT_ALLOWED_TYPES), nullable=False)
    allow_author_revision_after_submit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allow_admin_upload_final: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Payments
    payment_required_before_submit: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refund_policy: Mapped[str] = mapped_column(String(50), default="no_refunds", nullable=False)

    decision_statuses: Mapped[list[str]] = mapped_column(
        JSON, default=lambda: list(DEFAULT_DECISION_STATUSES), nullable=False
    )

    # AI analysis
    ai_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    ai_visibility: Mapped[AIVisibility] = mapped_column(
        SQLEnum(AIVisibility, values_callable=lambda e: [m.value for m in e]),
        default=AIVisibility.ADMIN_ONLY,
        nullable=False,
    )
    ai_run_mode: Mapped[AIRunMode] = mapped_column(
        SQLEnum(AIRunMode, values_callable=lambda e: [m.value for m in e]),
        default=AIRunMode.BOTH,
        nullable=False,
    )
    ai_consent_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    plagiarism_threshold_pct: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    exclude_references: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # {"summarization": {"name": "gemini", "model": "..."}, "similarity": {...}}
    ai_providers: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def requires_payment(self) -> bool:
        return self.amount_cents > 0

    def __repr__(self) -> str:
        return f"<ConferenceSettings(conference_id={self.conference_id}, amount_cents={self.amount_cents})>"
