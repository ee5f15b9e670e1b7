"""
Membership models for the three nested role scopes.

A user holds roles through three independent relations:
- organization membership (ADMIN, MANAGER)
- conference membership (MANAGER, SUB_MANAGER, AUTHOR)
- track membership (SUB_MANAGER)

Rows are never deleted. Removing a member flips ``status`` to INACTIVE and a
later re-assignment reactivates the same row, so there is at most one row per
(scope, user, role).
"""
import enum
from sqlalchemy import String, ForeignKey, Boolean, UniqueConstraint, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column

from confapp.core.database.base import Base, TimestampMixin, generate_ulid
from confapp.features.permissions.roles import Role


class MembershipStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class OrgMembership(Base, TimestampMixin):
    """User role within an organization."""
    __tablename__ = "org_memberships"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[Role] = mapped_column(SQLEnum(Role), nullable=False)
    status: Mapped[MembershipStatus] = mapped_column(
        SQLEnum(MembershipStatus), default=MembershipStatus.ACTIVE, nullable=False
    )
    assigned_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("org_id", "user_id", "role", name="uq_org_membership"),
    )

    def __repr__(self) -> str:
        return f"<OrgMembership(org_id={self.org_id}, user_id={self.user_id}, role={self.role}, status={self.status})>"


class ConferenceMembership(Base, TimestampMixin):
    """
    User role within a conference.

    A SUB_MANAGER with ``manages_full_conference`` has authority over every
    track of the conference; otherwise their authority comes from track
    memberships.
    """
    __tablename__ = "conference_memberships"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conference_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("conferences.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[Role] = mapped_column(SQLEnum(Role), nullable=False)
    manages_full_conference: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[MembershipStatus] = mapped_column(
        SQLEnum(MembershipStatus), default=MembershipStatus.ACTIVE, nullable=False
    )
    assigned_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("conference_id", "user_id", "role", name="uq_conference_membership"),
        Index("ix_conference_memberships_conf_role", "conference_id", "role"),
    )

    def __repr__(self) -> str:
        return (
            f"<ConferenceMembership(conference_id={self.conference_id}, user_id={self.user_id}, "
            f"role={self.role}, status={self.status})>"
        )


class TrackMembership(Base, TimestampMixin):
    """Track-scoped SUB_MANAGER assignment."""
    __tablename__ = "track_memberships"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conference_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("conferences.id", ondelete="CASCADE"), nullable=False, index=True
    )
    track_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[Role] = mapped_column(SQLEnum(Role), default=Role.SUB_MANAGER, nullable=False)
    status: Mapped[MembershipStatus] = mapped_column(
        SQLEnum(MembershipStatus), default=MembershipStatus.ACTIVE, nullable=False
    )
    assigned_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("track_id", "user_id", "role", name="uq_track_membership"),
    )

    def __repr__(self) -> str:
        return f"<TrackMembership(track_id={self.track_id}, user_id={self.user_id}, status={self.status})>"
