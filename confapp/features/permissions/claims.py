"""
Role claims carried by access tokens.

Claims are resolved from live memberships once, when a token is issued, and
then travel with every request as an immutable ``ClaimSet``. The authorization
engine only ever reads a ``ClaimSet``; it never looks at process configuration.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core import config
from confapp.features.permissions.models import (
    ConferenceMembership,
    MembershipStatus,
    OrgMembership,
    TrackMembership,
)
from confapp.features.permissions.roles import Role


@dataclass(frozen=True)
class OrgRoleClaim:
    org_id: str
    role: Role


@dataclass(frozen=True)
class ConferenceRoleClaim:
    conference_id: str
    org_id: str
    role: Role
    manages_full_conference: bool = False
    status: MembershipStatus = MembershipStatus.ACTIVE


@dataclass(frozen=True)
class TrackRoleClaim:
    track_id: str
    conference_id: str
    role: Role = Role.SUB_MANAGER
    status: MembershipStatus = MembershipStatus.ACTIVE


@dataclass(frozen=True)
class ClaimSet:
    """
    Effective authorization context for one caller.

    A user may hold several conference roles for the same conference (e.g.
    AUTHOR and SUB_MANAGER), so every scope keeps a tuple of claims rather than
    a mapping.
    """
    user_id: str
    email: str = ""
    global_roles: frozenset[Role] = field(default_factory=frozenset)
    org_roles: tuple[OrgRoleClaim, ...] = ()
    conference_roles: tuple[ConferenceRoleClaim, ...] = ()
    track_roles: tuple[TrackRoleClaim, ...] = ()

    @property
    def is_super_admin(self) -> bool:
        return Role.SUPER_ADMIN in self.global_roles

    def org_roles_for(self, org_id: Optional[str]) -> list[Role]:
        if not org_id:
            return []
        return [c.role for c in self.org_roles if c.org_id == str(org_id)]

    def conference_claims_for(self, conference_id: Optional[str]) -> list[ConferenceRoleClaim]:
        if not conference_id:
            return []
        return [c for c in self.conference_roles if c.conference_id == str(conference_id)]

    def track_claims_for(self, track_id: Optional[str]) -> list[TrackRoleClaim]:
        if not track_id:
            return []
        return [c for c in self.track_roles if c.track_id == str(track_id)]

    def to_payload(self) -> dict[str, Any]:
        return {
            "sub": self.user_id,
            "email": self.email,
            "globalRoles": sorted(r.value for r in self.global_roles),
            "orgRoles": [{"orgId": c.org_id, "role": c.role.value} for c in self.org_roles],
            "conferenceRoles": [
                {
                    "conferenceId": c.conference_id,
                    "orgId": c.org_id,
                    "role": c.role.value,
                    "managesFullConference": c.manages_full_conference,
                    "status": c.status.value,
                }
                for c in self.conference_roles
            ],
            "trackRoles": [
                {
                    "trackId": c.track_id,
                    "conferenceId": c.conference_id,
                    "role": c.role.value,
                    "status": c.status.value,
                }
                for c in self.track_roles
            ],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ClaimSet":
        """Build a claim set from a decoded token payload; unknown roles are dropped."""
        valid = {r.value for r in Role}
        return cls(
            user_id=str(payload["sub"]),
            email=payload.get("email") or "",
            global_roles=frozenset(Role(r) for r in payload.get("globalRoles") or [] if r in valid),
            org_roles=tuple(
                OrgRoleClaim(org_id=str(c["orgId"]), role=Role(c["role"]))
                for c in payload.get("orgRoles") or []
                if c.get("role") in valid
            ),
            conference_roles=tuple(
                ConferenceRoleClaim(
                    conference_id=str(c["conferenceId"]),
                    org_id=str(c.get("orgId") or ""),
                    role=Role(c["role"]),
                    manages_full_conference=bool(c.get("managesFullConference", False)),
                    status=MembershipStatus(c.get("status", MembershipStatus.ACTIVE.value)),
                )
                for c in payload.get("conferenceRoles") or []
                if c.get("role") in valid
            ),
            track_roles=tuple(
                TrackRoleClaim(
                    track_id=str(c["trackId"]),
                    conference_id=str(c.get("conferenceId") or ""),
                    role=Role(c.get("role", Role.SUB_MANAGER.value)),
                    status=MembershipStatus(c.get("status", MembershipStatus.ACTIVE.value)),
                )
                for c in payload.get("trackRoles") or []
                if c.get("role", Role.SUB_MANAGER.value) in valid
            ),
        )


def global_roles_for_email(email: str) -> frozenset[Role]:
    """Global roles granted by deployment configuration; only used at token issuance."""
    if email and email.strip().lower() in config.SUPER_ADMIN_EMAILS:
        return frozenset({Role.SUPER_ADMIN})
    return frozenset()


async def resolve_claims(db: AsyncSession, user_id: str, email: str = "") -> ClaimSet:
    """Resolve a claim set from the user's ACTIVE memberships."""
    org_rows = (await db.execute(
        select(OrgMembership).where(
            OrgMembership.user_id == user_id,
            OrgMembership.status == MembershipStatus.ACTIVE,
        )
    )).scalars().all()
    conference_rows = (await db.execute(
        select(ConferenceMembership).where(
            ConferenceMembership.user_id == user_id,
            ConferenceMembership.status == MembershipStatus.ACTIVE,
        )
    )).scalars().all()
    track_rows = (await db.execute(
        select(TrackMembership).where(
            TrackMembership.user_id == user_id,
            TrackMembership.status == MembershipStatus.ACTIVE,
        )
    )).scalars().all()

    return ClaimSet(
        user_id=user_id,
        email=email,
        global_roles=global_roles_for_email(email),
        org_roles=tuple(OrgRoleClaim(org_id=m.org_id, role=m.role) for m in org_rows),
        conference_roles=tuple(
            ConferenceRoleClaim(
                conference_id=m.conference_id,
                org_id=m.org_id,
                role=m.role,
                manages_full_conference=m.manages_full_conference,
                status=m.status,
            )
            for m in conference_rows
        ),
        track_roles=tuple(
            TrackRoleClaim(track_id=m.track_id, conference_id=m.conference_id, role=m.role, status=m.status)
            for m in track_rows
        ),
    )
