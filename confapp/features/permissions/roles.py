"""
Closed role and scope model.

Roles are ordered by a fixed hierarchy level; every other component compares
roles through ``hierarchy_level`` instead of the enum order.
"""
import enum
from typing import Iterable, Optional


class Role(str, enum.Enum):
    AUTHOR = "AUTHOR"
    SUB_MANAGER = "SUB_MANAGER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class ScopeKind(str, enum.Enum):
    ORG = "org"
    CONFERENCE = "conference"
    TRACK = "track"


ROLE_HIERARCHY: dict[Role, int] = {
    Role.AUTHOR: 0,
    Role.SUB_MANAGER: 1,
    Role.MANAGER: 2,
    Role.ADMIN: 3,
    Role.SUPER_ADMIN: 4,
}

# SUPER_ADMIN is a global claim, never an assignable org membership
ORG_LEVEL_ROLES = frozenset({Role.ADMIN, Role.MANAGER})
CONFERENCE_LEVEL_ROLES = frozenset({Role.MANAGER, Role.SUB_MANAGER, Role.AUTHOR})
TRACK_LEVEL_ROLES = frozenset({Role.SUB_MANAGER})

_SCOPE_ROLES = {
    ScopeKind.ORG: ORG_LEVEL_ROLES,
    ScopeKind.CONFERENCE: CONFERENCE_LEVEL_ROLES,
    ScopeKind.TRACK: TRACK_LEVEL_ROLES,
}


def hierarchy_level(role: Role) -> int:
    return ROLE_HIERARCHY[Role(role)]


def is_at_least(role: Role, other: Role) -> bool:
    """True if ``role`` is at least as powerful as ``other``."""
    return hierarchy_level(role) >= hierarchy_level(other)


def highest_role(roles: Iterable[Optional[Role]]) -> Optional[Role]:
    candidates = [Role(r) for r in roles if r is not None]
    if not candidates:
        return None
    return max(candidates, key=hierarchy_level)


def roles_for_scope(kind: ScopeKind) -> frozenset[Role]:
    return _SCOPE_ROLES[ScopeKind(kind)]


def is_valid_for_scope(role: Role, kind: ScopeKind) -> bool:
    return Role(role) in roles_for_scope(kind)
