"""Role resolution boundary.

The engine never looks roles up on shared user objects; callers resolve an
actor's roles once per request and pass them along explicitly.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Protocol


class RoleResolver(Protocol):
    """Returns the role identifiers held by a user."""

    async def roles_for(self, user_id: str) -> FrozenSet[str]:
        """Return the roles of ``user_id`` (empty for unknown users)."""


class StaticRoleResolver(RoleResolver):
    """Resolve roles from a fixed user -> roles mapping."""

    def __init__(self, assignments: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        self._assignments: Dict[str, FrozenSet[str]] = {
            user: frozenset(roles) for user, roles in (assignments or {}).items()
        }

    def assign(self, user_id: str, *roles: str) -> None:
        self._assignments[user_id] = self._assignments.get(user_id, frozenset()) | set(roles)

    def revoke(self, user_id: str, *roles: str) -> None:
        self._assignments[user_id] = self._assignments.get(user_id, frozenset()) - set(roles)

    async def roles_for(self, user_id: str) -> FrozenSet[str]:
        return self._assignments.get(user_id, frozenset())
