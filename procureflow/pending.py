"""Read-side queries over approval instances.

Queries read the instance records the state machine writes, with no cache in
between, so a decision is visible to the next query as soon as it returns.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from .constants import STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED
from .persistence import InstanceRepository
from .persistence.models import WorkflowInstance
from .roles import RoleResolver


class PendingQueryService:
    """Answers "which approvals need action from this user now"."""

    def __init__(self, repository: InstanceRepository, role_resolver: RoleResolver) -> None:
        self._repository = repository
        self._role_resolver = role_resolver

    async def pending_for(
        self,
        user_id: str,
        document_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[WorkflowInstance]:
        """Pending instances whose current level lists one of the user's roles."""
        roles = await self._role_resolver.roles_for(user_id)
        return await self.pending_for_roles(roles, document_type=document_type, limit=limit)

    async def pending_for_roles(
        self,
        roles: Iterable[str],
        document_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[WorkflowInstance]:
        held = set(roles)
        if not held:
            return []
        instances = await self._repository.list_instances(
            status=STATUS_PENDING,
            document_type=document_type.strip().lower() if document_type else None,
        )
        result = [
            instance
            for instance in instances
            if instance.current_level is not None and instance.current_level.allows(held)
        ]
        return result[:limit] if limit is not None else result

    async def statistics(
        self, document_type: Optional[str] = None
    ) -> Dict[str, Dict[str, Any]]:
        """Instance count and average duration (hours) per status."""
        instances = await self._repository.list_instances(
            document_type=document_type.strip().lower() if document_type else None
        )
        grouped: Dict[str, List[WorkflowInstance]] = {}
        for instance in instances:
            grouped.setdefault(instance.status, []).append(instance)

        stats: Dict[str, Dict[str, Any]] = {}
        for status, members in grouped.items():
            durations = [m.duration_hours for m in members if m.duration_hours is not None]
            stats[status] = {
                "count": len(members),
                "avg_duration_hours": (
                    round(sum(durations) / len(durations), 2) if durations else None
                ),
            }
        return stats

    async def recent_completions(
        self, days: int = 7, limit: int = 50
    ) -> List[WorkflowInstance]:
        """Approved or rejected instances completed within the last ``days``."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        finished: List[WorkflowInstance] = []
        for status in (STATUS_APPROVED, STATUS_REJECTED):
            finished.extend(await self._repository.list_instances(status=status))
        recent = [
            i for i in finished if i.completed_at is not None and i.completed_at >= since
        ]
        recent.sort(key=lambda i: i.completed_at, reverse=True)
        return recent[:limit]
