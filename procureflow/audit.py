"""Audit trail for workflow actions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

WORKFLOW_INITIATED = "workflow_initiated"
WORKFLOW_APPROVED = "workflow_approved"
WORKFLOW_REJECTED = "workflow_rejected"
WORKFLOW_CANCELLED = "workflow_cancelled"
WORKFLOW_RECALLED = "workflow_recalled"
WORKFLOW_RESUBMITTED = "workflow_resubmitted"


class AuditEntry(BaseModel):
    """One recorded workflow action."""

    event: str
    user_id: Optional[str] = None
    instance_id: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuditLog:
    """Records workflow actions.

    The base implementation writes entries to the ``procureflow.audit`` logger;
    subclasses may persist them elsewhere.
    """

    async def record(
        self,
        event: str,
        instance_id: str,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            event=event, user_id=user_id, instance_id=instance_id, details=details or {}
        )
        await self.write(entry)
        return entry

    async def write(self, entry: AuditEntry) -> None:
        logger.info(
            f"{entry.event} instance={entry.instance_id} user={entry.user_id} "
            f"details={entry.details}"
        )


class InMemoryAuditLog(AuditLog):
    """Keeps entries in a list; used by tests and the CLI."""

    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    async def write(self, entry: AuditEntry) -> None:
        self.entries.append(entry)
        await super().write(entry)

    def for_instance(self, instance_id: str) -> List[AuditEntry]:
        return [e for e in self.entries if e.instance_id == instance_id]
