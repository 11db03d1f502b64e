"""Data models for persisted approval instances."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..constants import (
    DECISION_APPROVE,
    STATUS_APPROVED,
    STATUS_PENDING,
    TERMINAL_STATUSES,
)
from ..contracts import Level

InstanceStatus = Literal["pending", "approved", "rejected", "cancelled"]
DecisionKind = Literal["approve", "reject"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Decision(BaseModel):
    """One approve/reject action recorded against an instance."""

    level_number: int
    actor_id: str
    actor_roles: List[str] = Field(default_factory=list)
    decision: DecisionKind
    comment: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class WorkflowInstance(BaseModel):
    """A running (or finished) approval bound to one document."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    definition_id: Optional[str] = None
    definition_version: int = 0
    workflow_name: Optional[str] = None
    document_type: str
    document_id: str
    document_number: Optional[str] = None
    routing_context: Dict[str, Any] = Field(default_factory=dict)
    allow_recall: bool = True

    status: InstanceStatus = STATUS_PENDING
    active_levels: List[Level] = Field(default_factory=list)
    current_level_index: int = 0
    decisions: List[Decision] = Field(default_factory=list)
    version: int = 1

    submitted_by: Optional[str] = None
    submitted_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None
    supersedes: Optional[str] = None
    superseded_by: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_level(self) -> Optional[Level]:
        """The level awaiting action, or ``None`` once the instance is final."""
        if self.status != STATUS_PENDING:
            return None
        if 0 <= self.current_level_index < len(self.active_levels):
            return self.active_levels[self.current_level_index]
        return None

    @property
    def active_level_numbers(self) -> List[int]:
        return [level.level_number for level in self.active_levels]

    @property
    def completed_levels(self) -> List[int]:
        if self.status == STATUS_APPROVED:
            return self.active_level_numbers
        return self.active_level_numbers[: self.current_level_index]

    @property
    def progress_percentage(self) -> int:
        if not self.active_levels:
            return 0
        return round(len(self.completed_levels) / len(self.active_levels) * 100)

    @property
    def duration_hours(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        delta = self.completed_at - self.submitted_at
        return round(delta.total_seconds() / 3600, 2)

    def decisions_at(self, level_number: int) -> List[Decision]:
        return [d for d in self.decisions if d.level_number == level_number]

    def credited_roles(self, level_number: int) -> set[str]:
        """Roles that already have an approval recorded at ``level_number``."""
        return {
            role
            for d in self.decisions_at(level_number)
            if d.decision == DECISION_APPROVE
            for role in d.actor_roles
        }

    def summary(self) -> Dict[str, Any]:
        current = self.current_level
        return {
            "id": self.id,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "status": self.status,
            "current_level": current.level_number if current else None,
            "total_levels": len(self.active_levels),
            "completed_levels": len(self.completed_levels),
            "progress_percentage": self.progress_percentage,
            "submitted_at": self.submitted_at,
            "completed_at": self.completed_at,
            "duration_hours": self.duration_hours,
            "decision_count": len(self.decisions),
            "version": self.version,
        }
