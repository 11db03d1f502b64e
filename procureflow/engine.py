"""Instance state machine for approval workflows.

The state machine is the only writer of :class:`WorkflowInstance` records.
Every transition increments ``version`` and is persisted with a conditional
write against the version that was read, so of two concurrent transitions on
one instance exactly one is stored and the other raises :class:`StaleVersion`.

Lifecycle::

    pending --approve (last level)--> approved
    pending --reject--------------->  rejected --resubmit--> (new instance)
    pending --cancel--------------->  cancelled
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from .constants import (
    DECISION_APPROVE,
    DECISION_REJECT,
    MODE_ALL,
    STATUS_APPROVED,
    STATUS_CANCELLED,
    STATUS_PENDING,
    STATUS_REJECTED,
)
from .contracts import Level, WorkflowDefinition
from .errors import (
    DuplicateDecisionByRole,
    InstanceNotFound,
    InstanceNotPending,
    InstanceNotRejected,
    InvalidDecision,
    InvalidDefinition,
    LevelAdvanced,
    NotAuthorizedForLevel,
    StaleVersion,
)
from .persistence import InstanceRepository
from .persistence.models import Decision, WorkflowInstance
from .routing import RoutingValue, normalize_routing_value, select_active_levels

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstanceStateMachine:
    """Creates approval instances and applies decisions to them."""

    def __init__(self, repository: InstanceRepository) -> None:
        self._repository = repository

    @property
    def repository(self) -> InstanceRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Reads
    async def get(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFound(f"Workflow instance {instance_id} not found", instance_id)
        return instance

    async def find_by_document(
        self, document_type: str, document_id: str
    ) -> Optional[WorkflowInstance]:
        return await self._repository.find_by_document(
            document_type.strip().lower(), str(document_id)
        )

    # ------------------------------------------------------------------
    # Guards
    @staticmethod
    def _check_version(instance: WorkflowInstance, expected_version: Optional[int]) -> int:
        if expected_version is None:
            return instance.version
        if expected_version != instance.version:
            raise StaleVersion(
                f"Workflow instance {instance.id} has changed (version "
                f"{instance.version}, expected {expected_version}); reload and retry",
                instance_id=instance.id,
                expected_version=expected_version,
                actual_version=instance.version,
            )
        return expected_version

    @staticmethod
    def _ensure_pending(instance: WorkflowInstance) -> Level:
        level = instance.current_level
        if instance.status != STATUS_PENDING or level is None:
            raise InstanceNotPending(
                f"Workflow is already {instance.status}", instance_id=instance.id
            )
        return level

    @staticmethod
    def _acting_roles(
        instance: WorkflowInstance, level: Level, actor_id: str, actor_roles: Iterable[str]
    ) -> list[str]:
        held = set(actor_roles)
        acting = [role for role in level.approver_roles if role in held]
        if not acting:
            raise NotAuthorizedForLevel(
                f"User {actor_id} is not authorized to act at {level.display_name} "
                f"(requires one of: {', '.join(level.approver_roles)})",
                instance_id=instance.id,
            )
        if level.approval_mode == MODE_ALL:
            decided = {
                role
                for d in instance.decisions_at(level.level_number)
                for role in d.actor_roles
            }
            acting = [role for role in acting if role not in decided]
            if not acting:
                raise DuplicateDecisionByRole(
                    f"Role(s) of user {actor_id} already decided at "
                    f"{level.display_name}",
                    instance_id=instance.id,
                )
        return acting

    @staticmethod
    def _level_complete(instance: WorkflowInstance, level: Level) -> bool:
        if level.approval_mode == MODE_ALL:
            return set(level.approver_roles) <= instance.credited_roles(level.level_number)
        return any(
            d.decision == DECISION_APPROVE
            for d in instance.decisions_at(level.level_number)
        )

    # ------------------------------------------------------------------
    # Transitions
    async def start(
        self,
        definition: WorkflowDefinition,
        document_id: str,
        routing_value: RoutingValue,
        submitted_by: Optional[str] = None,
        document_number: Optional[str] = None,
    ) -> WorkflowInstance:
        """Open a pending instance for a document routed through ``definition``.

        Raises:
            DuplicatePendingInstance: if the document already awaits approval.
        """
        context = normalize_routing_value(routing_value)
        levels = select_active_levels(definition, context)
        if not levels:
            raise InvalidDefinition(
                f"No approval levels determined for workflow '{definition.workflow_name}'"
            )
        instance = WorkflowInstance(
            definition_id=definition.id,
            definition_version=definition.version,
            workflow_name=definition.workflow_name,
            document_type=definition.document_type,
            document_id=str(document_id),
            document_number=document_number,
            routing_context=context,
            allow_recall=definition.allow_recall,
            active_levels=levels,
            submitted_by=submitted_by,
        )
        await self._repository.create_instance(instance)
        logger.info(
            f"Started approval {instance.id} for {instance.document_type} "
            f"{instance.document_id} with levels {instance.active_level_numbers}"
        )
        return instance

    async def decide(
        self,
        instance_id: str,
        actor_id: str,
        actor_roles: Iterable[str],
        decision: str,
        comment: Optional[str] = None,
        expected_version: Optional[int] = None,
        expected_level: Optional[int] = None,
    ) -> WorkflowInstance:
        """Record an approve/reject decision at the instance's current level.

        ``expected_version`` defaults to the version read here; pass the version
        the actor saw to make the decision conditional on it. ``expected_level``
        likewise pins the level number the actor meant to decide on.

        Raises:
            StaleVersion: the instance moved on since ``expected_version``, or a
                concurrent decision won the write.
            InstanceNotPending: the instance is already final.
            LevelAdvanced: the current level is no longer ``expected_level``.
            NotAuthorizedForLevel: the actor holds none of the level's roles.
            DuplicateDecisionByRole: in ``all`` mode, the actor's roles have
                already been counted at this level.
        """
        if decision not in (DECISION_APPROVE, DECISION_REJECT):
            raise InvalidDecision(f"Decision must be 'approve' or 'reject', got {decision!r}")

        instance = await self.get(instance_id)
        expected = self._check_version(instance, expected_version)
        level = self._ensure_pending(instance)
        if expected_level is not None and level.level_number != expected_level:
            raise LevelAdvanced(
                f"This document has already left level {expected_level} approval "
                f"(now at {level.display_name})",
                instance_id=instance.id,
            )
        acting = self._acting_roles(instance, level, actor_id, actor_roles)

        now = _utcnow()
        instance.decisions.append(
            Decision(
                level_number=level.level_number,
                actor_id=actor_id,
                actor_roles=acting,
                decision=decision,
                comment=comment,
                timestamp=now,
            )
        )
        instance.version += 1
        instance.updated_at = now

        if decision == DECISION_REJECT:
            instance.status = STATUS_REJECTED
            instance.completed_at = now
        elif self._level_complete(instance, level):
            if instance.current_level_index >= len(instance.active_levels) - 1:
                instance.status = STATUS_APPROVED
                instance.completed_at = now
            else:
                instance.current_level_index += 1

        await self._repository.save_instance(instance, expected)

        current = instance.current_level
        logger.info(
            f"{actor_id} recorded {decision} on {instance.id} at level {level.level_number}; "
            f"status={instance.status}"
            + (f", now at level {current.level_number}" if current else "")
        )
        return instance

    async def resubmit(
        self,
        instance_id: str,
        actor_id: str,
        definition: WorkflowDefinition,
        new_routing_value: RoutingValue = None,
        expected_version: Optional[int] = None,
    ) -> WorkflowInstance:
        """Replace a rejected instance with a fresh pending one.

        Active levels are re-evaluated with ``new_routing_value`` (or the
        rejected instance's routing context). The rejected instance keeps its
        decisions for audit and is marked ``superseded_by`` the new one.
        """
        old = await self.get(instance_id)
        expected = self._check_version(old, expected_version)
        if old.status != STATUS_REJECTED:
            raise InstanceNotRejected(
                f"Only rejected workflows can be resubmitted; this one is {old.status}",
                instance_id=old.id,
            )
        if old.superseded_by:
            raise InstanceNotRejected(
                f"Workflow instance {old.id} was already resubmitted as {old.superseded_by}",
                instance_id=old.id,
            )

        context = (
            normalize_routing_value(new_routing_value)
            if new_routing_value is not None
            else dict(old.routing_context)
        )
        levels = select_active_levels(definition, context)
        if not levels:
            raise InvalidDefinition(
                f"No approval levels determined for workflow '{definition.workflow_name}'"
            )

        new = WorkflowInstance(
            definition_id=definition.id,
            definition_version=definition.version,
            workflow_name=definition.workflow_name,
            document_type=old.document_type,
            document_id=old.document_id,
            document_number=old.document_number,
            routing_context=context,
            allow_recall=definition.allow_recall,
            active_levels=levels,
            submitted_by=actor_id,
            supersedes=old.id,
        )
        old.superseded_by = new.id
        old.version += 1
        old.updated_at = _utcnow()

        await self._repository.supersede_instance(old, expected, new)
        logger.info(
            f"Resubmitted {old.document_type} {old.document_id}: {old.id} -> {new.id} "
            f"with levels {new.active_level_numbers}"
        )
        return new

    async def cancel(
        self,
        instance_id: str,
        actor_id: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> WorkflowInstance:
        """Withdraw a pending instance, e.g. because its document was withdrawn."""
        instance = await self.get(instance_id)
        expected = self._check_version(instance, expected_version)
        if instance.status != STATUS_PENDING:
            raise InstanceNotPending(
                f"Cannot cancel workflow with status: {instance.status}",
                instance_id=instance.id,
            )
        now = _utcnow()
        instance.status = STATUS_CANCELLED
        instance.cancelled_by = actor_id
        instance.cancel_reason = reason
        instance.completed_at = now
        instance.updated_at = now
        instance.version += 1

        await self._repository.save_instance(instance, expected)
        logger.info(f"{actor_id} cancelled {instance.id}: {reason or 'no reason given'}")
        return instance
