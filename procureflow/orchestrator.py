"""Workflow orchestrator: the entry point document modules and handlers call."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from .audit import (
    WORKFLOW_APPROVED,
    WORKFLOW_CANCELLED,
    WORKFLOW_INITIATED,
    WORKFLOW_RECALLED,
    WORKFLOW_REJECTED,
    WORKFLOW_RESUBMITTED,
    AuditLog,
)
from .config import EngineConfig, ProcureflowConfig, load_config
from .constants import DECISION_APPROVE, DECISION_REJECT, STATUS_APPROVED
from .contracts import WorkflowDefinition
from .engine import InstanceStateMachine
from .errors import (
    DefinitionNotFound,
    InvalidDecision,
    InvalidRequest,
    RecallNotAllowed,
    StaleVersion,
)
from .pending import PendingQueryService
from .persistence import InstanceRepository, get_repository
from .persistence.models import WorkflowInstance
from .registry import DefinitionStore, load_definitions
from .roles import RoleResolver, StaticRoleResolver
from .routing import RoutingValue, normalize_routing_value
from .utils.retry import retry_on

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """Validates requests and delegates to the state machine and queries.

    Holds no workflow state of its own: definitions live in the
    :class:`DefinitionStore`, instances in the repository.
    """

    def __init__(
        self,
        definitions: DefinitionStore,
        repository: InstanceRepository,
        role_resolver: RoleResolver,
        audit_log: Optional[AuditLog] = None,
        engine_config: Optional[EngineConfig] = None,
    ) -> None:
        self.definitions = definitions
        self.state_machine = InstanceStateMachine(repository)
        self.queries = PendingQueryService(repository, role_resolver)
        self._role_resolver = role_resolver
        self._audit = audit_log or AuditLog()
        self._engine_config = engine_config or EngineConfig()

    # ------------------------------------------------------------------
    @staticmethod
    def _document_type(document_type: str) -> str:
        if not isinstance(document_type, str) or not document_type.strip():
            raise InvalidRequest("document_type is required")
        return document_type.strip().lower()

    @staticmethod
    def _decision(decision: str) -> str:
        normalized = decision.strip().lower() if isinstance(decision, str) else decision
        if normalized not in (DECISION_APPROVE, DECISION_REJECT):
            raise InvalidDecision('Action must be either "approve" or "reject"')
        return normalized

    async def _roles(self, actor_id: str, actor_roles: Optional[Iterable[str]]) -> frozenset[str]:
        if actor_roles is not None:
            return frozenset(actor_roles)
        return await self._role_resolver.roles_for(actor_id)

    def _resubmission_definition(self, instance: WorkflowInstance) -> WorkflowDefinition:
        if instance.workflow_name:
            try:
                return self.definitions.resolve(instance.document_type, instance.workflow_name)
            except DefinitionNotFound:
                logger.warning(
                    f"Workflow '{instance.workflow_name}' is no longer active; "
                    f"resubmitting {instance.id} through the current default"
                )
        return self.definitions.resolve(instance.document_type)

    # ------------------------------------------------------------------
    async def start(
        self,
        document_type: str,
        document_id: Any,
        routing_value: RoutingValue,
        submitted_by: Optional[str] = None,
        document_number: Optional[str] = None,
        workflow_name: Optional[str] = None,
    ) -> WorkflowInstance:
        """Submit a document for approval."""
        doc_type = self._document_type(document_type)
        if document_id is None or not str(document_id).strip():
            raise InvalidRequest("document_id is required")
        normalize_routing_value(routing_value)
        definition = self.definitions.resolve(doc_type, workflow_name)

        instance = await self.state_machine.start(
            definition,
            str(document_id),
            routing_value,
            submitted_by=submitted_by,
            document_number=document_number,
        )
        await self._audit.record(
            WORKFLOW_INITIATED,
            instance.id,
            submitted_by,
            {
                "document_type": doc_type,
                "document_id": instance.document_id,
                "workflow_name": definition.workflow_name,
                "required_levels": instance.active_level_numbers,
            },
        )
        return instance

    async def decide(
        self,
        instance_id: str,
        actor_id: str,
        decision: str,
        comment: Optional[str] = None,
        expected_version: Optional[int] = None,
        actor_roles: Optional[Iterable[str]] = None,
    ) -> WorkflowInstance:
        """Approve or reject the instance's current level on behalf of ``actor_id``.

        Roles are resolved once per call unless given. An ``expected_version``
        older than the stored one raises :class:`StaleVersion` straight away,
        since the caller decided on a state that no longer exists. Otherwise a
        :class:`StaleVersion` from a concurrent decision is retried after
        re-reading the instance, but only against the level read here.
        """
        decision = self._decision(decision)
        roles = await self._roles(actor_id, actor_roles)

        snapshot = await self.state_machine.get(instance_id)
        if expected_version is not None and expected_version != snapshot.version:
            raise StaleVersion(
                f"Workflow instance {snapshot.id} has changed (version "
                f"{snapshot.version}, expected {expected_version}); reload and retry",
                instance_id=snapshot.id,
                expected_version=expected_version,
                actual_version=snapshot.version,
            )
        level = snapshot.current_level
        target_level = level.level_number if level else None
        versions = [snapshot.version]

        async def attempt() -> WorkflowInstance:
            # later attempts re-read the instance inside the state machine
            version = versions.pop() if versions else None
            return await self.state_machine.decide(
                instance_id,
                actor_id,
                roles,
                decision,
                comment=comment,
                expected_version=version,
                expected_level=target_level,
            )

        instance = await retry_on(
            attempt,
            (StaleVersion,),
            attempts=self._engine_config.stale_retry_attempts,
            base_delay=self._engine_config.retry_base_delay,
        )
        last = instance.decisions[-1]
        await self._audit.record(
            WORKFLOW_APPROVED if decision == DECISION_APPROVE else WORKFLOW_REJECTED,
            instance.id,
            actor_id,
            {
                "level": last.level_number,
                "comments": comment,
                "final_status": instance.status,
            },
        )
        if instance.status == STATUS_APPROVED:
            logger.info(
                f"Approval {instance.id} completed for "
                f"{instance.document_type} {instance.document_id}"
            )
        return instance

    async def approve(
        self, instance_id: str, actor_id: str, comment: Optional[str] = None, **kwargs: Any
    ) -> WorkflowInstance:
        return await self.decide(instance_id, actor_id, DECISION_APPROVE, comment, **kwargs)

    async def reject(
        self, instance_id: str, actor_id: str, comment: Optional[str] = None, **kwargs: Any
    ) -> WorkflowInstance:
        return await self.decide(instance_id, actor_id, DECISION_REJECT, comment, **kwargs)

    async def resubmit(
        self,
        instance_id: str,
        actor_id: str,
        new_routing_value: RoutingValue = None,
        expected_version: Optional[int] = None,
    ) -> WorkflowInstance:
        """Start a fresh approval for a rejected document."""
        if new_routing_value is not None:
            normalize_routing_value(new_routing_value)
        old = await self.state_machine.get(instance_id)
        definition = self._resubmission_definition(old)
        instance = await self.state_machine.resubmit(
            instance_id,
            actor_id,
            definition,
            new_routing_value=new_routing_value,
            expected_version=expected_version,
        )
        await self._audit.record(
            WORKFLOW_RESUBMITTED,
            instance.id,
            actor_id,
            {"supersedes": old.id, "required_levels": instance.active_level_numbers},
        )
        return instance

    async def cancel(
        self,
        instance_id: str,
        actor_id: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> WorkflowInstance:
        """Cancel a pending approval because its document was withdrawn."""
        instance = await self.state_machine.cancel(
            instance_id, actor_id, reason=reason, expected_version=expected_version
        )
        await self._audit.record(WORKFLOW_CANCELLED, instance.id, actor_id, {"reason": reason})
        return instance

    async def recall(self, instance_id: str, actor_id: str) -> WorkflowInstance:
        """Let the submitter withdraw a document nobody has acted on yet."""
        instance = await self.state_machine.get(instance_id)
        if not instance.allow_recall:
            raise RecallNotAllowed(
                f"Workflow '{instance.workflow_name}' does not allow recall", instance.id
            )
        if instance.submitted_by is not None and instance.submitted_by != actor_id:
            raise RecallNotAllowed("Only the submitter can recall a document", instance.id)
        if instance.decisions:
            raise RecallNotAllowed(
                "Document cannot be recalled after the first decision", instance.id
            )
        recalled = await self.state_machine.cancel(
            instance_id,
            actor_id,
            reason="recalled by submitter",
            expected_version=instance.version,
        )
        await self._audit.record(WORKFLOW_RECALLED, recalled.id, actor_id)
        return recalled

    # ------------------------------------------------------------------
    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        return await self.state_machine.get(instance_id)

    async def find_by_document(
        self, document_type: str, document_id: Any
    ) -> Optional[WorkflowInstance]:
        return await self.state_machine.find_by_document(
            self._document_type(document_type), str(document_id)
        )

    async def pending_for(
        self, user_id: str, document_type: Optional[str] = None, limit: Optional[int] = None
    ) -> List[WorkflowInstance]:
        return await self.queries.pending_for(user_id, document_type=document_type, limit=limit)

    async def statistics(self, document_type: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        return await self.queries.statistics(document_type)


def build_orchestrator(
    config: Optional[ProcureflowConfig] = None,
    repository: Optional[InstanceRepository] = None,
    role_resolver: Optional[RoleResolver] = None,
    audit_log: Optional[AuditLog] = None,
) -> WorkflowOrchestrator:
    """Wire an orchestrator from configuration.

    Definitions come from ``definitions_path``, roles from the ``roles``
    mapping and the repository from ``database_url`` unless given explicitly.
    """
    config = config or load_config()
    definitions = (
        load_definitions(config.definitions_path)
        if config.definitions_path
        else DefinitionStore()
    )
    if repository is None:
        repository = (
            get_repository(config.database_url) if config.database_url else get_repository()
        )
    return WorkflowOrchestrator(
        definitions,
        repository,
        role_resolver or StaticRoleResolver(config.roles),
        audit_log=audit_log,
        engine_config=config.engine,
    )
