"""Workflow definition store and save-time validation."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..contracts import WorkflowDefinition
from ..errors import DefinitionNotFound, InvalidDefinition, InvalidRoutingValue
from ..routing import select_active_levels

logger = logging.getLogger(__name__)


def validate_definition(definition: WorkflowDefinition) -> None:
    """Reject definitions that could never route a document correctly.

    Raises:
        InvalidDefinition: on an empty or non-sequential level list, a level
            without approver roles, a routing rule pointing at a missing
            level, or a definition that activates no level for amount 0.
    """
    name = definition.workflow_name
    if not definition.levels:
        raise InvalidDefinition(f"Workflow '{name}' has no approval levels")

    numbers = [level.level_number for level in definition.levels]
    if numbers != list(range(1, len(numbers) + 1)):
        raise InvalidDefinition(
            f"Workflow '{name}': level numbers must run 1..{len(numbers)} "
            f"in order, got {numbers}"
        )

    for level in definition.levels:
        if not level.approver_roles:
            raise InvalidDefinition(
                f"Workflow '{name}': level {level.level_number} has no approver roles"
            )

    known = set(numbers)
    for index, rule in enumerate(definition.routing_rules):
        missing = sorted(set(rule.target_levels) - known)
        if missing:
            raise InvalidDefinition(
                f"Workflow '{name}': routing rule {index + 1} targets unknown "
                f"level(s) {missing}"
            )

    try:
        baseline = select_active_levels(definition, 0)
    except InvalidRoutingValue as exc:  # pragma: no cover - 0 is always valid
        raise InvalidDefinition(str(exc)) from exc
    if not baseline:
        raise InvalidDefinition(
            f"Workflow '{name}' activates no approval level for amount 0; "
            "mark at least one level mandatory"
        )


class DefinitionStore:
    """Holds workflow definitions, keeping every saved version.

    Definitions are immutable once saved; saving a definition with an
    existing ``workflow_name`` stores a new version and retires the previous
    one from lookups. Instances keep their own frozen copy of the levels, so
    edits never reach in-flight approvals.
    """

    def __init__(self) -> None:
        self._versions: Dict[str, List[WorkflowDefinition]] = {}
        self._by_id: Dict[str, WorkflowDefinition] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def save(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Validate and store ``definition`` as the latest version of its name."""
        validate_definition(definition)
        with self._lock:
            if definition.is_default and definition.is_usable:
                existing = self._find_default(definition.document_type)
                if existing and existing.workflow_name != definition.workflow_name:
                    raise InvalidDefinition(
                        f"A default workflow already exists for "
                        f"{definition.document_type}: '{existing.workflow_name}'"
                    )

            history = self._versions.setdefault(definition.workflow_name, [])
            stored = definition.model_copy(deep=True)
            stored.id = str(uuid.uuid4())
            stored.version = history[-1].version + 1 if history else 1
            stored.updated = datetime.now(timezone.utc)
            if history:
                stored.created = history[0].created
            history.append(stored)
            self._by_id[stored.id] = stored

        logger.info(
            f"Saved workflow '{stored.workflow_name}' v{stored.version} "
            f"for {stored.document_type}"
        )
        return stored.model_copy(deep=True)

    def get(self, definition_id: str) -> WorkflowDefinition:
        """Return a definition by id, including superseded versions."""
        with self._lock:
            definition = self._by_id.get(definition_id)
        if definition is None:
            raise DefinitionNotFound(f"Workflow definition {definition_id} not found")
        return definition.model_copy(deep=True)

    def get_by_name(self, workflow_name: str) -> WorkflowDefinition:
        """Return the latest version of ``workflow_name``."""
        with self._lock:
            history = self._versions.get(workflow_name)
            latest = history[-1].model_copy(deep=True) if history else None
        if latest is None:
            raise DefinitionNotFound(f"Workflow '{workflow_name}' not found")
        return latest

    def history(self, workflow_name: str) -> List[WorkflowDefinition]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._versions.get(workflow_name, [])]

    def _latest(self) -> List[WorkflowDefinition]:
        # callers hold self._lock
        return [history[-1] for history in self._versions.values() if history]

    def _find_default(self, document_type: str) -> Optional[WorkflowDefinition]:
        return next(
            (
                d
                for d in self._latest()
                if d.document_type == document_type and d.is_default and d.is_usable
            ),
            None,
        )

    def find_default(self, document_type: str) -> Optional[WorkflowDefinition]:
        with self._lock:
            found = self._find_default(document_type.strip().lower())
            return found.model_copy(deep=True) if found else None

    def list(
        self, document_type: Optional[str] = None, active_only: bool = True
    ) -> List[WorkflowDefinition]:
        """Latest versions, defaults first, then by name."""
        doc_type = document_type.strip().lower() if document_type else None
        with self._lock:
            found = [
                d.model_copy(deep=True)
                for d in self._latest()
                if (doc_type is None or d.document_type == doc_type)
                and (not active_only or d.is_usable)
            ]
        found.sort(key=lambda d: (d.document_type, not d.is_default, d.workflow_name))
        return found

    def resolve(
        self, document_type: str, workflow_name: Optional[str] = None
    ) -> WorkflowDefinition:
        """Pick the definition a new document of ``document_type`` routes through.

        An explicit ``workflow_name`` wins; otherwise the default definition,
        otherwise the first active definition by name.
        """
        doc_type = document_type.strip().lower()
        if workflow_name is not None:
            definition = self.get_by_name(workflow_name)
            if definition.document_type != doc_type:
                raise DefinitionNotFound(
                    f"Workflow '{workflow_name}' applies to "
                    f"{definition.document_type}, not {doc_type}"
                )
            if not definition.is_usable:
                raise DefinitionNotFound(f"Workflow '{workflow_name}' is not active")
            return definition

        default = self.find_default(doc_type)
        if default is not None:
            return default
        candidates = self.list(doc_type)
        if not candidates:
            raise DefinitionNotFound(
                f"No active workflow found for document type: {doc_type}"
            )
        return candidates[0]

    def _replace_flags(self, workflow_name: str, **flags: bool) -> WorkflowDefinition:
        current = self.get_by_name(workflow_name)
        return self.save(current.model_copy(update=flags))

    def deactivate(self, workflow_name: str) -> WorkflowDefinition:
        return self._replace_flags(workflow_name, is_active=False)

    def remove(self, workflow_name: str) -> WorkflowDefinition:
        """Soft-delete ``workflow_name``; existing versions stay resolvable by id."""
        return self._replace_flags(workflow_name, removed=True, is_default=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._versions)
