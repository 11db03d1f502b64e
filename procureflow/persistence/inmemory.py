"""In-memory implementation of the instance repository."""

from __future__ import annotations

import threading
from typing import Dict, Optional

from ..constants import STATUS_PENDING
from ..errors import DuplicatePendingInstance, InstanceNotFound, StaleVersion
from .models import WorkflowInstance
from .repository import InstanceRepository


class InMemoryInstanceRepository(InstanceRepository):
    """Store approval instances in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Instances are copied on the way in and
    out so callers never hold a reference to the stored record.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        # plain lock: critical sections never await
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def _check_pending_slot(self, instance: WorkflowInstance) -> None:
        if instance.status != STATUS_PENDING:
            return
        for other in self._instances.values():
            if (
                other.id != instance.id
                and other.status == STATUS_PENDING
                and other.document_type == instance.document_type
                and other.document_id == instance.document_id
            ):
                raise DuplicatePendingInstance(
                    f"{instance.document_type} {instance.document_id} already has "
                    f"pending approval {other.id}",
                    instance_id=other.id,
                )

    def _check_version(self, instance_id: str, expected_version: int) -> None:
        current = self._instances.get(instance_id)
        if current is None:
            raise InstanceNotFound(f"Instance {instance_id} not found", instance_id)
        if current.version != expected_version:
            raise StaleVersion(
                f"Instance {instance_id} is at version {current.version}, "
                f"expected {expected_version}",
                instance_id=instance_id,
                expected_version=expected_version,
                actual_version=current.version,
            )

    # ------------------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> None:
        with self._lock:
            self._check_pending_slot(instance)
            self._instances[instance.id] = instance.model_copy(deep=True)

    async def save_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> None:
        with self._lock:
            self._check_version(instance.id, expected_version)
            self._instances[instance.id] = instance.model_copy(deep=True)

    async def supersede_instance(
        self,
        old: WorkflowInstance,
        expected_version: int,
        new: WorkflowInstance,
    ) -> None:
        with self._lock:
            self._check_version(old.id, expected_version)
            self._check_pending_slot(new)
            self._instances[old.id] = old.model_copy(deep=True)
            self._instances[new.id] = new.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        with self._lock:
            wf = self._instances.get(instance_id)
            return wf.model_copy(deep=True) if wf else None

    async def find_by_document(
        self, document_type: str, document_id: str
    ) -> WorkflowInstance | None:
        matches = [
            wf
            for wf in await self.list_instances(document_type=document_type)
            if wf.document_id == document_id
        ]
        return matches[0] if matches else None

    async def list_instances(
        self, status: Optional[str] = None, document_type: Optional[str] = None
    ) -> list[WorkflowInstance]:
        with self._lock:
            found = [
                (wf.submitted_at, seq, wf.model_copy(deep=True))
                for seq, wf in enumerate(self._instances.values())
                if (status is None or wf.status == status)
                and (document_type is None or wf.document_type == document_type)
            ]
        # insertion order breaks timestamp ties
        found.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [wf for _, _, wf in found]
