"""Repository abstraction for approval instance persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import WorkflowInstance


class InstanceRepository(Protocol):
    """Protocol for instance persistence backends.

    Writes are conditional: ``save_instance`` and ``supersede_instance`` only
    succeed if the stored version still equals ``expected_version``, and
    ``create_instance`` refuses a second pending instance for one document.
    """

    async def create_instance(self, instance: WorkflowInstance) -> None:
        """Insert a new instance.

        Raises:
            DuplicatePendingInstance: if the document already has a pending one.
        """

    async def save_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> None:
        """Replace the stored instance if its version is ``expected_version``.

        Raises:
            StaleVersion: if the stored version differs.
        """

    async def supersede_instance(
        self,
        old: WorkflowInstance,
        expected_version: int,
        new: WorkflowInstance,
    ) -> None:
        """Atomically save ``old`` (conditionally) and insert ``new``."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance by id."""

    async def find_by_document(
        self, document_type: str, document_id: str
    ) -> WorkflowInstance | None:
        """Return the most recently submitted instance for a document."""

    async def list_instances(
        self, status: Optional[str] = None, document_type: Optional[str] = None
    ) -> list[WorkflowInstance]:
        """Return instances, optionally filtered, newest first."""
