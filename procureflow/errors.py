"""Exception hierarchy for the approval workflow engine.

Every error carries a ``kind`` so callers (HTTP handlers, the CLI) can map a
failure to a response without matching on individual classes.
"""

from __future__ import annotations

from typing import Optional


class WorkflowError(Exception):
    """Base class for all engine errors."""

    kind = "workflow"

    def __init__(self, message: str, instance_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.instance_id = instance_id


# Configuration -------------------------------------------------------------
class InvalidDefinition(WorkflowError):
    """A workflow definition failed validation at save time."""

    kind = "configuration"


class DefinitionNotFound(WorkflowError):
    kind = "configuration"


# Input validation ----------------------------------------------------------
class InvalidRequest(WorkflowError):
    """Malformed input to an engine operation."""

    kind = "validation"


class InvalidRoutingValue(InvalidRequest):
    pass


class InvalidDecision(InvalidRequest):
    pass


class InstanceNotFound(WorkflowError):
    kind = "not_found"


# Lifecycle state -----------------------------------------------------------
class InstanceNotPending(WorkflowError):
    kind = "state"


class InstanceNotRejected(WorkflowError):
    kind = "state"


class DuplicatePendingInstance(WorkflowError):
    kind = "state"


class LevelAdvanced(WorkflowError):
    """The level an actor was deciding on has already been completed."""

    kind = "state"


class RecallNotAllowed(WorkflowError):
    kind = "state"


# Authorization -------------------------------------------------------------
class NotAuthorizedForLevel(WorkflowError):
    kind = "authorization"


# Concurrency ---------------------------------------------------------------
class StaleVersion(WorkflowError):
    """The instance changed since the caller read it."""

    kind = "concurrency"

    def __init__(
        self,
        message: str,
        instance_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ) -> None:
        super().__init__(message, instance_id)
        self.expected_version = expected_version
        self.actual_version = actual_version


class DuplicateDecisionByRole(WorkflowError):
    kind = "concurrency"


__all__ = [
    "WorkflowError",
    "InvalidDefinition",
    "DefinitionNotFound",
    "InvalidRequest",
    "InvalidRoutingValue",
    "InvalidDecision",
    "InstanceNotFound",
    "InstanceNotPending",
    "InstanceNotRejected",
    "DuplicatePendingInstance",
    "LevelAdvanced",
    "RecallNotAllowed",
    "NotAuthorizedForLevel",
    "StaleVersion",
    "DuplicateDecisionByRole",
]
