"""Procureflow: multi-level approval workflows for procurement documents."""

from .audit import AuditLog, InMemoryAuditLog
from .config import EngineConfig, ProcureflowConfig, load_config
from .contracts import Level, RoutingRule, WorkflowDefinition
from .engine import InstanceStateMachine
from .errors import WorkflowError
from .orchestrator import WorkflowOrchestrator, build_orchestrator
from .pending import PendingQueryService
from .persistence import Decision, WorkflowInstance, get_repository
from .registry import DefinitionStore, load_definitions
from .roles import RoleResolver, StaticRoleResolver
from .routing import select_active_levels

__version__ = "0.1.0"
__all__ = [
    "AuditLog",
    "InMemoryAuditLog",
    "EngineConfig",
    "ProcureflowConfig",
    "load_config",
    "Level",
    "RoutingRule",
    "WorkflowDefinition",
    "InstanceStateMachine",
    "WorkflowError",
    "WorkflowOrchestrator",
    "build_orchestrator",
    "PendingQueryService",
    "Decision",
    "WorkflowInstance",
    "get_repository",
    "DefinitionStore",
    "load_definitions",
    "RoleResolver",
    "StaticRoleResolver",
    "select_active_levels",
]
