"""Workflow definition contracts: levels, routing rules and templates."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import DEFAULT_ROUTING_ATTRIBUTE, MODE_ANY

ApprovalMode = Literal["any", "all"]
RuleOperator = Literal["gt", "gte", "lt", "lte", "eq", "ne", "in", "not_in"]
ConditionType = Literal["amount", "supplier_level", "material_category", "custom"]


class Level(BaseModel):
    """One approval stage of a workflow."""

    level_number: int = Field(..., ge=1)
    level_name: Optional[str] = None
    approver_roles: List[str] = Field(default_factory=list)
    approval_mode: ApprovalMode = MODE_ANY
    # ``None`` is resolved by ``WorkflowDefinition`` from its routing rules.
    is_mandatory: Optional[bool] = None

    @field_validator("approver_roles")
    @classmethod
    def _dedupe_roles(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for role in v:
            role = role.strip()
            if role and role not in seen:
                seen.append(role)
        return seen

    @property
    def display_name(self) -> str:
        return self.level_name or f"Level {self.level_number}"

    def allows(self, roles: Any) -> bool:
        """Return ``True`` if any of ``roles`` may act at this level."""
        return bool(set(roles) & set(self.approver_roles))


class RoutingRule(BaseModel):
    """Activates ``target_levels`` when the condition holds for a document."""

    condition_type: ConditionType = DEFAULT_ROUTING_ATTRIBUTE
    operator: RuleOperator
    value: Any
    target_levels: List[int] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_value_shape(self) -> "RoutingRule":
        if self.operator in ("in", "not_in") and not isinstance(self.value, list):
            raise ValueError(f"operator '{self.operator}' requires a list value")
        if self.operator not in ("in", "not_in") and isinstance(self.value, list):
            raise ValueError(f"operator '{self.operator}' requires a scalar value")
        return self


class WorkflowDefinition(BaseModel):
    """Configured approval template for one document type."""

    id: Optional[str] = None
    workflow_name: str
    display_name: Dict[str, str] = Field(default_factory=dict)
    description: Optional[str] = None
    document_type: str
    version: int = 0
    levels: List[Level] = Field(default_factory=list)
    routing_rules: List[RoutingRule] = Field(default_factory=list)
    is_default: bool = False
    is_active: bool = True
    removed: bool = False
    allow_recall: bool = True
    created_by: Optional[str] = None
    created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("workflow_name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("workflow_name must be a non-empty string")
        return v

    @field_validator("document_type")
    @classmethod
    def _normalize_document_type(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("document_type must be a non-empty string")
        return v

    @model_validator(mode="after")
    def _resolve_mandatory_levels(self) -> "WorkflowDefinition":
        targeted = self.targeted_levels()
        for level in self.levels:
            if level.is_mandatory is None:
                level.is_mandatory = level.level_number not in targeted
        return self

    def targeted_levels(self) -> set[int]:
        """Level numbers referenced by at least one routing rule."""
        return {n for rule in self.routing_rules for n in rule.target_levels}

    def get_level(self, level_number: int) -> Optional[Level]:
        return next((l for l in self.levels if l.level_number == level_number), None)

    def mandatory_levels(self) -> List[int]:
        return [l.level_number for l in self.levels if l.is_mandatory]

    @property
    def total_levels(self) -> int:
        return len(self.levels)

    @property
    def is_usable(self) -> bool:
        return self.is_active and not self.removed
