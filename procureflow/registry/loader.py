"""Load workflow definitions from YAML files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import ValidationError

from ..contracts import WorkflowDefinition
from ..errors import InvalidDefinition
from .store import DefinitionStore


def parse_definitions(data: Any) -> List[WorkflowDefinition]:
    """Build definitions from parsed YAML.

    Accepts either a mapping with a ``workflows`` list or a bare list.
    """
    if isinstance(data, dict):
        data = data.get("workflows", [])
    if not isinstance(data, list):
        raise InvalidDefinition("Expected a list of workflows")
    definitions: List[WorkflowDefinition] = []
    for index, item in enumerate(data):
        try:
            definitions.append(WorkflowDefinition.model_validate(item))
        except ValidationError as exc:
            name = item.get("workflow_name") if isinstance(item, dict) else None
            label = f"'{name}'" if name else f"#{index + 1}"
            raise InvalidDefinition(f"Workflow {label} is malformed: {exc}") from exc
    return definitions


def read_definitions(path: str | Path) -> List[WorkflowDefinition]:
    with open(path) as f:
        return parse_definitions(yaml.safe_load(f) or [])


def load_definitions(
    path: str | Path, store: Optional[DefinitionStore] = None
) -> DefinitionStore:
    """Read ``path`` and save every workflow in it into ``store``."""
    store = store if store is not None else DefinitionStore()
    for definition in read_definitions(path):
        store.save(definition)
    return store
