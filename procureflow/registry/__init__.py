"""Workflow definition registry."""

from __future__ import annotations

from .loader import load_definitions, parse_definitions, read_definitions
from .store import DefinitionStore, validate_definition

__all__ = [
    "DefinitionStore",
    "validate_definition",
    "load_definitions",
    "parse_definitions",
    "read_definitions",
]
