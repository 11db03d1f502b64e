from __future__ import annotations

import os
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_RETRY_BASE_DELAY, DEFAULT_STALE_RETRY_ATTEMPTS


class EngineConfig(BaseModel):
    """Tuning for decision processing."""

    stale_retry_attempts: int = Field(default=DEFAULT_STALE_RETRY_ATTEMPTS, ge=0)
    retry_base_delay: float = Field(default=DEFAULT_RETRY_BASE_DELAY, ge=0)


class ProcureflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    definitions_path: Optional[str] = None
    # user id -> role ids, for deployments without an external auth service
    roles: Dict[str, List[str]] = Field(default_factory=dict)
    engine: EngineConfig = EngineConfig()


def load_config(path: Optional[str] = None) -> ProcureflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PROCUREFLOW_CONFIG
            env variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("PROCUREFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ProcureflowConfig(**data)
        if config.definitions_path and not os.path.isabs(config.definitions_path):
            base = os.path.dirname(os.path.abspath(config_path))
            config.definitions_path = os.path.join(base, config.definitions_path)
    else:
        config = ProcureflowConfig()

    env_db_url = os.getenv("PROCUREFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_definitions = os.getenv("PROCUREFLOW_DEFINITIONS")
    if env_definitions:
        config.definitions_path = env_definitions
    return config
