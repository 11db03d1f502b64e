"""Persistence layer for approval instances.

Backends are picked by the scheme of ``database_url``:

* no url or ``memory://`` keeps instances in process memory
* ``sqlite://<path>`` stores them in a SQLite file
* ``postgres://`` or ``postgresql://`` uses PostgreSQL (needs the
  ``postgres`` extra)
"""

from __future__ import annotations

from typing import Optional

from ..config import ProcureflowConfig, load_config
from .inmemory import InMemoryInstanceRepository
from .models import Decision, WorkflowInstance
from .repository import InstanceRepository
from .sqlite import SQLiteInstanceRepository

_repository_instance: InstanceRepository | None = None


def open_repository(database_url: Optional[str]) -> InstanceRepository:
    """Build a fresh repository for ``database_url``."""
    if not database_url:
        return InMemoryInstanceRepository()
    scheme, _, location = database_url.partition("://")
    if scheme == "memory":
        return InMemoryInstanceRepository()
    if scheme == "sqlite":
        return SQLiteInstanceRepository(location)
    if scheme in ("postgres", "postgresql"):
        try:
            from .postgres import PostgresInstanceRepository
        except ImportError as exc:
            raise RuntimeError(
                "Postgres support not available; install procureflow[postgres]"
            ) from exc
        return PostgresInstanceRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[ProcureflowConfig] = None
) -> InstanceRepository:
    """Return the process-wide instance repository.

    Without arguments the cached repository is reused, or one is opened from
    ``load_config().database_url``. An explicit url or config replaces the
    cached repository.
    """
    global _repository_instance
    if database_url is None:
        if _repository_instance is not None and config is None:
            return _repository_instance
        database_url = (config or load_config()).database_url
    _repository_instance = open_repository(database_url)
    return _repository_instance


__all__ = [
    "Decision",
    "WorkflowInstance",
    "InstanceRepository",
    "SQLiteInstanceRepository",
    "InMemoryInstanceRepository",
    "get_repository",
    "open_repository",
]
