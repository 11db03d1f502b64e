"""SQLite implementation of the instance repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from ..errors import DuplicatePendingInstance, InstanceNotFound, StaleVersion
from .models import WorkflowInstance
from .repository import InstanceRepository

_COLUMNS = "id, document_type, document_id, status, version, submitted_at, body"


class SQLiteInstanceRepository(InstanceRepository):
    """Persist approval instances using SQLite.

    The full instance is stored as JSON in ``body``; the columns next to it
    exist for filtering, the pending-per-document unique index and the
    version guard.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_instances (
                id TEXT PRIMARY KEY,
                document_type TEXT NOT NULL,
                document_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                submitted_at TEXT NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS ux_approval_instances_pending
            ON approval_instances (document_type, document_id)
            WHERE status = 'pending'
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS ix_approval_instances_status
            ON approval_instances (status, document_type)
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    @staticmethod
    def _row_values(instance: WorkflowInstance) -> tuple[Any, ...]:
        return (
            instance.id,
            instance.document_type,
            instance.document_id,
            instance.status,
            instance.version,
            instance.submitted_at.isoformat(timespec="microseconds"),
            instance.model_dump_json(),
        )

    def _insert(self, cur: sqlite3.Cursor, instance: WorkflowInstance) -> None:
        try:
            cur.execute(
                f"INSERT INTO approval_instances ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                self._row_values(instance),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicatePendingInstance(
                f"{instance.document_type} {instance.document_id} already has a "
                "pending approval"
            ) from exc

    def _conditional_update(
        self, cur: sqlite3.Cursor, instance: WorkflowInstance, expected_version: int
    ) -> None:
        cur.execute(
            """
            UPDATE approval_instances
            SET status = ?, version = ?, body = ?
            WHERE id = ? AND version = ?
            """,
            (
                instance.status,
                instance.version,
                instance.model_dump_json(),
                instance.id,
                expected_version,
            ),
        )
        if cur.rowcount == 1:
            return
        cur.execute(
            "SELECT version FROM approval_instances WHERE id = ?", (instance.id,)
        )
        row = cur.fetchone()
        if row is None:
            raise InstanceNotFound(f"Instance {instance.id} not found", instance.id)
        raise StaleVersion(
            f"Instance {instance.id} is at version {row['version']}, "
            f"expected {expected_version}",
            instance_id=instance.id,
            expected_version=expected_version,
            actual_version=row["version"],
        )

    def _transaction(self, work, *args: Any) -> None:
        with self._lock:
            cur = self._conn.cursor()
            try:
                work(cur, *args)
            except Exception:
                self._conn.rollback()
                raise
            self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _supersede(
        self,
        cur: sqlite3.Cursor,
        old: WorkflowInstance,
        expected_version: int,
        new: WorkflowInstance,
    ) -> None:
        self._conditional_update(cur, old, expected_version)
        self._insert(cur, new)

    # ------------------------------------------------------------------
    # Repository API
    async def create_instance(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(self._transaction, self._insert, instance)

    async def save_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> None:
        await asyncio.to_thread(
            self._transaction, self._conditional_update, instance, expected_version
        )

    async def supersede_instance(
        self,
        old: WorkflowInstance,
        expected_version: int,
        new: WorkflowInstance,
    ) -> None:
        await asyncio.to_thread(
            self._transaction, self._supersede, old, expected_version, new
        )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT body FROM approval_instances WHERE id = ?",
            instance_id,
        )
        if not row:
            return None
        return WorkflowInstance.model_validate_json(row["body"])

    async def find_by_document(
        self, document_type: str, document_id: str
    ) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT body FROM approval_instances
            WHERE document_type = ? AND document_id = ?
            ORDER BY submitted_at DESC, rowid DESC
            LIMIT 1
            """,
            document_type,
            document_id,
        )
        if not row:
            return None
        return WorkflowInstance.model_validate_json(row["body"])

    async def list_instances(
        self, status: Optional[str] = None, document_type: Optional[str] = None
    ) -> list[WorkflowInstance]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if document_type is not None:
            clauses.append("document_type = ?")
            params.append(document_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT body FROM approval_instances {where} "
            "ORDER BY submitted_at DESC, rowid DESC",
            *params,
        )
        return [WorkflowInstance.model_validate_json(r["body"]) for r in rows]

    def close(self) -> None:
        self._conn.close()
