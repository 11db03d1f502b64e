"""PostgreSQL implementation of the instance repository."""

from __future__ import annotations

from typing import Any, Optional

import asyncpg

from ..errors import DuplicatePendingInstance, InstanceNotFound, StaleVersion
from .models import WorkflowInstance
from .repository import InstanceRepository


class PostgresInstanceRepository(InstanceRepository):
    """Persist approval instances using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_instances (
                seq BIGSERIAL,
                id TEXT PRIMARY KEY,
                document_type TEXT NOT NULL,
                document_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                submitted_at TIMESTAMPTZ NOT NULL,
                body JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS ux_approval_instances_pending
            ON approval_instances (document_type, document_id)
            WHERE status = 'pending'
            """
        )

    # ------------------------------------------------------------------
    async def _insert(self, conn: asyncpg.Connection, instance: WorkflowInstance) -> None:
        try:
            await conn.execute(
                """
                INSERT INTO approval_instances
                    (id, document_type, document_id, status, version, submitted_at, body)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                instance.id,
                instance.document_type,
                instance.document_id,
                instance.status,
                instance.version,
                instance.submitted_at,
                instance.model_dump_json(),
            )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicatePendingInstance(
                f"{instance.document_type} {instance.document_id} already has a "
                "pending approval"
            ) from exc

    async def _conditional_update(
        self,
        conn: asyncpg.Connection,
        instance: WorkflowInstance,
        expected_version: int,
    ) -> None:
        result = await conn.execute(
            """
            UPDATE approval_instances
            SET status = $1, version = $2, body = $3
            WHERE id = $4 AND version = $5
            """,
            instance.status,
            instance.version,
            instance.model_dump_json(),
            instance.id,
            expected_version,
        )
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        if result.split()[-1] == "1":
            return
        actual = await conn.fetchval(
            "SELECT version FROM approval_instances WHERE id = $1", instance.id
        )
        if actual is None:
            raise InstanceNotFound(f"Instance {instance.id} not found", instance.id)
        raise StaleVersion(
            f"Instance {instance.id} is at version {actual}, expected {expected_version}",
            instance_id=instance.id,
            expected_version=expected_version,
            actual_version=actual,
        )

    # ------------------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> None:
        conn = await self._connect()
        try:
            await self._insert(conn, instance)
        finally:
            await conn.close()

    async def save_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> None:
        conn = await self._connect()
        try:
            await self._conditional_update(conn, instance, expected_version)
        finally:
            await conn.close()

    async def supersede_instance(
        self,
        old: WorkflowInstance,
        expected_version: int,
        new: WorkflowInstance,
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await self._conditional_update(conn, old, expected_version)
                await self._insert(conn, new)
        finally:
            await conn.close()

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            body = await conn.fetchval(
                "SELECT body FROM approval_instances WHERE id = $1", instance_id
            )
        finally:
            await conn.close()
        if body is None:
            return None
        return WorkflowInstance.model_validate_json(body)

    async def find_by_document(
        self, document_type: str, document_id: str
    ) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            body = await conn.fetchval(
                """
                SELECT body FROM approval_instances
                WHERE document_type = $1 AND document_id = $2
                ORDER BY submitted_at DESC, seq DESC
                LIMIT 1
                """,
                document_type,
                document_id,
            )
        finally:
            await conn.close()
        if body is None:
            return None
        return WorkflowInstance.model_validate_json(body)

    async def list_instances(
        self, status: Optional[str] = None, document_type: Optional[str] = None
    ) -> list[WorkflowInstance]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            params.append(status)
            clauses.append(f"status = ${len(params)}")
        if document_type is not None:
            params.append(document_type)
            clauses.append(f"document_type = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT body FROM approval_instances {where} "
                "ORDER BY submitted_at DESC, seq DESC",
                *params,
            )
        finally:
            await conn.close()
        return [WorkflowInstance.model_validate_json(r["body"]) for r in rows]
