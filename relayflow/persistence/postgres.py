"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

import asyncpg

from ..errors import PersistenceFailedError
from ..models import (
    ActionExecution,
    Connection,
    DataMapping,
    ExecutionStatus,
    Workflow,
    WorkflowAction,
    WorkflowExecution,
    utcnow,
)
from .repository import WorkflowRepository

_TERMINAL = [ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value]


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise PersistenceFailedError(f"failed to encode data as JSON: {exc}") from exc


def _loads(value: str | None) -> Any:
    return json.loads(value) if value else None


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflows and their executions using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await self._connect()
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceFailedError(f"failed to connect to database: {exc}") from exc
        try:
            yield conn
        except asyncpg.PostgresError as exc:
            raise PersistenceFailedError(str(exc)) from exc
        finally:
            await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id SERIAL PRIMARY KEY,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL,
                trigger_service TEXT NOT NULL,
                trigger_id TEXT NOT NULL,
                trigger_config TEXT NOT NULL,
                created_at TIMESTAMPTZ DEFAULT now(),
                updated_at TIMESTAMPTZ DEFAULT now()
            );
            CREATE TABLE IF NOT EXISTS workflow_actions (
                id SERIAL PRIMARY KEY,
                workflow_id INTEGER NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
                action_service TEXT NOT NULL,
                action_id TEXT NOT NULL,
                action_config TEXT NOT NULL,
                position INTEGER NOT NULL,
                created_at TIMESTAMPTZ DEFAULT now(),
                updated_at TIMESTAMPTZ DEFAULT now(),
                UNIQUE (workflow_id, position)
            );
            CREATE TABLE IF NOT EXISTS workflow_data_mappings (
                id SERIAL PRIMARY KEY,
                workflow_id INTEGER NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
                source_service TEXT NOT NULL,
                source_field TEXT NOT NULL,
                target_service TEXT NOT NULL,
                target_field TEXT NOT NULL,
                transformer TEXT
            );
            CREATE TABLE IF NOT EXISTS connections (
                id SERIAL PRIMARY KEY,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                service TEXT NOT NULL,
                status TEXT NOT NULL,
                auth_type TEXT NOT NULL,
                auth_data TEXT NOT NULL,
                metadata TEXT,
                last_used_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ DEFAULT now(),
                updated_at TIMESTAMPTZ DEFAULT now()
            );
            CREATE TABLE IF NOT EXISTS workflow_executions (
                id SERIAL PRIMARY KEY,
                workflow_id INTEGER NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
                status TEXT NOT NULL,
                trigger_data TEXT,
                started_at TIMESTAMPTZ DEFAULT now(),
                completed_at TIMESTAMPTZ,
                error TEXT
            );
            CREATE TABLE IF NOT EXISTS workflow_action_executions (
                id SERIAL PRIMARY KEY,
                workflow_execution_id INTEGER NOT NULL
                    REFERENCES workflow_executions(id) ON DELETE CASCADE,
                workflow_action_id INTEGER NOT NULL
                    REFERENCES workflow_actions(id) ON DELETE CASCADE,
                status TEXT NOT NULL,
                input_data TEXT,
                output_data TEXT,
                started_at TIMESTAMPTZ DEFAULT now(),
                completed_at TIMESTAMPTZ,
                error TEXT
            );
            """
        )

    # ------------------------------------------------------------------
    # Row conversion
    @staticmethod
    def _workflow_from_row(row: asyncpg.Record) -> Workflow:
        return Workflow(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            description=row["description"] or "",
            status=row["status"],
            trigger_service=row["trigger_service"],
            trigger_id=row["trigger_id"],
            trigger_config=_loads(row["trigger_config"]) or {},
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _connection_from_row(row: asyncpg.Record) -> Connection:
        return Connection(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            service=row["service"],
            status=row["status"],
            auth_type=row["auth_type"],
            auth_data=_loads(row["auth_data"]) or {},
            metadata=_loads(row["metadata"]) or {},
            last_used_at=row["last_used_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _execution_from_row(row: asyncpg.Record) -> WorkflowExecution:
        return WorkflowExecution(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=ExecutionStatus(row["status"]),
            trigger_data=row["trigger_data"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error=row["error"],
        )

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        now = utcnow()
        async with self._connection() as conn:
            async with conn.transaction():
                workflow_id = await conn.fetchval(
                    """
                    INSERT INTO workflows (user_id, name, description, status, trigger_service,
                                           trigger_id, trigger_config, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $8)
                    RETURNING id
                    """,
                    workflow.user_id,
                    workflow.name,
                    workflow.description,
                    workflow.status,
                    workflow.trigger_service,
                    workflow.trigger_id,
                    _dumps(workflow.trigger_config),
                    now,
                )
                for action in workflow.actions:
                    await conn.execute(
                        """
                        INSERT INTO workflow_actions (workflow_id, action_service, action_id,
                                                      action_config, position, created_at, updated_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $6)
                        """,
                        workflow_id,
                        action.action_service,
                        action.action_id,
                        _dumps(action.action_config),
                        action.position,
                        now,
                    )
                for mapping in workflow.data_mappings:
                    await conn.execute(
                        """
                        INSERT INTO workflow_data_mappings (workflow_id, source_service, source_field,
                                                            target_service, target_field, transformer)
                        VALUES ($1, $2, $3, $4, $5, $6)
                        """,
                        workflow_id,
                        mapping.source_service,
                        mapping.source_field,
                        mapping.target_service,
                        mapping.target_field,
                        mapping.transformer,
                    )
        return await self.get_workflow(workflow_id)

    async def get_workflow(self, workflow_id: int) -> Workflow | None:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT * FROM workflows WHERE id = $1", workflow_id)
            if not row:
                return None
            action_rows = await conn.fetch(
                "SELECT * FROM workflow_actions WHERE workflow_id = $1 ORDER BY position",
                workflow_id,
            )
            mapping_rows = await conn.fetch(
                """
                SELECT source_service, source_field, target_service, target_field, transformer
                FROM workflow_data_mappings WHERE workflow_id = $1 ORDER BY id
                """,
                workflow_id,
            )
        workflow = self._workflow_from_row(row)
        workflow.actions = [
            WorkflowAction(
                id=r["id"],
                workflow_id=r["workflow_id"],
                action_service=r["action_service"],
                action_id=r["action_id"],
                action_config=_loads(r["action_config"]) or {},
                position=r["position"],
                created_at=r["created_at"],
                updated_at=r["updated_at"],
            )
            for r in action_rows
        ]
        workflow.data_mappings = [DataMapping(**dict(r)) for r in mapping_rows]
        return workflow

    async def list_workflows(self) -> list[Workflow]:
        async with self._connection() as conn:
            rows = await conn.fetch("SELECT * FROM workflows ORDER BY id")
        return [self._workflow_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Connections
    async def create_connection(self, connection: Connection) -> Connection:
        now = utcnow()
        async with self._connection() as conn:
            connection_id = await conn.fetchval(
                """
                INSERT INTO connections (user_id, name, service, status, auth_type, auth_data,
                                         metadata, last_used_at, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $9)
                RETURNING id
                """,
                connection.user_id,
                connection.name,
                connection.service,
                connection.status,
                connection.auth_type,
                _dumps(connection.auth_data),
                _dumps(connection.metadata),
                connection.last_used_at,
                now,
            )
        return connection.model_copy(
            update={"id": connection_id, "created_at": now, "updated_at": now}
        )

    async def find_active_connection(
        self, user_id: int, service: str
    ) -> Connection | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM connections
                WHERE user_id = $1 AND service = $2 AND status = 'active'
                ORDER BY last_used_at DESC NULLS LAST, id DESC
                LIMIT 1
                """,
                user_id,
                service,
            )
        return self._connection_from_row(row) if row else None

    async def touch_connection(self, connection_id: int, used_at: datetime) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "UPDATE connections SET last_used_at = $1 WHERE id = $2",
                used_at,
                connection_id,
            )

    async def list_connections(self, user_id: int) -> list[Connection]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM connections WHERE user_id = $1 ORDER BY id", user_id
            )
        return [self._connection_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(
        self, workflow_id: int, trigger_data: str, status: ExecutionStatus
    ) -> WorkflowExecution:
        started_at = utcnow()
        async with self._connection() as conn:
            async with conn.transaction():
                execution_id = await conn.fetchval(
                    """
                    INSERT INTO workflow_executions (workflow_id, status, trigger_data, started_at)
                    VALUES ($1, $2, $3, $4)
                    RETURNING id
                    """,
                    workflow_id,
                    status.value,
                    trigger_data,
                    started_at,
                )
        return WorkflowExecution(
            id=execution_id,
            workflow_id=workflow_id,
            status=status,
            trigger_data=trigger_data,
            started_at=started_at,
        )

    async def complete_execution(
        self, execution_id: int, status: ExecutionStatus, error: str | None = None
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                UPDATE workflow_executions
                SET status = $1, completed_at = $2, error = $3
                WHERE id = $4 AND status <> ALL($5::text[])
                """,
                status.value,
                utcnow(),
                error,
                execution_id,
                _TERMINAL,
            )

    async def create_action_execution(
        self, execution_id: int, action_id: int, input_data: dict[str, Any]
    ) -> ActionExecution:
        started_at = utcnow()
        encoded = _dumps(input_data)
        async with self._connection() as conn:
            action_execution_id = await conn.fetchval(
                """
                INSERT INTO workflow_action_executions
                    (workflow_execution_id, workflow_action_id, status, input_data, started_at)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id
                """,
                execution_id,
                action_id,
                ExecutionStatus.RUNNING.value,
                encoded,
                started_at,
            )
        return ActionExecution(
            id=action_execution_id,
            workflow_execution_id=execution_id,
            workflow_action_id=action_id,
            status=ExecutionStatus.RUNNING,
            input_data=input_data,
            started_at=started_at,
        )

    async def complete_action_execution(
        self,
        action_execution_id: int,
        status: ExecutionStatus,
        output_data: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        encoded = _dumps(output_data) if output_data is not None else None
        async with self._connection() as conn:
            await conn.execute(
                """
                UPDATE workflow_action_executions
                SET status = $1, output_data = $2, completed_at = $3, error = $4
                WHERE id = $5 AND status <> ALL($6::text[])
                """,
                status.value,
                encoded,
                utcnow(),
                error,
                action_execution_id,
                _TERMINAL,
            )

    async def get_execution(self, execution_id: int) -> WorkflowExecution | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM workflow_executions WHERE id = $1", execution_id
            )
            if not row:
                return None
            action_rows = await conn.fetch(
                """
                SELECT * FROM workflow_action_executions
                WHERE workflow_execution_id = $1 ORDER BY id
                """,
                execution_id,
            )
        execution = self._execution_from_row(row)
        execution.actions = [
            ActionExecution(
                id=r["id"],
                workflow_execution_id=r["workflow_execution_id"],
                workflow_action_id=r["workflow_action_id"],
                status=ExecutionStatus(r["status"]),
                input_data=_loads(r["input_data"]) or {},
                output_data=_loads(r["output_data"]),
                started_at=r["started_at"],
                completed_at=r["completed_at"],
                error=r["error"],
            )
            for r in action_rows
        ]
        return execution

    async def list_executions(self, workflow_id: int) -> list[WorkflowExecution]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM workflow_executions WHERE workflow_id = $1 ORDER BY id",
                workflow_id,
            )
        return [self._execution_from_row(r) for r in rows]
