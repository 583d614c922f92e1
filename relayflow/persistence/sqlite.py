"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

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

_TERMINAL = (ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS workflows (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL,
        trigger_service TEXT NOT NULL,
        trigger_id TEXT NOT NULL,
        trigger_config TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_actions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        workflow_id INTEGER NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
        action_service TEXT NOT NULL,
        action_id TEXT NOT NULL,
        action_config TEXT NOT NULL,
        position INTEGER NOT NULL,
        created_at TEXT,
        updated_at TEXT,
        UNIQUE (workflow_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_data_mappings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        workflow_id INTEGER NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
        source_service TEXT NOT NULL,
        source_field TEXT NOT NULL,
        target_service TEXT NOT NULL,
        target_field TEXT NOT NULL,
        transformer TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS connections (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        service TEXT NOT NULL,
        status TEXT NOT NULL,
        auth_type TEXT NOT NULL,
        auth_data TEXT NOT NULL,
        metadata TEXT,
        last_used_at TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_executions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        workflow_id INTEGER NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
        status TEXT NOT NULL,
        trigger_data TEXT,
        started_at TEXT,
        completed_at TEXT,
        error TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_action_executions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        workflow_execution_id INTEGER NOT NULL
            REFERENCES workflow_executions(id) ON DELETE CASCADE,
        workflow_action_id INTEGER NOT NULL
            REFERENCES workflow_actions(id) ON DELETE CASCADE,
        status TEXT NOT NULL,
        input_data TEXT,
        output_data TEXT,
        started_at TEXT,
        completed_at TEXT,
        error TEXT
    )
    """,
)


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise PersistenceFailedError(f"failed to encode data as JSON: {exc}") from exc


def _loads(value: str | None) -> Any:
    return json.loads(value) if value else None


def _ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _utc_iso(value: datetime | None) -> str | None:
    """Render ``value`` in UTC so stored timestamps order as text."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflows and their executions using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._guarded() as cur:
            cur.execute("PRAGMA foreign_keys = ON")
            for statement in _SCHEMA:
                cur.execute(statement)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Helper methods
    @contextmanager
    def _guarded(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            try:
                yield self._conn.cursor()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceFailedError(str(exc)) from exc
            except BaseException:
                # nothing from a failed unit of work may be committed later
                self._conn.rollback()
                raise

    def _execute(self, query: str, *params: Any) -> int:
        with self._guarded() as cur:
            cur.execute(query, params)
            self._conn.commit()
            return cur.lastrowid

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._guarded() as cur:
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._guarded() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    # ------------------------------------------------------------------
    # Row conversion
    @staticmethod
    def _workflow_from_row(row: sqlite3.Row) -> Workflow:
        return Workflow(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            description=row["description"] or "",
            status=row["status"],
            trigger_service=row["trigger_service"],
            trigger_id=row["trigger_id"],
            trigger_config=_loads(row["trigger_config"]) or {},
            created_at=_ts(row["created_at"]),
            updated_at=_ts(row["updated_at"]),
        )

    @staticmethod
    def _connection_from_row(row: sqlite3.Row) -> Connection:
        return Connection(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            service=row["service"],
            status=row["status"],
            auth_type=row["auth_type"],
            auth_data=_loads(row["auth_data"]) or {},
            metadata=_loads(row["metadata"]) or {},
            last_used_at=_ts(row["last_used_at"]),
            created_at=_ts(row["created_at"]),
            updated_at=_ts(row["updated_at"]),
        )

    @staticmethod
    def _execution_from_row(row: sqlite3.Row) -> WorkflowExecution:
        return WorkflowExecution(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=ExecutionStatus(row["status"]),
            trigger_data=row["trigger_data"],
            started_at=_ts(row["started_at"]),
            completed_at=_ts(row["completed_at"]),
            error=row["error"],
        )

    # ------------------------------------------------------------------
    # Workflows
    def _insert_workflow(self, workflow: Workflow) -> int:
        now = utcnow().isoformat()
        with self._guarded() as cur:
            cur.execute(
                """
                INSERT INTO workflows (user_id, name, description, status, trigger_service,
                                       trigger_id, trigger_config, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    workflow.user_id,
                    workflow.name,
                    workflow.description,
                    workflow.status,
                    workflow.trigger_service,
                    workflow.trigger_id,
                    _dumps(workflow.trigger_config),
                    now,
                    now,
                ),
            )
            workflow_id = cur.lastrowid
            for action in workflow.actions:
                cur.execute(
                    """
                    INSERT INTO workflow_actions (workflow_id, action_service, action_id,
                                                  action_config, position, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        workflow_id,
                        action.action_service,
                        action.action_id,
                        _dumps(action.action_config),
                        action.position,
                        now,
                        now,
                    ),
                )
            for mapping in workflow.data_mappings:
                cur.execute(
                    """
                    INSERT INTO workflow_data_mappings (workflow_id, source_service, source_field,
                                                        target_service, target_field, transformer)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        workflow_id,
                        mapping.source_service,
                        mapping.source_field,
                        mapping.target_service,
                        mapping.target_field,
                        mapping.transformer,
                    ),
                )
            self._conn.commit()
        return workflow_id

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        workflow_id = await asyncio.to_thread(self._insert_workflow, workflow)
        return await self.get_workflow(workflow_id)

    async def get_workflow(self, workflow_id: int) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflows WHERE id = ?", workflow_id
        )
        if not row:
            return None
        action_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflow_actions WHERE workflow_id = ? ORDER BY position",
            workflow_id,
        )
        mapping_rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT source_service, source_field, target_service, target_field, transformer
            FROM workflow_data_mappings WHERE workflow_id = ? ORDER BY id
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
                created_at=_ts(r["created_at"]),
                updated_at=_ts(r["updated_at"]),
            )
            for r in action_rows
        ]
        workflow.data_mappings = [DataMapping(**dict(r)) for r in mapping_rows]
        return workflow

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM workflows ORDER BY id"
        )
        return [self._workflow_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Connections
    async def create_connection(self, connection: Connection) -> Connection:
        now = utcnow()
        connection_id = await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO connections (user_id, name, service, status, auth_type, auth_data,
                                     metadata, last_used_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            connection.user_id,
            connection.name,
            connection.service,
            connection.status,
            connection.auth_type,
            _dumps(connection.auth_data),
            _dumps(connection.metadata),
            _utc_iso(connection.last_used_at),
            now.isoformat(),
            now.isoformat(),
        )
        return connection.model_copy(
            update={"id": connection_id, "created_at": now, "updated_at": now}
        )

    async def find_active_connection(
        self, user_id: int, service: str
    ) -> Connection | None:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT * FROM connections
            WHERE user_id = ? AND service = ? AND status = 'active'
            ORDER BY last_used_at IS NULL, last_used_at DESC, id DESC
            LIMIT 1
            """,
            user_id,
            service,
        )
        return self._connection_from_row(row) if row else None

    async def touch_connection(self, connection_id: int, used_at: datetime) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE connections SET last_used_at = ? WHERE id = ?",
            _utc_iso(used_at),
            connection_id,
        )

    async def list_connections(self, user_id: int) -> list[Connection]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM connections WHERE user_id = ? ORDER BY id",
            user_id,
        )
        return [self._connection_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(
        self, workflow_id: int, trigger_data: str, status: ExecutionStatus
    ) -> WorkflowExecution:
        started_at = utcnow()
        execution_id = await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_executions (workflow_id, status, trigger_data, started_at)
            VALUES (?, ?, ?, ?)
            """,
            workflow_id,
            status.value,
            trigger_data,
            started_at.isoformat(),
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
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_executions
            SET status = ?, completed_at = ?, error = ?
            WHERE id = ? AND status NOT IN (?, ?)
            """,
            status.value,
            utcnow().isoformat(),
            error,
            execution_id,
            *_TERMINAL,
        )

    async def create_action_execution(
        self, execution_id: int, action_id: int, input_data: dict[str, Any]
    ) -> ActionExecution:
        started_at = utcnow()
        encoded = _dumps(input_data)
        action_execution_id = await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_action_executions
                (workflow_execution_id, workflow_action_id, status, input_data, started_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            execution_id,
            action_id,
            ExecutionStatus.RUNNING.value,
            encoded,
            started_at.isoformat(),
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
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_action_executions
            SET status = ?, output_data = ?, completed_at = ?, error = ?
            WHERE id = ? AND status NOT IN (?, ?)
            """,
            status.value,
            encoded,
            utcnow().isoformat(),
            error,
            action_execution_id,
            *_TERMINAL,
        )

    async def get_execution(self, execution_id: int) -> WorkflowExecution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM workflow_executions WHERE id = ?",
            execution_id,
        )
        if not row:
            return None
        action_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflow_action_executions WHERE workflow_execution_id = ? ORDER BY id",
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
                started_at=_ts(r["started_at"]),
                completed_at=_ts(r["completed_at"]),
                error=r["error"],
            )
            for r in action_rows
        ]
        return execution

    async def list_executions(self, workflow_id: int) -> list[WorkflowExecution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflow_executions WHERE workflow_id = ? ORDER BY id",
            workflow_id,
        )
        return [self._execution_from_row(r) for r in rows]
