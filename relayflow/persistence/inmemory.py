"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from ..models import (
    ActionExecution,
    Connection,
    ExecutionStatus,
    Workflow,
    WorkflowExecution,
    utcnow,
)
from .repository import WorkflowRepository

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflows, connections and executions in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[int, Workflow] = {}
        self._connections: Dict[int, Connection] = {}
        self._executions: Dict[int, WorkflowExecution] = {}
        self._action_executions: Dict[int, ActionExecution] = {}
        self._ids: Dict[str, int] = {}

    def _next_id(self, kind: str) -> int:
        self._ids[kind] = self._ids.get(kind, 0) + 1
        return self._ids[kind]

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        now = utcnow()
        workflow_id = self._next_id("workflow")
        stored = workflow.model_copy(
            deep=True,
            update={"id": workflow_id, "created_at": now, "updated_at": now},
        )
        stored.actions = [
            action.model_copy(
                update={
                    "id": self._next_id("action"),
                    "workflow_id": workflow_id,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            for action in stored.actions
        ]
        self._workflows[workflow_id] = stored
        return stored.model_copy(deep=True)

    async def get_workflow(self, workflow_id: int) -> Workflow | None:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def list_workflows(self) -> list[Workflow]:
        return [
            wf.model_copy(update={"actions": [], "data_mappings": []})
            for wf in self._workflows.values()
        ]

    # ------------------------------------------------------------------
    # Connections
    async def create_connection(self, connection: Connection) -> Connection:
        now = utcnow()
        stored = connection.model_copy(
            deep=True,
            update={"id": self._next_id("connection"), "created_at": now, "updated_at": now},
        )
        self._connections[stored.id] = stored
        return stored.model_copy(deep=True)

    async def find_active_connection(
        self, user_id: int, service: str
    ) -> Connection | None:
        candidates = [
            c
            for c in self._connections.values()
            if c.user_id == user_id and c.service == service and c.status == "active"
        ]
        if not candidates:
            return None
        best = max(candidates, key=lambda c: (c.last_used_at or _EPOCH, c.id))
        return best.model_copy(deep=True)

    async def touch_connection(self, connection_id: int, used_at: datetime) -> None:
        connection = self._connections.get(connection_id)
        if connection:
            connection.last_used_at = used_at

    async def list_connections(self, user_id: int) -> list[Connection]:
        return [
            c.model_copy(deep=True)
            for c in self._connections.values()
            if c.user_id == user_id
        ]

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(
        self, workflow_id: int, trigger_data: str, status: ExecutionStatus
    ) -> WorkflowExecution:
        execution = WorkflowExecution(
            id=self._next_id("execution"),
            workflow_id=workflow_id,
            status=status,
            trigger_data=trigger_data,
            started_at=utcnow(),
        )
        self._executions[execution.id] = execution
        return execution.model_copy(deep=True)

    async def complete_execution(
        self, execution_id: int, status: ExecutionStatus, error: str | None = None
    ) -> None:
        execution = self._executions.get(execution_id)
        if execution is None or execution.status.is_terminal:
            return
        execution.status = status
        execution.completed_at = utcnow()
        execution.error = error

    async def create_action_execution(
        self, execution_id: int, action_id: int, input_data: dict[str, Any]
    ) -> ActionExecution:
        action_execution = ActionExecution(
            id=self._next_id("action_execution"),
            workflow_execution_id=execution_id,
            workflow_action_id=action_id,
            status=ExecutionStatus.RUNNING,
            input_data=dict(input_data),
            started_at=utcnow(),
        )
        self._action_executions[action_execution.id] = action_execution
        return action_execution.model_copy(deep=True)

    async def complete_action_execution(
        self,
        action_execution_id: int,
        status: ExecutionStatus,
        output_data: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        action_execution = self._action_executions.get(action_execution_id)
        if action_execution is None or action_execution.status.is_terminal:
            return
        action_execution.status = status
        action_execution.output_data = dict(output_data) if output_data is not None else None
        action_execution.completed_at = utcnow()
        action_execution.error = error

    async def get_execution(self, execution_id: int) -> WorkflowExecution | None:
        execution = self._executions.get(execution_id)
        if execution is None:
            return None
        actions = sorted(
            (
                a
                for a in self._action_executions.values()
                if a.workflow_execution_id == execution_id
            ),
            key=lambda a: a.id,
        )
        return execution.model_copy(
            deep=True, update={"actions": [a.model_copy(deep=True) for a in actions]}
        )

    async def list_executions(self, workflow_id: int) -> list[WorkflowExecution]:
        return [
            e.model_copy(deep=True)
            for e in self._executions.values()
            if e.workflow_id == workflow_id
        ]
