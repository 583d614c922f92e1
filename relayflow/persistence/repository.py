"""Repository abstraction for workflow, connection and execution storage."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from ..models import (
    ActionExecution,
    Connection,
    ExecutionStatus,
    Workflow,
    WorkflowExecution,
)


class WorkflowRepository(Protocol):
    """Protocol for persistence backends."""

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        """Persist a workflow with its actions and mappings; return it with ids set."""

    async def get_workflow(self, workflow_id: int) -> Workflow | None:
        """Load a workflow aggregate, actions ordered by position."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all workflows without their actions and mappings."""

    async def create_connection(self, connection: Connection) -> Connection:
        """Persist a connection; return it with its id set."""

    async def find_active_connection(
        self, user_id: int, service: str
    ) -> Connection | None:
        """Return the most recently used active connection for the pair."""

    async def touch_connection(self, connection_id: int, used_at: datetime) -> None:
        """Record that a connection was used."""

    async def list_connections(self, user_id: int) -> list[Connection]:
        """Return every connection owned by ``user_id``."""

    async def create_execution(
        self, workflow_id: int, trigger_data: str, status: ExecutionStatus
    ) -> WorkflowExecution:
        """Insert a workflow execution row in its own transaction."""

    async def complete_execution(
        self, execution_id: int, status: ExecutionStatus, error: str | None = None
    ) -> None:
        """Finalize a workflow execution unless it is already terminal."""

    async def create_action_execution(
        self, execution_id: int, action_id: int, input_data: dict[str, Any]
    ) -> ActionExecution:
        """Record the start of an action execution."""

    async def complete_action_execution(
        self,
        action_execution_id: int,
        status: ExecutionStatus,
        output_data: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        """Finalize an action execution unless it is already terminal."""

    async def get_execution(self, execution_id: int) -> WorkflowExecution | None:
        """Load an execution with its action executions in start order."""

    async def list_executions(self, workflow_id: int) -> list[WorkflowExecution]:
        """Return executions of a workflow without their action history."""
