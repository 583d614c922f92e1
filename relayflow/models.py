"""Domain models for workflows, connections and executions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    """Lifecycle of workflow and action executions."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class DataMapping(BaseModel):
    """Projects one source field into one target field for a service pair."""

    source_service: str
    source_field: str
    target_service: str
    target_field: str
    transformer: Optional[str] = None


class WorkflowAction(BaseModel):
    """One step of a workflow pipeline."""

    id: Optional[int] = None
    workflow_id: Optional[int] = None
    action_service: str
    action_id: str
    action_config: dict[str, Any] = Field(default_factory=dict)
    position: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Workflow(BaseModel):
    """Stored automation definition: trigger, ordered actions and mappings."""

    id: Optional[int] = None
    user_id: int
    name: str
    description: str = ""
    status: str = "active"
    trigger_service: str
    trigger_id: str
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    actions: list[WorkflowAction] = Field(default_factory=list)
    data_mappings: list[DataMapping] = Field(default_factory=list)

    @model_validator(mode="after")
    def _order_actions(self) -> "Workflow":
        positions = [action.position for action in self.actions]
        if len(positions) != len(set(positions)):
            raise ValueError("action positions must be unique within a workflow")
        self.actions = sorted(self.actions, key=lambda action: action.position)
        return self


class Connection(BaseModel):
    """A user-owned credential for one service."""

    id: Optional[int] = None
    user_id: int
    name: str = ""
    service: str
    status: str = "active"
    auth_type: str = "token"
    auth_data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ActionExecution(BaseModel):
    """Outcome of one action within one workflow execution."""

    id: Optional[int] = None
    workflow_execution_id: int
    workflow_action_id: int
    status: ExecutionStatus = ExecutionStatus.RUNNING
    input_data: dict[str, Any] = Field(default_factory=dict)
    output_data: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class WorkflowExecution(BaseModel):
    """One run of a workflow with its ordered action history."""

    id: Optional[int] = None
    workflow_id: int
    status: ExecutionStatus = ExecutionStatus.PENDING
    trigger_data: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    actions: list[ActionExecution] = Field(default_factory=list)
