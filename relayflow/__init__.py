"""Relayflow: workflow execution engine for service integrations."""

from .config import RelayflowConfig, load_config
from .definitions import load_workflow_definition, workflow_from_definition
from .engine import WorkflowEngine, build_engine
from .mapping import DataMapper, TransformerRegistry
from .models import (
    ActionExecution,
    Connection,
    DataMapping,
    ExecutionStatus,
    Workflow,
    WorkflowAction,
    WorkflowExecution,
)
from .persistence import get_repository
from .providers import ActionResult, ProviderRegistry, ServiceProvider

__version__ = "0.1.0"
__all__ = [
    "ActionExecution",
    "ActionResult",
    "Connection",
    "DataMapper",
    "DataMapping",
    "ExecutionStatus",
    "ProviderRegistry",
    "RelayflowConfig",
    "ServiceProvider",
    "TransformerRegistry",
    "Workflow",
    "WorkflowAction",
    "WorkflowEngine",
    "WorkflowExecution",
    "build_engine",
    "get_repository",
    "load_config",
    "load_workflow_definition",
    "workflow_from_definition",
]
