"""Workflow execution engine for relayflow."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Mapping, Optional, Union

from .config import RelayflowConfig
from .connections import ConnectionResolver
from .errors import (
    ActionExecutionFailedError,
    ExecutionNotFoundError,
    InvalidTriggerPayloadError,
    PersistenceFailedError,
    RelayflowError,
    WorkflowNotFoundError,
)
from .mapping import BUILTIN_TRANSFORMERS, DataMapper, Transformer, TransformerRegistry
from .models import (
    ActionExecution,
    Connection,
    ExecutionStatus,
    Workflow,
    WorkflowAction,
    WorkflowExecution,
)
from .persistence import WorkflowRepository
from .providers import (
    ActionResult,
    ProviderRegistry,
    ServiceProvider,
    register_builtin_providers,
)
from .validation import WorkflowValidator

logger = logging.getLogger(__name__)

TriggerPayload = Union[str, bytes, Mapping[str, Any]]


def _encode_trigger_payload(payload: TriggerPayload) -> str:
    if isinstance(payload, bytes):
        try:
            return payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidTriggerPayloadError(
                f"trigger payload is not valid UTF-8: {exc}"
            ) from exc
    if isinstance(payload, str):
        return payload
    return json.dumps(dict(payload))


def _parse_trigger_payload(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"failed to parse trigger data: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(
            f"failed to parse trigger data: expected a JSON object, got {type(data).__name__}"
        )
    return data


class WorkflowEngine:
    """Validates workflows and runs their action pipelines.

    ``execute_workflow`` returns as soon as the execution record is committed;
    the pipeline itself runs as a background task owned by the engine. Use
    ``wait_for_execution`` to await a specific run or ``shutdown`` to drain
    all of them.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        config: Optional[RelayflowConfig] = None,
        transformers: Optional[Mapping[str, Transformer]] = None,
    ) -> None:
        self._repository = repository
        self._config = config or RelayflowConfig()
        self._providers = ProviderRegistry()
        self._transformers = TransformerRegistry(
            BUILTIN_TRANSFORMERS if transformers is None else transformers
        )
        self._mapper = DataMapper(self._transformers)
        self._connections = ConnectionResolver(repository)
        self._validator = WorkflowValidator(self._providers, self._transformers)
        self._tasks: Dict[int, asyncio.Task] = {}

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Registries
    def register_service_provider(self, provider: ServiceProvider) -> None:
        self._providers.register(provider)

    def register_data_transformer(self, name: str, transformer: Transformer) -> None:
        self._transformers.register(name, transformer)

    def get_service_provider(self, name: str) -> ServiceProvider:
        return self._providers.get(name)

    # ------------------------------------------------------------------
    # Definitions
    async def get_workflow(self, workflow_id: int) -> Workflow:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def validate_workflow(self, workflow: Workflow) -> None:
        self._validator.validate(workflow)

    # ------------------------------------------------------------------
    # Executions
    async def execute_workflow(
        self, workflow_id: int, trigger_payload: TriggerPayload
    ) -> WorkflowExecution:
        """Start a run of ``workflow_id`` and return its execution record.

        Lookup and validation failures raise before anything is stored.
        Failures inside the pipeline are recorded on the execution instead.
        """
        workflow = await self.get_workflow(workflow_id)
        self.validate_workflow(workflow)

        trigger_data = _encode_trigger_payload(trigger_payload)
        execution = await self._repository.create_execution(
            workflow.id, trigger_data, ExecutionStatus.RUNNING
        )
        logger.info(
            f"Started execution {execution.id} of workflow {workflow.id} "
            f"({len(workflow.actions)} actions)"
        )

        task = asyncio.create_task(
            self._run_pipeline(workflow, execution),
            name=f"relayflow-execution-{execution.id}",
        )
        self._tasks[execution.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution.id, None))
        return execution

    async def get_execution(self, execution_id: int) -> WorkflowExecution:
        execution = await self._repository.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def list_executions(self, workflow_id: int) -> list[WorkflowExecution]:
        return await self._repository.list_executions(workflow_id)

    def is_running(self, execution_id: int) -> bool:
        return execution_id in self._tasks

    async def wait_for_execution(
        self, execution_id: int, timeout: Optional[float] = None
    ) -> WorkflowExecution:
        """Wait until the pipeline of ``execution_id`` finishes and return its record."""
        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return await self.get_execution(execution_id)

    async def shutdown(self) -> None:
        """Wait for all in-flight pipelines to finish."""
        tasks = list(self._tasks.values())
        if tasks:
            logger.info(f"Waiting for {len(tasks)} running executions")
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Pipeline
    async def _run_pipeline(
        self, workflow: Workflow, execution: WorkflowExecution
    ) -> None:
        try:
            data = _parse_trigger_payload(execution.trigger_data or "")
        except ValueError as exc:
            logger.warning(f"Execution {execution.id} failed: {exc}")
            await self._finish(execution.id, ExecutionStatus.FAILED, str(exc))
            return

        source_service = workflow.trigger_service
        for action in workflow.actions:
            action_execution: ActionExecution | None = None
            try:
                input_data = self._mapper.apply_mappings(
                    source_service, data, action.action_service, workflow.data_mappings
                )
                action_execution = await self._repository.create_action_execution(
                    execution.id, action.id, input_data
                )
                connection = await self._connections.resolve(
                    workflow.user_id, action.action_service
                )
                provider = self._providers.get(action.action_service)
                result = await self._invoke(provider, connection, action, input_data)
                await self._repository.complete_action_execution(
                    action_execution.id, ExecutionStatus.COMPLETED, output_data=result.data
                )
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.error(
                    f"Execution {execution.id} failed at action "
                    f"{action.action_service}.{action.action_id} "
                    f"(position {action.position}): {message}"
                )
                if action_execution is not None:
                    await self._fail_action(action_execution.id, message)
                await self._finish(execution.id, ExecutionStatus.FAILED, message)
                return

            logger.debug(
                f"Execution {execution.id} completed action "
                f"{action.action_service}.{action.action_id}"
            )
            data = result.data
            source_service = action.action_service

        await self._finish(execution.id, ExecutionStatus.COMPLETED)

    async def _invoke(
        self,
        provider: ServiceProvider,
        connection: Connection,
        action: WorkflowAction,
        input_data: dict[str, Any],
    ) -> ActionResult:
        name = f"{action.action_service}.{action.action_id}"
        call = provider.actions.execute_action(
            connection, action.action_id, action.action_config, input_data
        )
        timeout = self._config.engine.action_timeout_seconds
        try:
            result = await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError as exc:
            raise ActionExecutionFailedError(
                f"action {name} timed out after {timeout} seconds"
            ) from exc
        except RelayflowError:
            raise
        except Exception as exc:
            raise ActionExecutionFailedError(f"action {name} failed: {exc}") from exc

        if not isinstance(result, ActionResult):
            raise ActionExecutionFailedError(
                f"action {name} returned {type(result).__name__}, expected ActionResult"
            )
        return result

    async def _fail_action(self, action_execution_id: int, message: str) -> None:
        try:
            await self._repository.complete_action_execution(
                action_execution_id, ExecutionStatus.FAILED, error=message
            )
        except PersistenceFailedError as exc:
            logger.error(
                f"Failed to record failure of action execution {action_execution_id}: {exc}"
            )

    async def _finish(
        self, execution_id: int, status: ExecutionStatus, error: str | None = None
    ) -> None:
        try:
            await self._repository.complete_execution(execution_id, status, error)
        except PersistenceFailedError as exc:
            logger.error(f"Failed to complete workflow execution {execution_id}: {exc}")
            return
        logger.info(f"Execution {execution_id} finished with status {status.value}")


def build_engine(
    repository: WorkflowRepository, config: Optional[RelayflowConfig] = None
) -> WorkflowEngine:
    """Create an engine with the bundled providers registered."""

    engine = WorkflowEngine(repository, config=config)
    register_builtin_providers(engine, config)
    return engine
