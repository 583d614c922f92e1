"""Exception hierarchy for relayflow."""

from __future__ import annotations


class RelayflowError(Exception):
    """Base class for all relayflow errors."""


class NotFoundError(RelayflowError):
    """A requested record or capability does not exist."""


class WorkflowNotFoundError(NotFoundError):
    def __init__(self, workflow_id: int) -> None:
        super().__init__(f"workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class ProviderNotFoundError(NotFoundError):
    def __init__(self, service: str) -> None:
        super().__init__(f"service provider not found: {service}")
        self.service = service


class ExecutionNotFoundError(NotFoundError):
    def __init__(self, execution_id: int) -> None:
        super().__init__(f"workflow execution not found: {execution_id}")
        self.execution_id = execution_id


class InvalidConfigError(RelayflowError):
    """A trigger or action configuration was rejected by its provider."""


class InvalidTriggerConfigError(InvalidConfigError):
    pass


class InvalidActionConfigError(InvalidConfigError):
    pass


class UnknownTransformerError(RelayflowError):
    def __init__(self, name: str) -> None:
        super().__init__(f"unknown data transformer: {name}")
        self.name = name


class TransformFailedError(RelayflowError):
    pass


class ConnectionUnavailableError(RelayflowError):
    """No usable connection could be obtained for an action."""


class NoActiveConnectionError(ConnectionUnavailableError, NotFoundError):
    def __init__(self, user_id: int, service: str) -> None:
        super().__init__(
            f"no active connection found for service {service} (user {user_id})"
        )
        self.user_id = user_id
        self.service = service


class InvalidTriggerPayloadError(RelayflowError):
    """Raw trigger bytes are not valid UTF-8."""


class ActionExecutionFailedError(RelayflowError):
    pass


class PersistenceFailedError(RelayflowError):
    """Storage I/O failed."""


__all__ = [
    "RelayflowError",
    "NotFoundError",
    "WorkflowNotFoundError",
    "ProviderNotFoundError",
    "ExecutionNotFoundError",
    "InvalidConfigError",
    "InvalidTriggerConfigError",
    "InvalidActionConfigError",
    "InvalidTriggerPayloadError",
    "UnknownTransformerError",
    "TransformFailedError",
    "ConnectionUnavailableError",
    "NoActiveConnectionError",
    "ActionExecutionFailedError",
    "PersistenceFailedError",
]
