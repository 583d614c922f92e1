"""Capability interfaces implemented by service integrations."""

from __future__ import annotations

import abc
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models import Connection


class TriggerType(BaseModel):
    """Describes an event a service can start workflows with."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: str
    description: Optional[str] = None
    config_model: type[BaseModel] = Field(..., description="Schema for the trigger config")


class ActionType(BaseModel):
    """Describes an operation a service can perform."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: str
    description: Optional[str] = None
    config_model: type[BaseModel] = Field(..., description="Schema for the action config")


class ActionResult(BaseModel):
    """Data produced by a successful action."""

    data: dict[str, Any] = Field(default_factory=dict)


def _validate_against(
    kind: str, type_id: str, types: tuple, config: dict[str, Any]
) -> None:
    declared = next((t for t in types if t.id == type_id), None)
    if declared is None:
        raise ValueError(f"unknown {kind} type: {type_id}")
    declared.config_model.model_validate(config)


class AuthHandler(metaclass=abc.ABCMeta):
    """Authentication capability of a service."""

    @abc.abstractmethod
    def validate_auth(self, auth_data: dict[str, Any]) -> None:
        """Raise ``ValueError`` if ``auth_data`` cannot authorize calls."""
        raise NotImplementedError

    def get_auth_url(self, state: str) -> str:
        """Return the OAuth authorization URL (unsupported by default)."""
        raise NotImplementedError(f"{type(self).__name__} does not support OAuth")


class TokenAuthHandler(AuthHandler):
    """Bearer-token authentication read from ``auth_data['access_token']``."""

    def validate_auth(self, auth_data: dict[str, Any]) -> None:
        token = auth_data.get("access_token")
        if not isinstance(token, str) or not token:
            raise ValueError("connection is missing an access_token")

    def bearer_headers(self, auth_data: dict[str, Any]) -> dict[str, str]:
        self.validate_auth(auth_data)
        return {"Authorization": f"Bearer {auth_data['access_token']}"}


class TriggerHandler:
    """Trigger capability of a service.

    Subclasses declare ``trigger_types``; configs are validated against the
    matching ``config_model``.
    """

    trigger_types: ClassVar[tuple[TriggerType, ...]] = ()

    def get_trigger_types(self) -> list[TriggerType]:
        return list(self.trigger_types)

    def validate_trigger_config(self, trigger_id: str, config: dict[str, Any]) -> None:
        _validate_against("trigger", trigger_id, self.trigger_types, config)


class ActionHandler(metaclass=abc.ABCMeta):
    """Action capability of a service."""

    action_types: ClassVar[tuple[ActionType, ...]] = ()

    def get_action_types(self) -> list[ActionType]:
        return list(self.action_types)

    def validate_action_config(self, action_id: str, config: dict[str, Any]) -> None:
        _validate_against("action", action_id, self.action_types, config)

    @abc.abstractmethod
    async def execute_action(
        self,
        connection: Connection,
        action_id: str,
        config: dict[str, Any],
        input_data: dict[str, Any],
    ) -> ActionResult:
        """Perform ``action_id`` against the service."""
        raise NotImplementedError


class ServiceProvider(metaclass=abc.ABCMeta):
    """Pluggable integration for one external service."""

    service: ClassVar[str]

    @property
    @abc.abstractmethod
    def auth(self) -> AuthHandler:
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def triggers(self) -> TriggerHandler:
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def actions(self) -> ActionHandler:
        raise NotImplementedError

    async def validate_connection(self, connection: Connection) -> None:
        """Check that ``connection`` belongs to this service and can authorize calls."""
        if connection.service != self.service:
            raise ValueError(
                f"connection {connection.id} is for {connection.service}, not {self.service}"
            )
        self.auth.validate_auth(connection.auth_data)
