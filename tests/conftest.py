"""Shared fixtures: fake providers and an in-memory engine."""

from __future__ import annotations

import inspect
from typing import Any, Callable, Iterable

import pytest
from pydantic import BaseModel, ConfigDict

from relayflow.engine import WorkflowEngine
from relayflow.models import Connection
from relayflow.persistence import InMemoryWorkflowRepository
from relayflow.providers import (
    ActionHandler,
    ActionResult,
    ActionType,
    ServiceProvider,
    TokenAuthHandler,
    TriggerHandler,
    TriggerType,
)


class OpenConfig(BaseModel):
    model_config = ConfigDict(extra="allow")


class ChannelConfig(BaseModel):
    channel: str


class FakeTriggerHandler(TriggerHandler):
    def __init__(self, trigger_ids: Iterable[str], strict: Iterable[str]) -> None:
        strict = set(strict)
        self.trigger_types = tuple(
            TriggerType(
                id=t,
                name=t,
                config_model=ChannelConfig if t in strict else OpenConfig,
            )
            for t in trigger_ids
        )


class FakeActionHandler(ActionHandler):
    """Returns canned outputs, raises canned errors or calls a behaviour."""

    def __init__(self, behaviours: dict[str, Any], strict: Iterable[str]) -> None:
        strict = set(strict)
        self.behaviours = behaviours
        self.action_types = tuple(
            ActionType(
                id=a,
                name=a,
                config_model=ChannelConfig if a in strict else OpenConfig,
            )
            for a in behaviours
        )
        self.calls: list[tuple[Connection, str, dict, dict]] = []

    async def execute_action(self, connection, action_id, config, input_data):
        self.calls.append((connection, action_id, dict(config), dict(input_data)))
        behaviour = self.behaviours[action_id]
        if isinstance(behaviour, BaseException):
            raise behaviour
        if inspect.iscoroutinefunction(behaviour):
            behaviour = await behaviour(input_data)
        elif callable(behaviour):
            behaviour = behaviour(input_data)
        if isinstance(behaviour, ActionResult):
            return behaviour
        return ActionResult(data=dict(behaviour or {}))


class FakeProvider(ServiceProvider):
    def __init__(
        self,
        service: str,
        actions: dict[str, Any] | None = None,
        triggers: Iterable[str] = ("event",),
        strict_triggers: Iterable[str] = (),
        strict_actions: Iterable[str] = (),
    ) -> None:
        self.service = service
        self._auth = TokenAuthHandler()
        self._triggers = FakeTriggerHandler(triggers, strict_triggers)
        self._actions = FakeActionHandler(actions or {}, strict_actions)

    @property
    def auth(self):
        return self._auth

    @property
    def triggers(self) -> FakeTriggerHandler:
        return self._triggers

    @property
    def actions(self) -> FakeActionHandler:
        return self._actions


@pytest.fixture
def fake_provider() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def repo() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def engine(repo) -> WorkflowEngine:
    return WorkflowEngine(repo)


@pytest.fixture
def connect(repo):
    """Store an active connection for ``(user_id, service)``."""

    async def _connect(user_id: int, service: str, **fields: Any) -> Connection:
        fields.setdefault("auth_data", {"access_token": f"{service}-token"})
        return await repo.create_connection(
            Connection(user_id=user_id, service=service, name=service, **fields)
        )

    return _connect
