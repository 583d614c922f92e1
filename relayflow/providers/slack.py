"""Slack integration."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from ..config import SlackConfig
from ..models import Connection
from .base import (
    ActionHandler,
    ActionResult,
    ActionType,
    ServiceProvider,
    TokenAuthHandler,
    TriggerHandler,
    TriggerType,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "slack"


class NewMessageConfig(BaseModel):
    channel: str


class PostMessageConfig(BaseModel):
    channel: str
    text: Optional[str] = None
    username: Optional[str] = None


class PostReplyConfig(BaseModel):
    channel: str
    thread_ts: Optional[str] = None
    text: Optional[str] = None


class UpdateMessageConfig(BaseModel):
    channel: str
    timestamp: Optional[str] = None
    text: Optional[str] = None


class AddReactionConfig(BaseModel):
    channel: str
    name: str
    timestamp: Optional[str] = None


class SlackTriggerHandler(TriggerHandler):
    trigger_types = (
        TriggerType(
            id="new_message",
            name="New Message",
            description="Triggered when a message is posted to a channel",
            config_model=NewMessageConfig,
        ),
    )


class SlackActionHandler(ActionHandler):
    action_types = (
        ActionType(
            id="post_message",
            name="Post Message",
            description="Posts a message to a channel",
            config_model=PostMessageConfig,
        ),
        ActionType(
            id="add_reaction",
            name="Add Reaction",
            description="Adds an emoji reaction to a message",
            config_model=AddReactionConfig,
        ),
        ActionType(
            id="post_reply",
            name="Post Reply",
            description="Replies to a message thread",
            config_model=PostReplyConfig,
        ),
        ActionType(
            id="update_message",
            name="Update Message",
            description="Replaces the text of a previously posted message",
            config_model=UpdateMessageConfig,
        ),
    )

    def __init__(
        self,
        auth: TokenAuthHandler,
        config: SlackConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._auth = auth
        self._config = config
        self._transport = transport

    async def execute_action(
        self,
        connection: Connection,
        action_id: str,
        config: dict[str, Any],
        input_data: dict[str, Any],
    ) -> ActionResult:
        params = {**config, **input_data}
        headers = self._auth.bearer_headers(connection.auth_data)

        if action_id == "post_message":
            if not params.get("text"):
                raise ValueError("post_message requires text")
            body = {"channel": params["channel"], "text": params["text"]}
            if params.get("username"):
                body["username"] = params["username"]
            response = await self._call("chat.postMessage", headers, body)
            return ActionResult(
                data={
                    "ok": True,
                    "channel": response.get("channel", params["channel"]),
                    "ts": response.get("ts"),
                }
            )
        if action_id == "add_reaction":
            if not params.get("timestamp"):
                raise ValueError("add_reaction requires timestamp")
            body = {
                "channel": params["channel"],
                "name": params["name"],
                "timestamp": params["timestamp"],
            }
            await self._call("reactions.add", headers, body)
            return ActionResult(data={"ok": True})
        if action_id == "post_reply":
            if not params.get("thread_ts") or not params.get("text"):
                raise ValueError("post_reply requires thread_ts and text")
            body = {
                "channel": params["channel"],
                "thread_ts": params["thread_ts"],
                "text": params["text"],
            }
            response = await self._call("chat.postMessage", headers, body)
            return ActionResult(
                data={
                    "ok": True,
                    "channel": response.get("channel", params["channel"]),
                    "ts": response.get("ts"),
                    "thread_ts": params["thread_ts"],
                }
            )
        if action_id == "update_message":
            if not params.get("timestamp") or not params.get("text"):
                raise ValueError("update_message requires timestamp and text")
            body = {
                "channel": params["channel"],
                "ts": params["timestamp"],
                "text": params["text"],
            }
            response = await self._call("chat.update", headers, body)
            return ActionResult(
                data={
                    "ok": True,
                    "channel": response.get("channel", params["channel"]),
                    "ts": response.get("ts", params["timestamp"]),
                }
            )
        raise ValueError(f"unknown action type: {action_id}")

    async def _call(
        self, method: str, headers: dict[str, str], body: dict[str, Any]
    ) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self._config.api_base_url.rstrip("/") + "/",
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.post(method, json=body, headers=headers)
        response.raise_for_status()
        payload = response.json()
        if not payload.get("ok"):
            raise RuntimeError(f"slack {method} failed: {payload.get('error', 'unknown error')}")
        logger.debug(f"Slack {method} succeeded")
        return payload


class SlackProvider(ServiceProvider):
    """Slack Web API provider."""

    service = SERVICE_NAME

    def __init__(
        self,
        config: SlackConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._auth = TokenAuthHandler()
        self._triggers = SlackTriggerHandler()
        self._actions = SlackActionHandler(self._auth, config or SlackConfig(), transport)

    @property
    def auth(self) -> TokenAuthHandler:
        return self._auth

    @property
    def triggers(self) -> SlackTriggerHandler:
        return self._triggers

    @property
    def actions(self) -> SlackActionHandler:
        return self._actions
