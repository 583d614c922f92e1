"""Jira Cloud integration."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from ..config import JiraConfig
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

SERVICE_NAME = "jira"


class ProjectEventConfig(BaseModel):
    site_name: str
    project_key: str


class IssueEventConfig(ProjectEventConfig):
    issue_type: Optional[str] = None


class IssueUpdatedConfig(IssueEventConfig):
    fields: list[str] = []


class StatusChangedConfig(ProjectEventConfig):
    from_status: Optional[str] = None
    to_status: Optional[str] = None


class CreateIssueConfig(BaseModel):
    project_key: str
    issue_type_id: str
    summary: Optional[str] = None
    description: Optional[str] = None
    labels: list[str] = []


class UpdateIssueConfig(BaseModel):
    issue_key: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    labels: Optional[list[str]] = None


class AddCommentConfig(BaseModel):
    issue_key: Optional[str] = None
    body: Optional[str] = None


class TransitionIssueConfig(BaseModel):
    transition_id: str
    issue_key: Optional[str] = None
    comment: Optional[str] = None


class SearchIssuesConfig(BaseModel):
    jql: Optional[str] = None
    max_results: int = 10
    fields: list[str] = []


DEFAULT_SEARCH_FIELDS = ["summary", "status", "assignee", "priority"]


class JiraTriggerHandler(TriggerHandler):
    trigger_types = (
        TriggerType(
            id="issue_created",
            name="Issue Created",
            description="Triggered when a new issue is created",
            config_model=IssueEventConfig,
        ),
        TriggerType(
            id="issue_updated",
            name="Issue Updated",
            description="Triggered when an issue is updated",
            config_model=IssueUpdatedConfig,
        ),
        TriggerType(
            id="issue_status_changed",
            name="Issue Status Changed",
            description="Triggered when an issue moves between statuses",
            config_model=StatusChangedConfig,
        ),
        TriggerType(
            id="issue_commented",
            name="Issue Commented",
            description="Triggered when a comment is added to an issue",
            config_model=ProjectEventConfig,
        ),
    )


class JiraActionHandler(ActionHandler):
    action_types = (
        ActionType(
            id="create_issue",
            name="Create Issue",
            description="Creates a new issue",
            config_model=CreateIssueConfig,
        ),
        ActionType(
            id="update_issue",
            name="Update Issue",
            description="Updates fields of an existing issue",
            config_model=UpdateIssueConfig,
        ),
        ActionType(
            id="add_comment",
            name="Add Comment",
            description="Adds a comment to an issue",
            config_model=AddCommentConfig,
        ),
        ActionType(
            id="transition_issue",
            name="Transition Issue",
            description="Moves an issue through a workflow transition",
            config_model=TransitionIssueConfig,
        ),
        ActionType(
            id="search_issues",
            name="Search Issues",
            description="Searches for issues using JQL",
            config_model=SearchIssuesConfig,
        ),
    )

    def __init__(
        self,
        auth: TokenAuthHandler,
        config: JiraConfig,
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
        # mapped input overrides static config
        params = {**config, **input_data}
        base_url = connection.metadata.get("base_url")
        if not base_url:
            raise ValueError("jira connection metadata is missing base_url")
        headers = self._auth.bearer_headers(connection.auth_data)

        handlers = {
            "create_issue": self._create_issue,
            "update_issue": self._update_issue,
            "add_comment": self._add_comment,
            "transition_issue": self._transition_issue,
            "search_issues": self._search_issues,
        }
        handler = handlers.get(action_id)
        if handler is None:
            raise ValueError(f"unknown action type: {action_id}")
        return await handler(base_url, headers, params)

    async def _create_issue(
        self, base_url: str, headers: dict[str, str], params: dict[str, Any]
    ) -> ActionResult:
        if not params.get("summary"):
            raise ValueError("create_issue requires summary")
        fields: dict[str, Any] = {
            "project": {"key": params["project_key"]},
            "issuetype": {"id": params["issue_type_id"]},
            "summary": params["summary"],
        }
        if params.get("description"):
            fields["description"] = params["description"]
        if params.get("labels"):
            fields["labels"] = params["labels"]

        created = await self._request(
            "POST", base_url, "/rest/api/3/issue", headers, {"fields": fields}
        )
        return ActionResult(
            data={"id": created.get("id"), "key": created.get("key"), "self": created.get("self")}
        )

    async def _update_issue(
        self, base_url: str, headers: dict[str, str], params: dict[str, Any]
    ) -> ActionResult:
        issue_key = params.get("issue_key")
        if not issue_key:
            raise ValueError("update_issue requires issue_key")
        fields: dict[str, Any] = {}
        for name in ("summary", "description"):
            if params.get(name):
                fields[name] = params[name]
        if params.get("priority"):
            fields["priority"] = {"id": params["priority"]}
        if params.get("labels") is not None:
            fields["labels"] = params["labels"]
        if not fields:
            raise ValueError("update_issue requires at least one field to change")

        await self._request(
            "PUT", base_url, f"/rest/api/3/issue/{issue_key}", headers, {"fields": fields}
        )
        return ActionResult(data={"success": True, "issue_key": issue_key})

    async def _add_comment(
        self, base_url: str, headers: dict[str, str], params: dict[str, Any]
    ) -> ActionResult:
        issue_key = params.get("issue_key")
        body = params.get("body")
        if not issue_key or not body:
            raise ValueError("add_comment requires issue_key and body")
        created = await self._request(
            "POST", base_url, f"/rest/api/3/issue/{issue_key}/comment", headers, {"body": body}
        )
        return ActionResult(data={"id": created.get("id"), "self": created.get("self")})

    async def _transition_issue(
        self, base_url: str, headers: dict[str, str], params: dict[str, Any]
    ) -> ActionResult:
        issue_key = params.get("issue_key")
        transition_id = params.get("transition_id")
        if not issue_key or not transition_id:
            raise ValueError("transition_issue requires issue_key and transition_id")
        body: dict[str, Any] = {"transition": {"id": str(transition_id)}}
        if params.get("comment"):
            body["update"] = {"comment": [{"add": {"body": params["comment"]}}]}

        await self._request(
            "POST", base_url, f"/rest/api/3/issue/{issue_key}/transitions", headers, body
        )
        return ActionResult(
            data={"success": True, "issue_key": issue_key, "transition_id": str(transition_id)}
        )

    async def _search_issues(
        self, base_url: str, headers: dict[str, str], params: dict[str, Any]
    ) -> ActionResult:
        if not params.get("jql"):
            raise ValueError("search_issues requires jql")
        body = {
            "jql": params["jql"],
            "fields": params.get("fields") or DEFAULT_SEARCH_FIELDS,
            "maxResults": int(params.get("max_results", 10)),
        }
        found = await self._request("POST", base_url, "/rest/api/3/search", headers, body)
        return ActionResult(
            data={
                "issues": found.get("issues", []),
                "total": found.get("total", 0),
                "max_results": found.get("maxResults", body["maxResults"]),
                "start_at": found.get("startAt", 0),
            }
        )

    async def _request(
        self,
        method: str,
        base_url: str,
        path: str,
        headers: dict[str, str],
        body: dict[str, Any],
    ) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=base_url,
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.request(method, path, json=body, headers=headers)
        response.raise_for_status()
        logger.debug(f"Jira {method} {path} returned {response.status_code}")
        # update and transition answer 204 with no body
        return response.json() if response.content else {}


class JiraProvider(ServiceProvider):
    """Jira Cloud REST provider."""

    service = SERVICE_NAME

    def __init__(
        self,
        config: JiraConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._auth = TokenAuthHandler()
        self._triggers = JiraTriggerHandler()
        self._actions = JiraActionHandler(self._auth, config or JiraConfig(), transport)

    @property
    def auth(self) -> TokenAuthHandler:
        return self._auth

    @property
    def triggers(self) -> JiraTriggerHandler:
        return self._triggers

    @property
    def actions(self) -> JiraActionHandler:
        return self._actions
