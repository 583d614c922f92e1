"""End-to-end runs with the bundled providers against a SQLite store."""

import json

import httpx
import pytest

from relayflow.config import RelayflowConfig, SlackConfig
from relayflow.definitions import workflow_from_definition
from relayflow.engine import WorkflowEngine
from relayflow.models import Connection, ExecutionStatus
from relayflow.persistence import SQLiteWorkflowRepository
from relayflow.providers import JiraProvider, SlackProvider


def _fake_apis(calls):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append((request.url.host, request.url.path, body))
        if request.url.path == "/rest/api/3/issue":
            return httpx.Response(201, json={"id": "10001", "key": "OPS-7", "self": "s"})
        if request.url.path.endswith("/comment"):
            return httpx.Response(201, json={"id": "1", "self": "c"})
        if request.url.path == "/api/chat.postMessage":
            return httpx.Response(200, json={"ok": True, "channel": body["channel"], "ts": "9.9"})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def _engine(repo, calls):
    config = RelayflowConfig()
    transport = _fake_apis(calls)
    engine = WorkflowEngine(repo, config=config)
    engine.register_service_provider(
        SlackProvider(SlackConfig(api_base_url="https://slack.test/api"), transport=transport)
    )
    engine.register_service_provider(
        JiraProvider(config.integrations.jira, transport=transport)
    )
    return engine


SLACK_TO_JIRA = {
    "name": "Escalate Slack messages",
    "user_id": 1,
    "trigger": {"service": "slack", "trigger_id": "new_message", "config": {"channel": "C1"}},
    "actions": [
        {
            "service": "jira",
            "action_id": "create_issue",
            "config": {"project_key": "OPS", "issue_type_id": "10004"},
        },
        {"service": "slack", "action_id": "post_message", "config": {"channel": "C1"}},
    ],
    "mappings": [
        {
            "source_service": "slack",
            "source_field": "text",
            "target_service": "jira",
            "target_field": "summary",
            "transformer": "trim",
        },
        {
            "source_service": "jira",
            "source_field": "key",
            "target_service": "slack",
            "target_field": "text",
        },
    ],
}


async def _connect(repo):
    await repo.create_connection(
        Connection(user_id=1, service="slack", auth_data={"access_token": "xoxb"})
    )
    await repo.create_connection(
        Connection(
            user_id=1,
            service="jira",
            auth_data={"access_token": "jira"},
            metadata={"base_url": "https://acme.atlassian.net"},
        )
    )


@pytest.mark.asyncio
async def test_slack_to_jira_round_trip_is_persisted(tmp_path):
    db_path = tmp_path / "relayflow.db"
    repo = SQLiteWorkflowRepository(db_path)
    calls = []
    engine = _engine(repo, calls)
    await _connect(repo)
    wf = await repo.create_workflow(workflow_from_definition(SLACK_TO_JIRA))

    execution = await engine.execute_workflow(
        wf.id, b'{"text": "  Server down  ", "user": "U1"}'
    )
    await engine.shutdown()
    repo.close()

    reopened = SQLiteWorkflowRepository(db_path)
    result = await reopened.get_execution(execution.id)

    assert result.status == ExecutionStatus.COMPLETED
    assert result.trigger_data == '{"text": "  Server down  ", "user": "U1"}'
    assert [a.status for a in result.actions] == [ExecutionStatus.COMPLETED] * 2
    assert result.actions[0].input_data == {"summary": "Server down"}
    assert result.actions[0].output_data == {"id": "10001", "key": "OPS-7", "self": "s"}
    assert result.actions[1].input_data == {"text": "OPS-7"}
    assert result.actions[1].output_data == {"ok": True, "channel": "C1", "ts": "9.9"}

    assert calls[0][0] == "acme.atlassian.net"
    assert calls[0][2]["fields"]["summary"] == "Server down"
    assert calls[1] == ("slack.test", "/api/chat.postMessage", {"channel": "C1", "text": "OPS-7"})

    connections = await reopened.list_connections(1)
    assert all(c.last_used_at is not None for c in connections)
    reopened.close()


@pytest.mark.asyncio
async def test_provider_failure_is_persisted(tmp_path):
    repo = SQLiteWorkflowRepository(tmp_path / "relayflow.db")
    calls = []
    engine = _engine(repo, calls)
    await _connect(repo)
    definition = dict(SLACK_TO_JIRA, mappings=[])
    wf = await repo.create_workflow(workflow_from_definition(definition))

    execution = await engine.execute_workflow(wf.id, {"text": "hello"})
    result = await engine.wait_for_execution(execution.id, timeout=5)

    assert result.status == ExecutionStatus.FAILED
    assert "create_issue requires summary" in result.error
    assert len(result.actions) == 1
    assert result.actions[0].status == ExecutionStatus.FAILED
    assert calls == []
    repo.close()
