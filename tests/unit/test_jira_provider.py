import json

import httpx
import pytest

from relayflow.models import Connection
from relayflow.providers import JiraProvider

CONNECTION = Connection(
    id=4,
    user_id=1,
    service="jira",
    auth_data={"access_token": "jira-token"},
    metadata={"base_url": "https://acme.atlassian.net"},
)


def _provider(responses, requests):
    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses(request)

    return JiraProvider(transport=httpx.MockTransport(_handler))


@pytest.mark.asyncio
async def test_create_issue_posts_fields():
    requests = []
    provider = _provider(
        lambda r: httpx.Response(
            201, json={"id": "10001", "key": "OPS-7", "self": "https://acme/rest/api/3/issue/10001"}
        ),
        requests,
    )

    result = await provider.actions.execute_action(
        CONNECTION,
        "create_issue",
        {"project_key": "OPS", "issue_type_id": "10004", "labels": ["slack"]},
        {"summary": "Server down", "description": "from #ops"},
    )

    assert result.data == {
        "id": "10001",
        "key": "OPS-7",
        "self": "https://acme/rest/api/3/issue/10001",
    }
    [request] = requests
    assert str(request.url) == "https://acme.atlassian.net/rest/api/3/issue"
    assert request.headers["Authorization"] == "Bearer jira-token"
    assert json.loads(request.content) == {
        "fields": {
            "project": {"key": "OPS"},
            "issuetype": {"id": "10004"},
            "summary": "Server down",
            "description": "from #ops",
            "labels": ["slack"],
        }
    }


@pytest.mark.asyncio
async def test_add_comment_uses_mapped_issue_key():
    requests = []
    provider = _provider(lambda r: httpx.Response(201, json={"id": "55", "self": "x"}), requests)

    result = await provider.actions.execute_action(
        CONNECTION, "add_comment", {"body": "Acknowledged"}, {"issue_key": "OPS-7"}
    )

    assert result.data == {"id": "55", "self": "x"}
    assert requests[0].url.path == "/rest/api/3/issue/OPS-7/comment"
    assert json.loads(requests[0].content) == {"body": "Acknowledged"}


@pytest.mark.asyncio
async def test_missing_base_url_or_summary_is_rejected():
    requests = []
    provider = _provider(lambda r: httpx.Response(201, json={}), requests)
    no_site = CONNECTION.model_copy(update={"metadata": {}})

    with pytest.raises(ValueError, match="base_url"):
        await provider.actions.execute_action(
            no_site, "create_issue", {"project_key": "OPS", "issue_type_id": "1"}, {"summary": "x"}
        )
    with pytest.raises(ValueError, match="summary"):
        await provider.actions.execute_action(
            CONNECTION, "create_issue", {"project_key": "OPS", "issue_type_id": "1"}, {}
        )
    with pytest.raises(ValueError, match="issue_key"):
        await provider.actions.execute_action(CONNECTION, "add_comment", {"body": "hi"}, {})
    assert requests == []


@pytest.mark.asyncio
async def test_http_error_propagates():
    provider = _provider(lambda r: httpx.Response(403, json={"errorMessages": ["no"]}), [])

    with pytest.raises(httpx.HTTPStatusError):
        await provider.actions.execute_action(
            CONNECTION, "add_comment", {}, {"issue_key": "OPS-1", "body": "hi"}
        )


def test_jira_declares_capabilities():
    provider = JiraProvider()

    assert provider.service == "jira"
    assert [t.id for t in provider.triggers.get_trigger_types()] == [
        "issue_created",
        "issue_updated",
        "issue_status_changed",
        "issue_commented",
    ]
    assert [a.id for a in provider.actions.get_action_types()] == [
        "create_issue",
        "update_issue",
        "add_comment",
        "transition_issue",
        "search_issues",
    ]
    provider.triggers.validate_trigger_config(
        "issue_updated", {"site_name": "acme", "project_key": "OPS"}
    )
    provider.actions.validate_action_config(
        "create_issue", {"project_key": "OPS", "issue_type_id": "10004"}
    )
    provider.triggers.validate_trigger_config(
        "issue_status_changed", {"site_name": "acme", "project_key": "OPS", "to_status": "3"}
    )
    provider.actions.validate_action_config("transition_issue", {"transition_id": "31"})
    with pytest.raises(ValueError):
        provider.triggers.validate_trigger_config("issue_created", {"site_name": "acme"})
    with pytest.raises(ValueError):
        provider.actions.validate_action_config("create_issue", {"project_key": "OPS"})
    with pytest.raises(ValueError):
        provider.actions.validate_action_config("transition_issue", {"issue_key": "OPS-1"})


@pytest.mark.asyncio
async def test_update_issue_puts_changed_fields():
    requests = []
    provider = _provider(lambda r: httpx.Response(204), requests)

    result = await provider.actions.execute_action(
        CONNECTION,
        "update_issue",
        {"priority": "2", "labels": []},
        {"issue_key": "OPS-7", "summary": "Server still down"},
    )

    assert result.data == {"success": True, "issue_key": "OPS-7"}
    [request] = requests
    assert request.method == "PUT"
    assert request.url.path == "/rest/api/3/issue/OPS-7"
    assert json.loads(request.content) == {
        "fields": {"summary": "Server still down", "priority": {"id": "2"}, "labels": []}
    }


@pytest.mark.asyncio
async def test_update_issue_without_changes_is_rejected():
    requests = []
    provider = _provider(lambda r: httpx.Response(204), requests)

    with pytest.raises(ValueError, match="at least one field"):
        await provider.actions.execute_action(CONNECTION, "update_issue", {}, {"issue_key": "OPS-7"})
    assert requests == []


@pytest.mark.asyncio
async def test_transition_issue_adds_optional_comment():
    requests = []
    provider = _provider(lambda r: httpx.Response(204), requests)

    plain = await provider.actions.execute_action(
        CONNECTION, "transition_issue", {"transition_id": "31"}, {"issue_key": "OPS-7"}
    )
    commented = await provider.actions.execute_action(
        CONNECTION,
        "transition_issue",
        {"transition_id": "31", "comment": "Fixed"},
        {"issue_key": "OPS-8"},
    )

    assert plain.data == {"success": True, "issue_key": "OPS-7", "transition_id": "31"}
    assert commented.data["issue_key"] == "OPS-8"
    assert [r.url.path for r in requests] == [
        "/rest/api/3/issue/OPS-7/transitions",
        "/rest/api/3/issue/OPS-8/transitions",
    ]
    assert json.loads(requests[0].content) == {"transition": {"id": "31"}}
    assert json.loads(requests[1].content) == {
        "transition": {"id": "31"},
        "update": {"comment": [{"add": {"body": "Fixed"}}]},
    }


@pytest.mark.asyncio
async def test_search_issues_defaults_fields_and_limit():
    requests = []
    issues = [{"key": "OPS-7", "fields": {"summary": "Server down"}}]
    provider = _provider(
        lambda r: httpx.Response(
            200, json={"issues": issues, "total": 1, "maxResults": 10, "startAt": 0}
        ),
        requests,
    )

    result = await provider.actions.execute_action(
        CONNECTION, "search_issues", {"jql": "project = OPS"}, {}
    )

    assert result.data == {"issues": issues, "total": 1, "max_results": 10, "start_at": 0}
    assert requests[0].url.path == "/rest/api/3/search"
    assert json.loads(requests[0].content) == {
        "jql": "project = OPS",
        "fields": ["summary", "status", "assignee", "priority"],
        "maxResults": 10,
    }

    await provider.actions.execute_action(
        CONNECTION,
        "search_issues",
        {"jql": "project = OPS", "fields": ["summary"], "max_results": 3},
        {},
    )
    assert json.loads(requests[1].content)["fields"] == ["summary"]
    assert json.loads(requests[1].content)["maxResults"] == 3

    with pytest.raises(ValueError, match="jql"):
        await provider.actions.execute_action(CONNECTION, "search_issues", {}, {})
