from datetime import date

import pytest

from relayflow.errors import PersistenceFailedError
from relayflow.models import (
    Connection,
    DataMapping,
    ExecutionStatus,
    Workflow,
    WorkflowAction,
)
from relayflow.persistence import InMemoryWorkflowRepository, SQLiteWorkflowRepository


def _workflow() -> Workflow:
    return Workflow(
        user_id=7,
        name="Jira issues to Slack",
        description="notify ops",
        trigger_service="jira",
        trigger_id="issue_created",
        trigger_config={"site_name": "acme", "project_key": "OPS"},
        actions=[
            WorkflowAction(
                action_service="slack",
                action_id="add_reaction",
                action_config={"channel": "C1", "name": "eyes"},
                position=2,
            ),
            WorkflowAction(
                action_service="slack",
                action_id="post_message",
                action_config={"channel": "C1"},
                position=1,
            ),
        ],
        data_mappings=[
            DataMapping(
                source_service="jira",
                source_field="summary",
                target_service="slack",
                target_field="text",
                transformer="trim",
            )
        ],
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryWorkflowRepository()
    else:
        repo = SQLiteWorkflowRepository(tmp_path / "wf.db")
        yield repo
        repo.close()


@pytest.mark.asyncio
async def test_workflow_crud(store):
    created = await store.create_workflow(_workflow())

    assert created.id is not None
    assert created.created_at is not None
    assert [a.position for a in created.actions] == [1, 2]
    assert all(a.id is not None and a.workflow_id == created.id for a in created.actions)

    wf = await store.get_workflow(created.id)
    assert wf is not None
    assert wf.name == "Jira issues to Slack"
    assert wf.trigger_config == {"site_name": "acme", "project_key": "OPS"}
    assert [a.action_id for a in wf.actions] == ["post_message", "add_reaction"]
    assert wf.actions[1].action_config == {"channel": "C1", "name": "eyes"}
    assert wf.data_mappings[0].transformer == "trim"

    listed = await store.list_workflows()
    assert [w.id for w in listed] == [created.id]
    assert await store.get_workflow(999) is None


@pytest.mark.asyncio
async def test_execution_lifecycle(store):
    wf = await store.create_workflow(_workflow())

    execution = await store.create_execution(wf.id, '{"summary": "x"}', ExecutionStatus.RUNNING)
    assert execution.status == ExecutionStatus.RUNNING
    assert execution.started_at is not None

    first = await store.create_action_execution(execution.id, wf.actions[0].id, {"text": "x"})
    await store.complete_action_execution(
        first.id, ExecutionStatus.COMPLETED, output_data={"ts": "1.0"}
    )
    second = await store.create_action_execution(execution.id, wf.actions[1].id, {})
    await store.complete_action_execution(second.id, ExecutionStatus.FAILED, error="boom")
    await store.complete_execution(execution.id, ExecutionStatus.FAILED, "boom")

    loaded = await store.get_execution(execution.id)
    assert loaded.status == ExecutionStatus.FAILED
    assert loaded.error == "boom"
    assert loaded.trigger_data == '{"summary": "x"}'
    assert loaded.completed_at is not None
    assert [a.id for a in loaded.actions] == [first.id, second.id]
    assert loaded.actions[0].input_data == {"text": "x"}
    assert loaded.actions[0].output_data == {"ts": "1.0"}
    assert loaded.actions[1].output_data is None
    assert loaded.actions[1].error == "boom"

    executions = await store.list_executions(wf.id)
    assert [e.id for e in executions] == [execution.id]
    assert await store.get_execution(999) is None


@pytest.mark.asyncio
async def test_terminal_status_is_final(store):
    wf = await store.create_workflow(_workflow())
    execution = await store.create_execution(wf.id, "{}", ExecutionStatus.RUNNING)
    action = await store.create_action_execution(execution.id, wf.actions[0].id, {})

    await store.complete_action_execution(action.id, ExecutionStatus.COMPLETED, {"a": 1})
    await store.complete_action_execution(action.id, ExecutionStatus.FAILED, error="late")
    await store.complete_execution(execution.id, ExecutionStatus.COMPLETED)
    await store.complete_execution(execution.id, ExecutionStatus.FAILED, "late")

    loaded = await store.get_execution(execution.id)
    assert loaded.status == ExecutionStatus.COMPLETED
    assert loaded.error is None
    assert loaded.actions[0].status == ExecutionStatus.COMPLETED
    assert loaded.actions[0].output_data == {"a": 1}


@pytest.mark.asyncio
async def test_connections_listed_per_user(store):
    await store.create_connection(
        Connection(user_id=1, service="slack", auth_data={"access_token": "a"})
    )
    await store.create_connection(
        Connection(
            user_id=1,
            service="jira",
            auth_data={"access_token": "b"},
            metadata={"base_url": "https://acme.atlassian.net"},
        )
    )
    await store.create_connection(
        Connection(user_id=2, service="slack", auth_data={"access_token": "c"})
    )

    mine = await store.list_connections(1)
    assert sorted(c.service for c in mine) == ["jira", "slack"]
    jira = next(c for c in mine if c.service == "jira")
    assert jira.metadata == {"base_url": "https://acme.atlassian.net"}
    assert jira.auth_data == {"access_token": "b"}


@pytest.mark.asyncio
async def test_sqlite_rejects_unencodable_data_and_unknown_actions(tmp_path):
    repo = SQLiteWorkflowRepository(tmp_path / "wf.db")
    wf = await repo.create_workflow(_workflow())
    execution = await repo.create_execution(wf.id, "{}", ExecutionStatus.RUNNING)

    with pytest.raises(PersistenceFailedError):
        await repo.create_action_execution(execution.id, wf.actions[0].id, {"x": object()})
    with pytest.raises(PersistenceFailedError):
        await repo.create_action_execution(execution.id, 999, {})
    repo.close()


@pytest.mark.asyncio
async def test_sqlite_data_survives_reopen(tmp_path):
    path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(path)
    wf = await repo.create_workflow(_workflow())
    execution = await repo.create_execution(wf.id, "{}", ExecutionStatus.RUNNING)
    await repo.complete_execution(execution.id, ExecutionStatus.COMPLETED)
    repo.close()

    reopened = SQLiteWorkflowRepository(path)
    loaded = await reopened.get_workflow(wf.id)
    assert loaded.name == wf.name
    assert len(loaded.actions) == 2
    assert (await reopened.get_execution(execution.id)).status == ExecutionStatus.COMPLETED
    reopened.close()


@pytest.mark.asyncio
async def test_in_memory_store_returns_copies():
    repo = InMemoryWorkflowRepository()
    wf = await repo.create_workflow(_workflow())

    wf.actions[0].action_config["channel"] = "changed"
    loaded = await repo.get_workflow(wf.id)

    assert loaded.actions[0].action_config["channel"] == "C1"


@pytest.mark.asyncio
async def test_sqlite_failed_workflow_insert_leaves_nothing_behind(tmp_path):
    path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(path)
    bad = _workflow()
    bad.actions[0].action_config["due"] = date(2024, 1, 1)

    with pytest.raises(PersistenceFailedError):
        await repo.create_workflow(bad)
    # an unrelated write commits afterwards
    await repo.create_connection(
        Connection(user_id=1, service="slack", auth_data={"access_token": "a"})
    )
    assert await repo.list_workflows() == []

    good = await repo.create_workflow(_workflow())
    repo.close()

    reopened = SQLiteWorkflowRepository(path)
    assert [w.id for w in await reopened.list_workflows()] == [good.id]
    assert len((await reopened.get_workflow(good.id)).actions) == 2
    reopened.close()
