"""Command line interface for relayflow."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from relayflow.config import load_config
from relayflow.definitions import load_workflow_definition
from relayflow.engine import build_engine
from relayflow.errors import NotFoundError, RelayflowError
from relayflow.models import Connection, WorkflowExecution
from relayflow.persistence import get_repository

app = typer.Typer(help="CLI for relayflow workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing and running workflows")
execution_app = typer.Typer(help="Commands for inspecting workflow executions")
connection_app = typer.Typer(help="Commands for managing service connections")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")
app.add_typer(connection_app, name="connection")


@app.callback()
def main() -> None:
    """Relayflow CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_json_option(value: Optional[str], option: str) -> dict:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        typer.secho(f"{option} is not valid JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(parsed, dict):
        typer.secho(f"{option} must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return parsed


def _echo_execution(execution: WorkflowExecution, with_actions: bool = True) -> None:
    typer.echo(
        f"Execution {execution.id} of workflow {execution.workflow_id}: "
        f"{execution.status.value}"
    )
    if execution.error:
        typer.echo(f"Error: {execution.error}")
    if not with_actions:
        return
    for action in execution.actions:
        line = f"- action {action.workflow_action_id}: {action.status.value}"
        if action.started_at or action.completed_at:
            line += f" ({action.started_at} -> {action.completed_at})"
        typer.echo(line)
        typer.echo(f"    input: {json.dumps(action.input_data)}")
        if action.output_data is not None:
            typer.echo(f"    output: {json.dumps(action.output_data)}")
        if action.error:
            typer.echo(f"    error: {action.error}")


# ----------------------------------------------------------------------
# Workflows
@workflow_app.command("import")
def workflow_import(definition: Path) -> None:
    """
    Store a workflow defined in a YAML file.

    Example:
        relayflow workflow import ./workflows/jira_to_slack.yaml
        # Output: Imported workflow 3: Jira issues to Slack
    """
    try:
        workflow = load_workflow_definition(definition)
    except (OSError, KeyError, ValueError) as exc:
        typer.secho(f"Invalid workflow definition: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    repo = get_repository()
    stored = asyncio.run(repo.create_workflow(workflow))
    typer.echo(f"Imported workflow {stored.id}: {stored.name}")


@workflow_app.command("list")
def workflow_list() -> None:
    """List stored workflows with their status and trigger."""
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(
            f"{wf.id}\t{wf.status}\t{wf.trigger_service}.{wf.trigger_id}\t{wf.name}"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: int) -> None:
    """
    Show a workflow's trigger, actions in execution order and data mappings.

    Example:
        relayflow workflow show 3
        # Output: Workflow 3: Jira issues to Slack (active)
        #         Trigger: jira.issue_created
        #         1. slack.post_message
        #         Mapping: jira.summary -> slack.text
    """
    repo = get_repository()
    wf = asyncio.run(repo.get_workflow(workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.id}: {wf.name} ({wf.status})")
    typer.echo(f"Trigger: {wf.trigger_service}.{wf.trigger_id}")
    for action in wf.actions:
        typer.echo(f"{action.position}. {action.action_service}.{action.action_id}")
    for mapping in wf.data_mappings:
        line = (
            f"Mapping: {mapping.source_service}.{mapping.source_field} -> "
            f"{mapping.target_service}.{mapping.target_field}"
        )
        if mapping.transformer:
            line += f" [{mapping.transformer}]"
        typer.echo(line)


@workflow_app.command("validate")
def workflow_validate(workflow_id: int) -> None:
    """Check a workflow against the registered providers and transformers."""
    config = load_config()
    engine = build_engine(get_repository(), config)

    async def _validate() -> None:
        workflow = await engine.get_workflow(workflow_id)
        engine.validate_workflow(workflow)

    try:
        asyncio.run(_validate())
    except RelayflowError as exc:
        typer.secho(f"Invalid: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {workflow_id} is valid")


@workflow_app.command("execute")
def workflow_execute(
    workflow_id: int,
    payload: str = typer.Option("{}", help="Trigger payload as a JSON object"),
    wait: bool = typer.Option(True, help="Wait for the pipeline to finish"),
) -> None:
    """
    Run a workflow with the given trigger payload.

    The execution record is created immediately. With ``--wait`` (the
    default) the command also waits for every action to finish and prints
    the per-action history. With ``--no-wait`` only the final status line
    is printed.

    Example:
        relayflow workflow execute 3 --payload '{"summary": "Server down"}'
        # Output: Execution 12 of workflow 3: completed
        #         - action 7: completed (...)
    """
    config = load_config()
    engine = build_engine(get_repository(), config)

    async def _execute() -> WorkflowExecution:
        execution = await engine.execute_workflow(workflow_id, payload)
        if wait:
            return await engine.wait_for_execution(execution.id)
        # shutdown lets the run finish, so report the stored outcome
        await engine.shutdown()
        return await engine.get_execution(execution.id)

    try:
        execution = asyncio.run(_execute())
    except NotFoundError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except RelayflowError as exc:
        typer.secho(f"Execution rejected: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _echo_execution(execution, with_actions=wait)


# ----------------------------------------------------------------------
# Executions
@execution_app.command("list")
def execution_list(workflow_id: int) -> None:
    """List executions of a workflow."""
    repo = get_repository()
    executions = asyncio.run(repo.list_executions(workflow_id))
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(
            f"{execution.id}\t{execution.status.value}\t{execution.started_at}"
            f"\t{execution.error or ''}"
        )


@execution_app.command("show")
def execution_show(execution_id: int) -> None:
    """Show an execution with its per-action history."""
    repo = get_repository()
    execution = asyncio.run(repo.get_execution(execution_id))
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    _echo_execution(execution)


# ----------------------------------------------------------------------
# Connections
@connection_app.command("add")
def connection_add(
    user: int = typer.Option(..., help="Owning user id"),
    service: str = typer.Option(..., help="Service name, e.g. slack"),
    auth: str = typer.Option(..., help="Auth data as a JSON object"),
    name: str = typer.Option("", help="Display name"),
    metadata: Optional[str] = typer.Option(None, help="Metadata as a JSON object"),
) -> None:
    """Store an active connection for a user and service."""
    connection = Connection(
        user_id=user,
        service=service,
        name=name or service,
        auth_data=_parse_json_option(auth, "--auth"),
        metadata=_parse_json_option(metadata, "--metadata"),
    )
    repo = get_repository()
    stored = asyncio.run(repo.create_connection(connection))
    typer.echo(f"Added connection {stored.id} for user {user} ({service})")


@connection_app.command("list")
def connection_list(user: int) -> None:
    """List a user's connections; credentials are not printed."""
    repo = get_repository()
    connections = asyncio.run(repo.list_connections(user))
    if not connections:
        typer.echo("No connections found")
        return
    for c in connections:
        typer.echo(f"{c.id}\t{c.service}\t{c.status}\t{c.name}\t{c.last_used_at or '-'}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
