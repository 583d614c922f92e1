"""Example: forward new Jira issues to a Slack channel.

Stores a workflow and a Slack connection in a local SQLite file, then runs
the workflow once with a sample ``issue_created`` payload. Set
``SLACK_TOKEN`` to a bot token and ``SLACK_CHANNEL`` to a channel id to post
for real.
"""

import asyncio
import logging
import os

from relayflow import build_engine, load_config, workflow_from_definition
from relayflow.models import Connection
from relayflow.persistence import get_repository

DEFINITION = {
    "name": "Jira issues to Slack",
    "user_id": 1,
    "trigger": {
        "service": "jira",
        "trigger_id": "issue_created",
        "config": {"site_name": "acme", "project_key": "OPS"},
    },
    "actions": [
        {
            "service": "slack",
            "action_id": "post_message",
            "config": {"channel": os.getenv("SLACK_CHANNEL", "C0123456789")},
        }
    ],
    "mappings": [
        {
            "source_service": "jira",
            "source_field": "summary",
            "target_service": "slack",
            "target_field": "text",
            "transformer": "trim",
        }
    ],
}


async def main():
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())

    repo = get_repository(config.database_url or "sqlite://relayflow-example.db")
    engine = build_engine(repo, config)

    await repo.create_connection(
        Connection(
            user_id=1,
            service="slack",
            name="example bot",
            auth_data={"access_token": os.getenv("SLACK_TOKEN", "xoxb-example")},
        )
    )
    workflow = await repo.create_workflow(workflow_from_definition(DEFINITION))

    execution = await engine.execute_workflow(
        workflow.id, {"summary": "  Server down  ", "priority": "high"}
    )
    result = await engine.wait_for_execution(execution.id)

    print(f"Execution {result.id}: {result.status.value}")
    for action in result.actions:
        print(f"  input={action.input_data} output={action.output_data} error={action.error}")


if __name__ == "__main__":
    asyncio.run(main())
