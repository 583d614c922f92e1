"""Load workflow definitions from YAML documents."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml

from .models import DataMapping, Workflow, WorkflowAction


def workflow_from_definition(data: Mapping[str, Any]) -> Workflow:
    """Build a :class:`Workflow` from a definition mapping.

    Expected shape::

        name: Jira issues to Slack
        user_id: 1
        trigger: {service: jira, trigger_id: issue_created, config: {...}}
        actions:
          - {service: slack, action_id: post_message, config: {...}}
        mappings:
          - {source_service: jira, source_field: summary,
             target_service: slack, target_field: text}

    Actions without an explicit ``position`` run in list order.
    """

    trigger = data.get("trigger") or {}
    if not trigger.get("service") or not trigger.get("trigger_id"):
        raise ValueError("workflow definition needs trigger.service and trigger.trigger_id")

    actions = [
        WorkflowAction(
            action_service=item["service"],
            action_id=item["action_id"],
            action_config=item.get("config") or {},
            position=item.get("position", index),
        )
        for index, item in enumerate(data.get("actions") or [], start=1)
    ]
    mappings = [DataMapping(**item) for item in data.get("mappings") or []]

    return Workflow(
        user_id=data["user_id"],
        name=data["name"],
        description=data.get("description", ""),
        status=data.get("status", "active"),
        trigger_service=trigger["service"],
        trigger_id=trigger["trigger_id"],
        trigger_config=trigger.get("config") or {},
        actions=actions,
        data_mappings=mappings,
    )


def load_workflow_definition(path: str | Path) -> Workflow:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a workflow mapping")
    return workflow_from_definition(data)
