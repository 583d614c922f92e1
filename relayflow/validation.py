"""Pre-execution checks of workflow definitions."""

from __future__ import annotations

from .errors import (
    InvalidActionConfigError,
    InvalidTriggerConfigError,
    UnknownTransformerError,
)
from .mapping import TransformerRegistry
from .models import Workflow
from .providers import ProviderRegistry


class WorkflowValidator:
    """Checks a workflow's trigger, actions and mappings against the registries."""

    def __init__(
        self, providers: ProviderRegistry, transformers: TransformerRegistry
    ) -> None:
        self._providers = providers
        self._transformers = transformers

    def validate(self, workflow: Workflow) -> None:
        trigger_provider = self._providers.get(workflow.trigger_service)
        try:
            trigger_provider.triggers.validate_trigger_config(
                workflow.trigger_id, workflow.trigger_config
            )
        except ValueError as exc:
            raise InvalidTriggerConfigError(
                f"invalid trigger configuration for "
                f"{workflow.trigger_service}.{workflow.trigger_id}: {exc}"
            ) from exc

        for action in workflow.actions:
            action_provider = self._providers.get(action.action_service)
            try:
                action_provider.actions.validate_action_config(
                    action.action_id, action.action_config
                )
            except ValueError as exc:
                raise InvalidActionConfigError(
                    f"invalid action configuration for "
                    f"{action.action_service}.{action.action_id} "
                    f"(position {action.position}): {exc}"
                ) from exc

        for mapping in workflow.data_mappings:
            if mapping.transformer and mapping.transformer not in self._transformers:
                raise UnknownTransformerError(mapping.transformer)
