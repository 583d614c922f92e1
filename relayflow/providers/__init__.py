"""Service provider registry and built-in integrations."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Dict, Optional

from ..config import RelayflowConfig
from ..errors import ProviderNotFoundError
from .base import (
    ActionHandler,
    ActionResult,
    ActionType,
    AuthHandler,
    ServiceProvider,
    TokenAuthHandler,
    TriggerHandler,
    TriggerType,
)
from .jira import JiraProvider
from .slack import SlackProvider

if TYPE_CHECKING:
    from ..engine import WorkflowEngine

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps service names to providers.

    Registering a provider under a name that is already taken replaces the
    previous one. Providers normally register once at startup, but the lock
    keeps runtime registration safe for concurrent readers.
    """

    def __init__(self) -> None:
        self._providers: Dict[str, ServiceProvider] = {}
        self._lock = threading.Lock()

    def register(self, provider: ServiceProvider) -> None:
        with self._lock:
            self._providers[provider.service] = provider
        logger.info(f"Registered service provider {provider.service}")

    def get(self, name: str) -> ServiceProvider:
        with self._lock:
            provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotFoundError(name)
        return provider

    def services(self) -> list[str]:
        with self._lock:
            return sorted(self._providers)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._providers


def register_builtin_providers(
    engine: "WorkflowEngine", config: Optional[RelayflowConfig] = None
) -> None:
    """Register the bundled Slack and Jira providers on ``engine``."""

    config = config or RelayflowConfig()
    engine.register_service_provider(SlackProvider(config.integrations.slack))
    engine.register_service_provider(JiraProvider(config.integrations.jira))


__all__ = [
    "ActionHandler",
    "ActionResult",
    "ActionType",
    "AuthHandler",
    "JiraProvider",
    "ProviderRegistry",
    "ServiceProvider",
    "SlackProvider",
    "TokenAuthHandler",
    "TriggerHandler",
    "TriggerType",
    "register_builtin_providers",
]
