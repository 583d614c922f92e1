from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel


class SlackConfig(BaseModel):
    """Settings for the Slack provider."""

    api_base_url: str = "https://slack.com/api"
    timeout_seconds: float = 30.0


class JiraConfig(BaseModel):
    """Settings for the Jira provider."""

    timeout_seconds: float = 30.0


class IntegrationsConfig(BaseModel):
    slack: SlackConfig = SlackConfig()
    jira: JiraConfig = JiraConfig()


class EngineConfig(BaseModel):
    """Execution engine settings."""

    action_timeout_seconds: Optional[float] = None


class RelayflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    engine: EngineConfig = EngineConfig()
    integrations: IntegrationsConfig = IntegrationsConfig()


def load_config(path: Optional[str] = None) -> RelayflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to RELAYFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("RELAYFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = RelayflowConfig(**data)
    else:
        config = RelayflowConfig()

    env_db_url = os.getenv("RELAYFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
