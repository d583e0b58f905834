"""Configuration management for the collator monitor."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from collator_monitor.errors import ConfigurationError


DEFAULT_CHAINS_PATH = Path(__file__).with_name("chains.yaml")


class ChainConfig(BaseModel):
    """One monitored network."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Chain name used in reports")
    ws_url: str = Field(description="Node WebSocket RPC endpoint")
    gql_url: str = Field(description="Indexer GraphQL endpoint")
    ss58_prefix: int = Field(ge=0, le=16383, description="SS58 address prefix")

    @field_validator("ws_url")
    @classmethod
    def _check_ws_url(cls, value: str) -> str:
        if not value.startswith(("ws://", "wss://")):
            raise ValueError(f"ws_url must start with ws:// or wss://, got {value!r}")
        return value

    @field_validator("gql_url")
    @classmethod
    def _check_gql_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"gql_url must start with http:// or https://, got {value!r}")
        return value


class MonitorConfig(BaseModel):
    """Main configuration for the collator monitor."""
    model_config = ConfigDict(frozen=True)

    # Notification settings
    slack_webhook_token: str = Field(min_length=1, description="Slack incoming webhook token")

    # Classification settings
    slow_percentage: int = Field(default=75, ge=0, le=100, description="Percent of expected blocks below which a collator is slow")
    window_hours: int = Field(default=24, gt=0, description="Trailing window analyzed on each pass")
    block_time_seconds: int = Field(default=12, gt=0, description="Nominal block time")
    block_query_limit: int = Field(default=7200, gt=0, description="Maximum blocks fetched per chain")

    # Scheduling settings
    wait_time_days: int = Field(default=7, gt=0, description="Days to sleep between passes")
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout for each network call")
    log_level: str = Field(default="INFO", description="Logging level")

    chains: list[ChainConfig] = Field(min_length=1, description="Chains audited on each pass")

    @field_validator("chains")
    @classmethod
    def _check_unique_names(cls, value: list[ChainConfig]) -> list[ChainConfig]:
        names = [chain.name for chain in value]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate chain names: {', '.join(duplicates)}")
        return value

    @property
    def wait_time_seconds(self) -> float:
        return float(self.wait_time_days) * 24 * 60 * 60


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config YAML must be a mapping: {path}")
    return data


def load_config(config_path: Optional[str] = None) -> MonitorConfig:
    """Load configuration from the chain registry file and environment variables."""
    if config_path is None:
        config_path = os.getenv("COLLATOR_MONITOR_CONFIG") or str(DEFAULT_CHAINS_PATH)

    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        config_data = _read_yaml(path)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    # Override with environment variables
    env_overrides = {
        "slack_webhook_token": os.getenv("SLACK_WEBHOOK_TOKEN"),
        "slow_percentage": os.getenv("PERCENTAGE"),
        "wait_time_days": os.getenv("WAIT_TIME_DAYS"),
        "request_timeout_seconds": os.getenv("REQUEST_TIMEOUT_SECONDS"),
        "log_level": os.getenv("LOG_LEVEL"),
    }

    for key, value in env_overrides.items():
        if value is None or not value.strip():
            continue
        value = value.strip()
        try:
            if key in ["slow_percentage", "wait_time_days"]:
                value = int(value)
            elif key in ["request_timeout_seconds"]:
                value = float(value)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid value for {key}: {value!r}") from exc
        config_data[key] = value

    if not config_data.get("slack_webhook_token"):
        raise ConfigurationError("Slack webhook token is not defined (set SLACK_WEBHOOK_TOKEN)")

    try:
        return MonitorConfig(**config_data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
