"""Configuration management for the uptime monitor service."""

import os
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


def _env_bool(raw: str, default: bool) -> bool:
    s = str(raw).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def parse_hhmm(value: Any) -> tuple[int, int]:
    """Parse an "HH:MM" wall-clock string into (hour, minute)."""
    s = str(value or "").strip()
    parts = s.split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid HH:MM value: {value!r}")
    try:
        hour = int(parts[0])
        minute = int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid HH:MM value: {value!r}") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid HH:MM value: {value!r}")
    return hour, minute


class ServiceConfig(BaseModel):
    """Main configuration for the uptime monitor service."""

    # Storage
    db_path: str = Field(default="data/uptime-monitor.db", description="Path to the sqlite database")
    log_level: str = Field(default="INFO", description="Logging level")

    # Probing
    default_timeout_seconds: int = Field(default=30, description="Probe timeout when a monitor has none")
    check_concurrency: int = Field(default=25, description="Max concurrent probes per tick")

    # Agents
    default_keepalive_seconds: int = Field(default=60, description="Keepalive when an agent reports none")
    agent_stale_multiplier: int = Field(default=5, description="Missed keepalives before an agent is offline")

    # Notifications
    channel_timeout_seconds: float = Field(default=15.0, description="Timeout for provider calls")
    notification_timezone: str = Field(default="UTC", description="Timezone used for the ${time} variable")

    # Scheduling (UTC)
    scheduler_enabled: bool = Field(default=True, description="Run ticks from the in-process scheduler")
    monitor_tick_cron: str = Field(default="* * * * *", description="Cron expression for the monitor tick")
    agent_tick_cron: str = Field(default="* * * * *", description="Cron expression for the agent tick")
    daily_rollup_time: str = Field(default="00:05", description="UTC time of the daily rollup pass")
    metrics_retention_hours: int = Field(default=24, description="Hours of agent metrics to keep")
    metrics_prune_every_hours: int = Field(default=6, description="Hour stride of the metrics prune pass")
    metrics_prune_minute: int = Field(default=5, description="Minute of the hour the metrics prune runs")

    # API
    api_host: str = Field(default="0.0.0.0", description="Bind host for the HTTP API")
    api_port: int = Field(default=8080, description="Bind port for the HTTP API")

    @field_validator("daily_rollup_time")
    @classmethod
    def _check_rollup_time(cls, value: str) -> str:
        parse_hhmm(value)
        return value

    @field_validator("metrics_prune_every_hours")
    @classmethod
    def _check_prune_stride(cls, value: int) -> int:
        if value < 1:
            raise ValueError("metrics_prune_every_hours must be >= 1")
        return value


def load_config(config_path: Optional[str] = None) -> ServiceConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("UPTIME_MONITOR_CONFIG", "config/uptime-monitor.yaml")

    config_data: dict[str, Any] = {}

    # Load from file if exists
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    # Override with environment variables
    env_overrides = {
        "db_path": os.getenv("UPTIME_MONITOR_DB_PATH"),
        "log_level": os.getenv("LOG_LEVEL"),
        "notification_timezone": os.getenv("UPTIME_MONITOR_TIMEZONE"),
        "scheduler_enabled": os.getenv("UPTIME_MONITOR_SCHEDULER_ENABLED"),
        "api_port": os.getenv("UPTIME_MONITOR_API_PORT"),
    }

    for key, value in env_overrides.items():
        if value is not None:
            if key in ["api_port"]:
                value = int(value)
            elif key in ["scheduler_enabled"]:
                value = _env_bool(value, True)
            config_data[key] = value

    return ServiceConfig(**config_data)


def get_config() -> ServiceConfig:
    """Get the process configuration."""
    return load_config()
