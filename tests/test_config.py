from __future__ import annotations

import pytest
from pydantic import ValidationError

from uptime_monitor.config import ServiceConfig, load_config, parse_hhmm


def test_parse_hhmm() -> None:
    assert parse_hhmm("00:05") == (0, 5)
    assert parse_hhmm(" 23:59 ") == (23, 59)


@pytest.mark.parametrize("raw", ["", "24:00", "12:60", "1205", "aa:bb", None])
def test_parse_hhmm_rejects(raw) -> None:
    with pytest.raises(ValueError):
        parse_hhmm(raw)


def test_defaults() -> None:
    cfg = ServiceConfig()
    assert cfg.default_timeout_seconds == 30
    assert cfg.agent_stale_multiplier == 5
    assert cfg.daily_rollup_time == "00:05"
    assert cfg.metrics_retention_hours == 24


def test_validators() -> None:
    with pytest.raises(ValidationError):
        ServiceConfig(daily_rollup_time="25:00")
    with pytest.raises(ValidationError):
        ServiceConfig(metrics_prune_every_hours=0)


def test_load_config_file_then_env(tmp_path, monkeypatch) -> None:
    path = tmp_path / "uptime.yaml"
    path.write_text("db_path: /tmp/from-file.db\napi_port: 9000\nnotification_timezone: Europe/Amsterdam\n")
    monkeypatch.setenv("UPTIME_MONITOR_API_PORT", "9100")
    monkeypatch.setenv("UPTIME_MONITOR_SCHEDULER_ENABLED", "off")
    monkeypatch.delenv("UPTIME_MONITOR_DB_PATH", raising=False)
    monkeypatch.delenv("UPTIME_MONITOR_TIMEZONE", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    cfg = load_config(str(path))
    assert cfg.db_path == "/tmp/from-file.db"
    assert cfg.api_port == 9100
    assert cfg.scheduler_enabled is False
    assert cfg.notification_timezone == "Europe/Amsterdam"


def test_load_config_missing_file_uses_defaults(tmp_path, monkeypatch) -> None:
    for name in ("UPTIME_MONITOR_DB_PATH", "UPTIME_MONITOR_API_PORT", "UPTIME_MONITOR_SCHEDULER_ENABLED", "UPTIME_MONITOR_TIMEZONE", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg == ServiceConfig()
