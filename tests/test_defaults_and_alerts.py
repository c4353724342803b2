from __future__ import annotations

from uptime_monitor import db as dbm
from uptime_monitor.alerts import build_agent_variables, build_monitor_variables, format_time
from uptime_monitor.defaults import create_default_notification_settings_for_user
from uptime_monitor.models import Agent, CheckResult, Monitor


def test_seed_defaults_for_new_user(config) -> None:
    assert create_default_notification_settings_for_user(config, 7) is True

    templates = dbm.list_notification_templates(config, user_id=7)
    assert sorted((t.type, t.is_default) for t in templates) == [("agent", True), ("monitor", True)]

    channels = dbm.list_notification_channels(config, user_id=7)
    assert len(channels) == 1
    assert channels[0].type == "telegram"
    assert channels[0].enabled is False
    assert "botToken" in channels[0].config

    monitor_row = dbm.get_global_settings(config, user_id=7, target_type="monitor")
    agent_row = dbm.get_global_settings(config, user_id=7, target_type="agent")
    assert monitor_row is not None and agent_row is not None
    assert monitor_row.enabled is False and agent_row.enabled is False
    assert (monitor_row.cpu_threshold, monitor_row.memory_threshold, monitor_row.disk_threshold) == (90, 85, 90)
    assert monitor_row.on_cpu_threshold is False
    assert (agent_row.cpu_threshold, agent_row.memory_threshold, agent_row.disk_threshold) == (80, 80, 90)
    assert agent_row.on_cpu_threshold and agent_row.on_memory_threshold and agent_row.on_disk_threshold
    assert monitor_row.channels == f"[{channels[0].id}]"


def test_seed_defaults_logs_and_returns_false(config, monkeypatch) -> None:
    def _boom(*args, **kwargs):
        raise RuntimeError("read-only database")

    monkeypatch.setattr(dbm, "create_notification_template", _boom)
    assert create_default_notification_settings_for_user(config, 7) is False


def test_monitor_variables_down_and_up() -> None:
    monitor = Monitor(id=1, name="web", url="https://web.example.org", expected_status=2)
    down = CheckResult(status="down", previous_status="up", response_time=0, status_code=None, error=None, checked_at_ts=0.0)
    v = build_monitor_variables(monitor, down, "up")
    assert v["error"] == "Service unreachable 🔴"
    assert v["status_code"] == "n/a"
    assert v["expected_status"] == "2"
    assert v["response_time"] == "0ms"
    assert v["time"] == "1970-01-01 00:00:00"
    assert v["details"].splitlines() == [
        "URL: https://web.example.org",
        "Response time: 0ms",
        "Status code: n/a",
        "Error: none",
    ]

    up = CheckResult(status="up", previous_status="down", response_time=42, status_code=200, error=None, checked_at_ts=0.0)
    v = build_monitor_variables(monitor, up, "down")
    assert v["error"] == "Service recovered 🟢"
    assert v["status_code"] == "200"
    assert v["previous_status"] == "down"


def test_agent_variables_fill_unknowns() -> None:
    agent = Agent(id=3, name="box", ip_addresses=["10.0.0.1", " ", "10.0.0.2"])
    v = build_agent_variables(agent, status="offline", previous_status="online", error="gone", now_ts=0.0)
    assert v["hostname"] == "unknown"
    assert v["ip_addresses"] == "10.0.0.1, 10.0.0.2"
    assert v["os"] == "unknown"
    assert "OS: unknown" in v["details"]


def test_format_time_uses_timezone_and_tolerates_bad_names() -> None:
    assert format_time(0.0, "Asia/Shanghai") == "1970-01-01 08:00:00"
    assert format_time(0.0, "Not/AZone") == "1970-01-01 00:00:00"
