from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from uptime_monitor import db as dbm
from uptime_monitor.ingest import ingest_agent_report
from uptime_monitor.runtime import build_runtime
from uptime_monitor.scheduler import ticks
from uptime_monitor.scheduler.ticks import (
    is_daily_rollup_due,
    is_metrics_prune_due,
    manual_check_monitor,
    prune_agent_metrics,
    run_agent_tick,
    run_monitor_tick,
)

FIXED_NOW = datetime(2026, 3, 10, 12, 30, tzinfo=timezone.utc)


def _transport(status_by_host: dict[str, int]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_by_host.get(request.url.host, 404), text="")

    return httpx.MockTransport(handler)


def _seed_notifications(config, *, user_id: int = 1, target_type: str = "global-monitor", **kw) -> int:
    for tpl_type in ("monitor", "agent"):
        dbm.create_notification_template(
            config,
            name=tpl_type,
            type=tpl_type,
            subject="${name} ${status}",
            content="${error}",
            is_default=True,
            created_by=user_id,
        )
    cid = dbm.create_notification_channel(config, name="rec", type="rec", channel_config={}, created_by=user_id)
    dbm.create_or_update_settings(config, user_id=user_id, target_type=target_type, channels=[cid], **kw)
    return cid


def _due_monitor(config, name: str, host: str, *, status: str | None) -> int:
    m = dbm.create_monitor(config, name=name, url=f"http://{host}/health", created_by=1)
    if status is not None:
        dbm.update_monitor_status(config, monitor_id=m.id, status=status, response_time=5, checked_at_ts=FIXED_NOW.timestamp() - 3600)
    return m.id


def test_rollup_and_prune_gates(config) -> None:
    assert is_daily_rollup_due(config, datetime(2026, 3, 10, 0, 5, tzinfo=timezone.utc)) is True
    assert is_daily_rollup_due(config, datetime(2026, 3, 10, 0, 6, tzinfo=timezone.utc)) is False
    assert is_daily_rollup_due(config, datetime(2026, 3, 10, 1, 5, tzinfo=timezone.utc)) is False

    assert is_metrics_prune_due(config, datetime(2026, 3, 10, 6, 5, tzinfo=timezone.utc)) is True
    assert is_metrics_prune_due(config, datetime(2026, 3, 10, 0, 5, tzinfo=timezone.utc)) is True
    assert is_metrics_prune_due(config, datetime(2026, 3, 10, 7, 5, tzinfo=timezone.utc)) is False
    assert is_metrics_prune_due(config, datetime(2026, 3, 10, 6, 6, tzinfo=timezone.utc)) is False


@pytest.mark.asyncio
async def test_unchanged_status_never_dispatches(config, recording_adapter) -> None:
    _seed_notifications(config)
    _due_monitor(config, "steady", "steady.test", status="up")
    adapter = recording_adapter()

    async with httpx.AsyncClient(transport=_transport({"steady.test": 200})) as client:
        runtime = build_runtime(config, client)
        runtime.registry.register("rec", adapter)
        summary = await run_monitor_tick(runtime, now=FIXED_NOW)

    assert summary.success is True
    assert summary.checked == 1
    assert summary.notified == 0
    assert adapter.calls == []
    assert dbm.list_notification_history(config)[0] == 0


@pytest.mark.asyncio
async def test_transition_dispatches_once(config, recording_adapter) -> None:
    _seed_notifications(config)
    mid = _due_monitor(config, "flaky", "flaky.test", status="up")
    adapter = recording_adapter()

    async with httpx.AsyncClient(transport=_transport({"flaky.test": 503})) as client:
        runtime = build_runtime(config, client)
        runtime.registry.register("rec", adapter)
        summary = await run_monitor_tick(runtime, now=FIXED_NOW)

        assert summary.notified == 1
        assert len(adapter.calls) == 1
        _cid, subject, body = adapter.calls[0]
        assert subject == "flaky down"
        assert body == "Unexpected status code: 503, expected: 200 🔴"

        # The status is now persisted as down and the monitor is not due again yet.
        stored = dbm.get_monitor(config, monitor_id=mid)
        assert stored is not None and stored.status == "down"
        again = await run_monitor_tick(runtime, now=datetime.now(timezone.utc))
        assert again.checked == 0
        assert len(adapter.calls) == 1


@pytest.mark.asyncio
async def test_first_check_up_does_not_notify(config, recording_adapter) -> None:
    _seed_notifications(config)
    _due_monitor(config, "fresh", "fresh.test", status=None)
    adapter = recording_adapter()

    async with httpx.AsyncClient(transport=_transport({"fresh.test": 200})) as client:
        runtime = build_runtime(config, client)
        runtime.registry.register("rec", adapter)
        summary = await run_monitor_tick(runtime, now=FIXED_NOW)

    assert summary.checked == 1
    assert adapter.calls == []


@pytest.mark.asyncio
async def test_one_failing_monitor_does_not_block_others(config, recording_adapter, monkeypatch) -> None:
    bad_id = _due_monitor(config, "bad", "bad.test", status="up")
    _due_monitor(config, "good", "good.test", status="up")

    real_check = ticks.check_monitor

    async def _check(cfg, client, monitor):
        if monitor.id == bad_id:
            raise RuntimeError("unexpected")
        return await real_check(cfg, client, monitor)

    monkeypatch.setattr(ticks, "check_monitor", _check)
    async with httpx.AsyncClient(transport=_transport({"good.test": 200})) as client:
        summary = await run_monitor_tick(build_runtime(config, client), now=FIXED_NOW)

    assert summary.success is True
    assert summary.checked == 1
    assert summary.failed == 1


@pytest.mark.asyncio
async def test_monitor_tick_runs_daily_rollup_at_0005(config) -> None:
    m = dbm.create_monitor(config, name="a", url="http://a.test/", created_by=1, active=False)
    ts = datetime(2026, 3, 9, 8, 0, tzinfo=timezone.utc).timestamp()
    dbm.insert_monitor_status_history(config, monitor_id=m.id, status="up", response_time=10, status_code=200, error=None, timestamp_ts=ts)

    async with httpx.AsyncClient(transport=_transport({})) as client:
        summary = await run_monitor_tick(build_runtime(config, client), now=datetime(2026, 3, 10, 0, 5, tzinfo=timezone.utc))

    assert summary.checked == 0
    assert summary.housekeeping["daily_stats"]["date"] == "2026-03-09"
    assert summary.housekeeping["daily_stats"]["rows_deleted"] == 1
    assert len(dbm.list_monitor_daily_stats(config, monitor_id=m.id)) == 1


@pytest.mark.asyncio
async def test_agent_staleness_boundary(config, recording_adapter) -> None:
    _seed_notifications(config, target_type="global-agent")
    now_ts = FIXED_NOW.timestamp()
    stale = dbm.create_agent(config, name="stale", created_by=1, keepalive=60, updated_at_ts=now_ts - 301)
    edge = dbm.create_agent(config, name="edge", created_by=1, keepalive=60, updated_at_ts=now_ts - 300)
    adapter = recording_adapter()

    async with httpx.AsyncClient(transport=_transport({})) as client:
        runtime = build_runtime(config, client)
        runtime.registry.register("rec", adapter)
        summary = await run_agent_tick(runtime, now=FIXED_NOW)

        assert summary.checked == 2
        assert summary.notified == 1
        assert dbm.get_agent(config, agent_id=stale.id).status == "inactive"
        assert dbm.get_agent(config, agent_id=edge.id).status == "active"
        assert [c[1] for c in adapter.calls] == ["stale offline"]

        # Already inactive agents are not looked at again.
        summary = await run_agent_tick(runtime, now=FIXED_NOW)
        assert summary.checked == 1
        assert len(adapter.calls) == 1


@pytest.mark.asyncio
async def test_heartbeat_after_tick_read_keeps_agent_online(config, recording_adapter, monkeypatch) -> None:
    _seed_notifications(config, target_type="global-agent")
    now_ts = FIXED_NOW.timestamp()
    agent = dbm.create_agent(config, name="late", created_by=1, keepalive=60, updated_at_ts=now_ts - 600)
    snapshot = dbm.get_active_agents(config)
    # The heartbeat lands after the tick has loaded its agent list.
    dbm.touch_agent(config, agent_id=agent.id, now_ts=now_ts)
    monkeypatch.setattr(dbm, "get_active_agents", lambda cfg: snapshot)
    adapter = recording_adapter()

    async with httpx.AsyncClient(transport=_transport({})) as client:
        runtime = build_runtime(config, client)
        runtime.registry.register("rec", adapter)
        summary = await run_agent_tick(runtime, now=FIXED_NOW)

    assert summary.notified == 0
    assert adapter.calls == []
    assert dbm.get_agent(config, agent_id=agent.id).status == "active"


@pytest.mark.asyncio
async def test_threshold_renotifies_on_every_report(config, recording_adapter) -> None:
    _seed_notifications(config, target_type="global-agent", on_cpu_threshold=True, cpu_threshold=90)
    agent = dbm.create_agent(config, name="box", created_by=1, hostname="box-1", ip_addresses=["10.0.0.5"])
    adapter = recording_adapter()

    async with httpx.AsyncClient(transport=_transport({})) as client:
        runtime = build_runtime(config, client)
        runtime.registry.register("rec", adapter)
        first = await ingest_agent_report(runtime, agent.id, cpu=95.0, memory=10.0)
        second = await ingest_agent_report(runtime, agent.id, cpu=95.0)

    assert first == {"revived": False, "threshold_notifications": 1}
    assert second == {"revived": False, "threshold_notifications": 1}
    assert len(adapter.calls) == 2
    assert adapter.calls[0][2] == "CPU usage (95.00%) exceeded threshold (90%)"
    assert dbm.count_agent_metrics(config, agent_id=agent.id) == 2


@pytest.mark.asyncio
async def test_report_revives_inactive_agent(config, recording_adapter) -> None:
    _seed_notifications(config, target_type="global-agent")
    agent = dbm.create_agent(config, name="box", created_by=1, status="inactive", updated_at_ts=0)
    adapter = recording_adapter()

    async with httpx.AsyncClient(transport=_transport({})) as client:
        runtime = build_runtime(config, client)
        runtime.registry.register("rec", adapter)
        out = await ingest_agent_report(runtime, agent.id, hostname="box-2", ip_addresses=["10.0.0.9"], os="linux")

    assert out["revived"] is True
    assert [c[1] for c in adapter.calls] == ["box online"]
    stored = dbm.get_agent(config, agent_id=agent.id)
    assert stored.status == "active"
    assert stored.hostname == "box-2"
    assert stored.ip_addresses == ["10.0.0.9"]


@pytest.mark.asyncio
async def test_report_for_unknown_agent_raises(config) -> None:
    async with httpx.AsyncClient(transport=_transport({})) as client:
        with pytest.raises(LookupError):
            await ingest_agent_report(build_runtime(config, client), 404, cpu=1.0)


def test_prune_agent_metrics_keeps_last_day(config) -> None:
    agent = dbm.create_agent(config, name="box", created_by=1)
    now_ts = FIXED_NOW.timestamp()
    dbm.insert_agent_metrics(config, agent_id=agent.id, timestamp_ts=now_ts - 25 * 3600, cpu_usage=1.0)
    dbm.insert_agent_metrics(config, agent_id=agent.id, timestamp_ts=now_ts - 3600, cpu_usage=2.0)

    assert prune_agent_metrics(config, FIXED_NOW) == 1
    assert dbm.count_agent_metrics(config, agent_id=agent.id) == 1


@pytest.mark.asyncio
async def test_manual_check_scoped_to_owner(config) -> None:
    m = dbm.create_monitor(config, name="mine", url="http://mine.test/", created_by=1)
    async with httpx.AsyncClient(transport=_transport({"mine.test": 200})) as client:
        runtime = build_runtime(config, client)
        assert await manual_check_monitor(runtime, 999, 1) is None
        assert await manual_check_monitor(runtime, m.id, 2) is None
        res = await manual_check_monitor(runtime, m.id, 1)
    assert res is not None
    assert res.status == "up"
