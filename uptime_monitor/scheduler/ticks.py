"""Periodic monitor and agent passes.

Both ticks isolate failures per target: one monitor or agent raising never stops the others,
and a tick always returns a TickSummary instead of raising.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog

from uptime_monitor import db as dbm
from uptime_monitor.alerts import notify_agent_offline, notify_monitor_transition
from uptime_monitor.config import ServiceConfig, parse_hhmm
from uptime_monitor.history import compute_daily_rollup, group_by_monitor
from uptime_monitor.models import Agent, CheckResult, Monitor, RollupSummary, TickSummary
from uptime_monitor.probe import check_monitor

if TYPE_CHECKING:
    from uptime_monitor.runtime import Runtime


logger = structlog.get_logger(__name__)


def _utc_now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def is_daily_rollup_due(config: ServiceConfig, now: datetime) -> bool:
    hour, minute = parse_hhmm(config.daily_rollup_time)
    now = _utc_now(now)
    return now.hour == hour and now.minute == minute


def is_metrics_prune_due(config: ServiceConfig, now: datetime) -> bool:
    now = _utc_now(now)
    return now.hour % int(config.metrics_prune_every_hours) == 0 and now.minute == int(config.metrics_prune_minute)


def _day_bounds(day: date) -> tuple[float, float]:
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return start.timestamp(), (start + timedelta(days=1)).timestamp()


def generate_daily_stats(config: ServiceConfig, day: date) -> RollupSummary:
    """
    Roll one UTC day of short-retention check history into monitor_daily_stats, then delete
    the source rows for that day.
    """
    since_ts, until_ts = _day_bounds(day)
    rows = dbm.list_monitor_status_history(config, since_ts=since_ts, until_ts=until_ts)
    by_monitor = group_by_monitor(rows)

    for monitor_id, items in sorted(by_monitor.items()):
        rollup = compute_daily_rollup(items, monitor_id=monitor_id, date=day.isoformat())
        dbm.insert_monitor_daily_stats(config, rollup=rollup)

    deleted = dbm.delete_monitor_status_history(config, since_ts=since_ts, until_ts=until_ts)
    logger.info("daily_stats_generated", date=day.isoformat(), monitors=len(by_monitor), rows=len(rows), deleted=deleted)
    return RollupSummary(date=day.isoformat(), monitors=len(by_monitor), rows_aggregated=len(rows), rows_deleted=deleted)


def prune_agent_metrics(config: ServiceConfig, now: datetime) -> int:
    cutoff = _utc_now(now) - timedelta(hours=int(config.metrics_retention_hours))
    deleted = dbm.prune_agent_metrics(config, before_ts=cutoff.timestamp())
    logger.info("agent_metrics_pruned", before=cutoff.isoformat(), deleted=deleted)
    return deleted


async def _check_and_notify(runtime: Runtime, monitor: Monitor) -> tuple[CheckResult, bool]:
    result = await check_monitor(runtime.config, runtime.http_client, monitor)
    previous = result.previous_status or "unknown"
    if result.status == previous:
        return result, False
    sent = await notify_monitor_transition(runtime, monitor, result, previous)
    return result, sent is not None


async def run_monitor_tick(runtime: Runtime, now: datetime | None = None) -> TickSummary:
    config = runtime.config
    now = _utc_now(now)
    housekeeping: dict[str, Any] = {}

    try:
        monitors = await asyncio.to_thread(dbm.get_monitors_to_check, config, now_ts=now.timestamp())
    except Exception as e:
        logger.exception("monitor_tick_load_failed")
        return TickSummary(success=False, checked=0, message=f"Failed to load monitors: {e}")

    sem = asyncio.Semaphore(max(1, int(config.check_concurrency)))

    async def _safe(monitor: Monitor) -> tuple[bool, bool]:
        async with sem:
            try:
                _result, notified = await _check_and_notify(runtime, monitor)
                return True, notified
            except Exception:
                logger.exception("monitor_check_failed", monitor_id=monitor.id)
                return False, False

    outcomes = await asyncio.gather(*[_safe(m) for m in monitors])
    checked = sum(1 for ok, _ in outcomes if ok)
    failed = len(outcomes) - checked
    notified = sum(1 for _, n in outcomes if n)

    if is_daily_rollup_due(config, now):
        day = (now - timedelta(days=1)).date()
        try:
            summary = await asyncio.to_thread(generate_daily_stats, config, day)
            housekeeping["daily_stats"] = {
                "date": summary.date,
                "monitors": summary.monitors,
                "rows_deleted": summary.rows_deleted,
            }
        except Exception as e:
            logger.exception("daily_stats_failed", date=day.isoformat())
            housekeeping["daily_stats"] = {"date": day.isoformat(), "error": str(e)}

    logger.info("monitor_tick_done", due=len(monitors), checked=checked, failed=failed, notified=notified)
    return TickSummary(
        success=True,
        checked=checked,
        notified=notified,
        failed=failed,
        message=f"Checked {checked} of {len(monitors)} due monitors",
        housekeeping=housekeeping,
    )


def is_agent_stale(config: ServiceConfig, agent: Agent, now_ts: float) -> bool:
    keepalive = int(agent.keepalive or config.default_keepalive_seconds)
    return (float(now_ts) - float(agent.updated_at_ts)) > keepalive * int(config.agent_stale_multiplier)


async def run_agent_tick(runtime: Runtime, now: datetime | None = None) -> TickSummary:
    config = runtime.config
    now = _utc_now(now)
    now_ts = now.timestamp()
    housekeeping: dict[str, Any] = {}

    try:
        agents = await asyncio.to_thread(dbm.get_active_agents, config)
    except Exception as e:
        logger.exception("agent_tick_load_failed")
        return TickSummary(success=False, checked=0, message=f"Failed to load agents: {e}")

    offline = 0
    notified = 0
    failed = 0
    for agent in agents:
        try:
            if not is_agent_stale(config, agent, now_ts):
                continue
            flipped = await asyncio.to_thread(
                dbm.set_agent_inactive, config, agent_id=agent.id, seen_updated_at_ts=agent.updated_at_ts
            )
            if not flipped:
                continue
            offline += 1
            logger.info("agent_marked_offline", agent_id=agent.id, last_seen_ts=agent.updated_at_ts)
            sent = await notify_agent_offline(runtime, agent)
            if sent is not None:
                notified += 1
        except Exception:
            failed += 1
            logger.exception("agent_check_failed", agent_id=agent.id)

    if is_metrics_prune_due(config, now):
        try:
            housekeeping["metrics_pruned"] = await asyncio.to_thread(prune_agent_metrics, config, now)
        except Exception as e:
            logger.exception("agent_metrics_prune_failed")
            housekeeping["metrics_pruned"] = {"error": str(e)}

    logger.info("agent_tick_done", active=len(agents), offline=offline, notified=notified, failed=failed)
    return TickSummary(
        success=True,
        checked=len(agents),
        notified=notified,
        failed=failed,
        message=f"Checked {len(agents)} active agents, {offline} went offline",
        housekeeping=housekeeping,
    )


async def manual_check_monitor(runtime: Runtime, monitor_id: int, user_id: int) -> CheckResult | None:
    """Re-check one monitor on demand. None when the monitor does not exist or belongs to another user."""
    monitor = await asyncio.to_thread(dbm.get_monitor, runtime.config, monitor_id=monitor_id, user_id=user_id)
    if monitor is None:
        return None
    result, _notified = await _check_and_notify(runtime, monitor)
    return result
