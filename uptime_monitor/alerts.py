"""Notification handlers for monitor and agent events.

Each handler builds the template variables for its event, asks the policy engine whether
the user's settings authorize a send and hands the result to the dispatcher. Handlers log
their own failures and never raise into the caller.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

import structlog

from uptime_monitor import db as dbm
from uptime_monitor.models import (
    AGENT_OFFLINE,
    AGENT_ONLINE,
    STATUS_UP,
    TARGET_AGENT,
    TARGET_MONITOR,
    Agent,
    CheckResult,
    Monitor,
    SendResult,
)
from uptime_monitor.policy import should_notify, should_notify_threshold

if TYPE_CHECKING:
    from uptime_monitor.runtime import Runtime


logger = structlog.get_logger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
UNKNOWN = "unknown"


def format_time(ts: float | None, tz_name: str) -> str:
    try:
        tz = ZoneInfo(tz_name)
    except Exception:
        tz = timezone.utc
    if ts is None:
        dt = datetime.now(tz)
    else:
        dt = datetime.fromtimestamp(float(ts), tz)
    return dt.strftime(TIME_FORMAT)


def format_ip_addresses(ips: list[str] | None) -> str:
    items = [str(ip).strip() for ip in (ips or []) if str(ip).strip()]
    return ", ".join(items) if items else UNKNOWN


def build_monitor_variables(
    monitor: Monitor, result: CheckResult, previous_status: str, *, tz_name: str = "UTC"
) -> dict[str, str]:
    status_code = str(result.status_code) if result.status_code else "n/a"
    if result.status == STATUS_UP:
        error = "Service recovered 🟢"
    else:
        error = f"{result.error or 'Service unreachable'} 🔴"
    details = "\n".join(
        [
            f"URL: {monitor.url}",
            f"Response time: {result.response_time}ms",
            f"Status code: {status_code}",
            f"Error: {result.error or 'none'}",
        ]
    )
    return {
        "name": monitor.name,
        "status": result.status,
        "previous_status": previous_status,
        "time": format_time(result.checked_at_ts, tz_name),
        "url": monitor.url,
        "response_time": f"{result.response_time}ms",
        "status_code": status_code,
        "expected_status": str(monitor.expected_status),
        "error": error,
        "details": details,
    }


def build_agent_variables(
    agent: Agent,
    *,
    status: str,
    previous_status: str,
    error: str,
    tz_name: str = "UTC",
    extra_details: list[str] | None = None,
    now_ts: float | None = None,
) -> dict[str, str]:
    hostname = agent.hostname or UNKNOWN
    ips = format_ip_addresses(agent.ip_addresses)
    os_name = agent.os or UNKNOWN
    details = list(extra_details or [])
    details.extend([f"Hostname: {hostname}", f"IP addresses: {ips}", f"OS: {os_name}"])
    return {
        "name": agent.name,
        "status": status,
        "previous_status": previous_status,
        "time": format_time(now_ts, tz_name),
        "hostname": hostname,
        "ip_addresses": ips,
        "os": os_name,
        "error": error,
        "details": "\n".join(details),
    }


async def notify_monitor_transition(
    runtime: Runtime, monitor: Monitor, result: CheckResult, previous_status: str
) -> SendResult | None:
    """Send a monitor status-change notification. Returns None when nothing was sent."""
    if result.status == previous_status:
        return None
    try:
        decision = await should_notify(
            runtime.config,
            user_id=monitor.created_by,
            target_type=TARGET_MONITOR,
            target_id=monitor.id,
            prev_status=previous_status,
            current_status=result.status,
        )
        if not decision.should_send or not decision.channels:
            logger.info("monitor_transition_not_notified", monitor_id=monitor.id, status=result.status)
            return None

        variables = build_monitor_variables(
            monitor, result, previous_status, tz_name=runtime.config.notification_timezone
        )
        sent = await runtime.dispatcher.send(
            template_type=TARGET_MONITOR,
            target_id=monitor.id,
            variables=variables,
            channel_ids=decision.channels,
            user_id=monitor.created_by,
        )
        logger.info("monitor_transition_notified", monitor_id=monitor.id, success=sent.success)
        return sent
    except Exception:
        logger.exception("monitor_transition_notify_failed", monitor_id=monitor.id)
        return None


async def _notify_agent_transition(
    runtime: Runtime, agent: Agent, *, previous_status: str, status: str, error: str, extra_details: list[str]
) -> SendResult | None:
    try:
        decision = await should_notify(
            runtime.config,
            user_id=agent.created_by,
            target_type=TARGET_AGENT,
            target_id=agent.id,
            prev_status=previous_status,
            current_status=status,
        )
        if not decision.should_send or not decision.channels:
            logger.info("agent_transition_not_notified", agent_id=agent.id, status=status)
            return None

        variables = build_agent_variables(
            agent,
            status=status,
            previous_status=previous_status,
            error=error,
            tz_name=runtime.config.notification_timezone,
            extra_details=extra_details,
        )
        sent = await runtime.dispatcher.send(
            template_type=TARGET_AGENT,
            target_id=agent.id,
            variables=variables,
            channel_ids=decision.channels,
            user_id=agent.created_by,
        )
        logger.info("agent_transition_notified", agent_id=agent.id, status=status, success=sent.success)
        return sent
    except Exception:
        logger.exception("agent_transition_notify_failed", agent_id=agent.id, status=status)
        return None


async def notify_agent_offline(runtime: Runtime, agent: Agent) -> SendResult | None:
    # The stored record does not keep the pre-timeout status, so the previous state is taken as online.
    last_seen = format_time(agent.updated_at_ts, runtime.config.notification_timezone)
    return await _notify_agent_transition(
        runtime,
        agent,
        previous_status=AGENT_ONLINE,
        status=AGENT_OFFLINE,
        error="Agent connection timed out 🔴",
        extra_details=[f"Last seen: {last_seen}"],
    )


async def notify_agent_online(runtime: Runtime, agent: Agent) -> SendResult | None:
    recovered_at = format_time(None, runtime.config.notification_timezone)
    return await _notify_agent_transition(
        runtime,
        agent,
        previous_status=AGENT_OFFLINE,
        status=AGENT_ONLINE,
        error="Agent connection restored 🟢",
        extra_details=[f"Recovered at: {recovered_at}"],
    )


async def notify_agent_threshold(runtime: Runtime, agent_id: int, metric_type: str, value: float) -> SendResult | None:
    """Level-triggered: every sample at or above the threshold sends again."""
    try:
        agent = await asyncio.to_thread(dbm.get_agent, runtime.config, agent_id=agent_id)
        if agent is None:
            logger.warning("threshold_agent_missing", agent_id=agent_id)
            return None

        decision = await should_notify_threshold(
            runtime.config, user_id=agent.created_by, agent_id=agent.id, metric_type=metric_type, value=value
        )
        if not decision.should_send:
            return None

        metric_name = decision.metric_name
        threshold = decision.threshold
        logger.info(
            "agent_threshold_breached",
            agent_id=agent.id,
            metric=metric_type,
            value=round(float(value), 2),
            threshold=threshold,
        )
        variables: dict[str, Any] = build_agent_variables(
            agent,
            status=f"{metric_name} alert",
            previous_status="normal",
            error=f"{metric_name} ({float(value):.2f}%) exceeded threshold ({threshold:g}%)",
            tz_name=runtime.config.notification_timezone,
            extra_details=[f"{metric_name}: {float(value):.2f}%", f"Threshold: {threshold:g}%"],
        )
        return await runtime.dispatcher.send(
            template_type=TARGET_AGENT,
            target_id=agent.id,
            variables=variables,
            channel_ids=decision.channels,
            user_id=agent.created_by,
        )
    except Exception:
        logger.exception("agent_threshold_notify_failed", agent_id=agent_id, metric=metric_type)
        return None
