from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from uptime_monitor import db as dbm
from uptime_monitor.alerts import notify_agent_online, notify_agent_threshold
from uptime_monitor.models import AGENT_INACTIVE

if TYPE_CHECKING:
    from uptime_monitor.runtime import Runtime


logger = structlog.get_logger(__name__)


async def ingest_agent_report(
    runtime: Runtime,
    agent_id: int,
    *,
    cpu: float | None = None,
    memory: float | None = None,
    disk: float | None = None,
    hostname: str | None = None,
    ip_addresses: list[str] | None = None,
    os: str | None = None,
    now: float | None = None,
) -> dict[str, int | bool]:
    """
    Store one agent heartbeat with its metric sample and run the threshold checks.

    Raises LookupError when the agent does not exist.
    """
    config = runtime.config
    before = await asyncio.to_thread(
        dbm.touch_agent,
        config,
        agent_id=agent_id,
        now_ts=now,
        hostname=hostname,
        ip_addresses=ip_addresses,
        os_name=os,
    )
    if before is None:
        raise LookupError(f"Agent not found: {agent_id}")

    await asyncio.to_thread(
        dbm.insert_agent_metrics,
        config,
        agent_id=agent_id,
        timestamp_ts=now,
        cpu_usage=cpu,
        memory_usage=memory,
        disk_usage=disk,
    )

    revived = before.status == AGENT_INACTIVE
    if revived:
        agent = await asyncio.to_thread(dbm.get_agent, config, agent_id=agent_id)
        if agent is not None:
            logger.info("agent_back_online", agent_id=agent_id)
            await notify_agent_online(runtime, agent)

    notified = 0
    for metric_type, value in (("cpu", cpu), ("memory", memory), ("disk", disk)):
        if value is None:
            continue
        sent = await notify_agent_threshold(runtime, agent_id, metric_type, float(value))
        if sent is not None:
            notified += 1

    return {"revived": revived, "threshold_notifications": notified}
