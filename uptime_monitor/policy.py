from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog

from uptime_monitor import db as dbm
from uptime_monitor.config import ServiceConfig
from uptime_monitor.models import (
    AGENT_OFFLINE,
    AGENT_ONLINE,
    METRIC_TYPES,
    STATUS_DOWN,
    STATUS_UP,
    TARGET_AGENT,
    TARGET_MONITOR,
    NotificationSettings,
    NotifyDecision,
    ThresholdDecision,
)


logger = structlog.get_logger(__name__)

METRIC_DISPLAY_NAMES = {
    "cpu": "CPU usage",
    "memory": "Memory usage",
    "disk": "Disk usage",
}


def parse_channel_ids(raw: Any) -> list[int]:
    """
    Decode a settings row's channel list. Raises ValueError when it is not a JSON list of ids.
    """
    if isinstance(raw, list):
        items = raw
    else:
        try:
            items = json.loads(str(raw or "[]"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid channel list: {e}") from None
    if not isinstance(items, list):
        raise ValueError("Channel list must be a JSON array")
    out: list[int] = []
    for item in items:
        if isinstance(item, bool):
            raise ValueError(f"Invalid channel id: {item!r}")
        try:
            out.append(int(item))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid channel id: {item!r}") from None
    return out


def collect_channels(rows: list[NotificationSettings]) -> list[int]:
    """Union of channel ids across rows, deduplicated in first-seen order."""
    seen: set[int] = set()
    out: list[int] = []
    for row in rows:
        try:
            ids = parse_channel_ids(row.channels)
        except ValueError as e:
            logger.warning("settings_channels_parse_failed", settings_id=row.id, error=str(e))
            continue
        for cid in ids:
            if cid in seen:
                continue
            seen.add(cid)
            out.append(cid)
    return out


def evaluate_transition(row: NotificationSettings, *, target_type: str, prev_status: str, current_status: str) -> bool:
    if target_type == TARGET_MONITOR:
        if prev_status != STATUS_DOWN and current_status == STATUS_DOWN and row.on_down:
            return True
        if prev_status == STATUS_DOWN and current_status == STATUS_UP and row.on_recovery:
            return True
        return False

    if target_type == TARGET_AGENT:
        if prev_status != AGENT_OFFLINE and current_status == AGENT_OFFLINE and row.on_offline:
            return True
        if prev_status == AGENT_OFFLINE and current_status == AGENT_ONLINE and row.on_recovery:
            return True
        return False

    return False


async def load_effective_settings(
    config: ServiceConfig, *, user_id: int, target_type: str, target_id: int
) -> list[NotificationSettings]:
    """
    Enabled target-specific rows; when none exist, the enabled global row for the family.
    """
    specific = await asyncio.to_thread(
        dbm.get_specific_settings, config, user_id=user_id, target_type=target_type, target_id=target_id
    )
    enabled = [row for row in specific if row.enabled]
    if enabled:
        return enabled

    global_row = await asyncio.to_thread(dbm.get_global_settings, config, user_id=user_id, target_type=target_type)
    if global_row is not None and global_row.enabled:
        return [global_row]
    return []


async def should_notify(
    config: ServiceConfig,
    *,
    user_id: int,
    target_type: str,
    target_id: int,
    prev_status: str,
    current_status: str,
) -> NotifyDecision:
    if not target_id:
        return NotifyDecision(should_send=False)

    rows = await load_effective_settings(config, user_id=user_id, target_type=target_type, target_id=target_id)
    if not rows:
        logger.debug("notify_no_settings", target_type=target_type, target_id=target_id, user_id=user_id)
        return NotifyDecision(should_send=False)

    channels = collect_channels(rows)
    if not channels:
        logger.debug("notify_no_channels", target_type=target_type, target_id=target_id)
        return NotifyDecision(should_send=False)

    for row in rows:
        if evaluate_transition(row, target_type=target_type, prev_status=prev_status, current_status=current_status):
            logger.info(
                "notify_authorized",
                target_type=target_type,
                target_id=target_id,
                prev_status=prev_status,
                current_status=current_status,
                settings_id=row.id,
            )
            return NotifyDecision(should_send=True, channels=channels)

    return NotifyDecision(should_send=False)


def metric_threshold(row: NotificationSettings, metric_type: str) -> tuple[bool, float]:
    if metric_type == "cpu":
        return row.on_cpu_threshold, float(row.cpu_threshold)
    if metric_type == "memory":
        return row.on_memory_threshold, float(row.memory_threshold)
    if metric_type == "disk":
        return row.on_disk_threshold, float(row.disk_threshold)
    raise ValueError(f"Unsupported metric type: {metric_type!r}")


async def should_notify_threshold(
    config: ServiceConfig, *, user_id: int, agent_id: int, metric_type: str, value: float
) -> ThresholdDecision:
    """
    Level-triggered threshold check for one agent metric sample.

    Uses a single effective row: the first enabled agent-specific row, else the enabled
    global-agent row. Every sample at or above the threshold authorizes a send.
    """
    if metric_type not in METRIC_TYPES:
        return ThresholdDecision(should_send=False)
    metric_name = METRIC_DISPLAY_NAMES[metric_type]
    if not agent_id:
        return ThresholdDecision(should_send=False, metric_name=metric_name)

    rows = await load_effective_settings(config, user_id=user_id, target_type=TARGET_AGENT, target_id=agent_id)
    if not rows:
        return ThresholdDecision(should_send=False, metric_name=metric_name)

    row = rows[0]
    flag, threshold = metric_threshold(row, metric_type)
    if not (flag and float(value) >= threshold):
        return ThresholdDecision(should_send=False, metric_name=metric_name, threshold=threshold)

    try:
        channels = parse_channel_ids(row.channels)
    except ValueError as e:
        logger.warning("threshold_channels_parse_failed", agent_id=agent_id, settings_id=row.id, error=str(e))
        return ThresholdDecision(should_send=False, metric_name=metric_name, threshold=threshold)
    if not channels:
        logger.debug("threshold_no_channels", agent_id=agent_id)
        return ThresholdDecision(should_send=False, metric_name=metric_name, threshold=threshold)

    # Preserve order, drop duplicate ids.
    channels = list(dict.fromkeys(channels))
    return ThresholdDecision(should_send=True, channels=channels, metric_name=metric_name, threshold=threshold)
