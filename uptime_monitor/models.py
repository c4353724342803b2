from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


STATUS_UP = "up"
STATUS_DOWN = "down"
STATUS_UNKNOWN = "unknown"

AGENT_ACTIVE = "active"
AGENT_INACTIVE = "inactive"
AGENT_ONLINE = "online"
AGENT_OFFLINE = "offline"

TARGET_MONITOR = "monitor"
TARGET_AGENT = "agent"
TARGET_GLOBAL_MONITOR = "global-monitor"
TARGET_GLOBAL_AGENT = "global-agent"
TARGET_TYPES = (TARGET_MONITOR, TARGET_AGENT, TARGET_GLOBAL_MONITOR, TARGET_GLOBAL_AGENT)

TEMPLATE_TYPES = ("monitor", "agent", "system")

METRIC_TYPES = ("cpu", "memory", "disk")


@dataclass(frozen=True)
class Monitor:
    id: int
    name: str
    url: str
    method: str = "GET"
    headers: str | dict[str, Any] | None = None  # serialized JSON object in storage
    body: str | None = None
    interval: int = 60
    timeout: int | None = 30
    expected_status: int = 200
    active: bool = True
    status: str | None = None  # up|down, None until the first check
    response_time: int | None = None
    last_checked_ts: float | None = None
    created_by: int = 0


@dataclass(frozen=True)
class Agent:
    id: int
    name: str
    keepalive: int | None = 60
    updated_at_ts: float = 0.0
    status: str = AGENT_ACTIVE  # active|inactive
    created_by: int = 0
    hostname: str | None = None
    ip_addresses: list[str] = field(default_factory=list)
    os: str | None = None


@dataclass(frozen=True)
class NotificationSettings:
    id: int
    user_id: int
    target_type: str
    target_id: int
    enabled: bool = True
    on_down: bool = True
    on_recovery: bool = True
    on_offline: bool = True
    on_cpu_threshold: bool = False
    cpu_threshold: float = 90.0
    on_memory_threshold: bool = False
    memory_threshold: float = 85.0
    on_disk_threshold: bool = False
    disk_threshold: float = 90.0
    channels: str = "[]"  # serialized JSON list of channel ids


@dataclass(frozen=True)
class NotificationChannel:
    id: int
    name: str
    type: str
    config: str | dict[str, Any]
    enabled: bool = True
    created_by: int = 0


@dataclass(frozen=True)
class NotificationTemplate:
    id: int
    name: str
    type: str
    subject: str
    content: str
    is_default: bool = False
    created_by: int = 0


@dataclass(frozen=True)
class NotificationHistory:
    id: int
    type: str
    target_id: int | None
    channel_id: int
    template_id: int
    status: str  # success|failed
    content: str
    error: str | None
    sent_at_ts: float


@dataclass(frozen=True)
class CheckResult:
    status: str
    previous_status: str | None
    response_time: int
    status_code: int | None
    error: str | None
    checked_at_ts: float


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: str | None = None
    channel_id: int | None = None


@dataclass(frozen=True)
class SendResult:
    success: bool
    results: list[DeliveryResult] = field(default_factory=list)


@dataclass(frozen=True)
class NotifyDecision:
    should_send: bool
    channels: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class ThresholdDecision:
    should_send: bool
    channels: list[int] = field(default_factory=list)
    metric_name: str = ""
    threshold: float | None = None


@dataclass(frozen=True)
class DailyRollup:
    monitor_id: int
    date: str
    total_checks: int
    up_checks: int
    down_checks: int
    avg_response_time: float
    min_response_time: float
    max_response_time: float
    availability: float


@dataclass(frozen=True)
class TickSummary:
    success: bool
    checked: int
    notified: int = 0
    failed: int = 0
    message: str = ""
    housekeeping: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RollupSummary:
    date: str
    monitors: int
    rows_aggregated: int
    rows_deleted: int
