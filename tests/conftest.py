from __future__ import annotations

import pytest

from uptime_monitor import db as dbm
from uptime_monitor.config import ServiceConfig
from uptime_monitor.models import DeliveryResult, NotificationChannel


class RecordingAdapter:
    """Channel adapter double that records deliveries and answers with a fixed outcome."""

    def __init__(self, *, success: bool = True, error: str | None = None, raises: Exception | None = None):
        self.success = success
        self.error = error
        self.raises = raises
        self.calls: list[tuple[int, str, str]] = []

    async def deliver(self, channel: NotificationChannel, subject: str, body: str) -> DeliveryResult:
        self.calls.append((channel.id, subject, body))
        if self.raises is not None:
            raise self.raises
        return DeliveryResult(success=self.success, error=self.error, channel_id=channel.id)


@pytest.fixture()
def config(tmp_path) -> ServiceConfig:
    cfg = ServiceConfig(db_path=str(tmp_path / "uptime.db"), scheduler_enabled=False, check_concurrency=4)
    dbm.ensure_schema(cfg)
    return cfg


@pytest.fixture()
def recording_adapter():
    return RecordingAdapter
