from __future__ import annotations

import httpx
import structlog

from uptime_monitor.channels.base import ChannelAdapter
from uptime_monitor.channels.feishu import FeishuAdapter
from uptime_monitor.channels.resend import ResendAdapter
from uptime_monitor.channels.telegram import TelegramAdapter
from uptime_monitor.channels.wecom import WeComAdapter
from uptime_monitor.models import DeliveryResult, NotificationChannel


logger = structlog.get_logger(__name__)


class AdapterRegistry:
    """Maps a channel's type key to the adapter that delivers it."""

    def __init__(self) -> None:
        self._adapters: dict[str, ChannelAdapter] = {}

    def register(self, channel_type: str, adapter: ChannelAdapter) -> None:
        key = str(channel_type or "").strip()
        if not key:
            raise ValueError("channel_type must be non-empty")
        if key in self._adapters:
            logger.warning("channel_adapter_overwritten", channel_type=key)
        self._adapters[key] = adapter
        logger.debug("channel_adapter_registered", channel_type=key)

    def get(self, channel_type: str) -> ChannelAdapter | None:
        return self._adapters.get(str(channel_type or "").strip())

    def types(self) -> list[str]:
        return sorted(self._adapters.keys())

    async def dispatch_by_channel(self, channel: NotificationChannel, subject: str, body: str) -> DeliveryResult:
        if not channel.enabled:
            logger.info("channel_disabled_skip", channel_id=channel.id)
            return DeliveryResult(success=False, error="channel disabled", channel_id=channel.id)

        adapter = self.get(channel.type)
        if adapter is None:
            logger.warning("channel_type_unsupported", channel_id=channel.id, channel_type=channel.type)
            return DeliveryResult(success=False, error="unsupported channel type", channel_id=channel.id)

        result = await adapter.deliver(channel, subject, body)
        if result.channel_id is None:
            return DeliveryResult(success=result.success, error=result.error, channel_id=channel.id)
        return result


def build_default_registry(client: httpx.AsyncClient, *, timeout: float = 15.0) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register("telegram", TelegramAdapter(client, timeout=timeout))
    registry.register("resend", ResendAdapter(client, timeout=timeout))
    registry.register("feishu", FeishuAdapter(client, timeout=timeout))
    registry.register("wecom", WeComAdapter(client, timeout=timeout))
    return registry
