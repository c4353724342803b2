from __future__ import annotations

from typing import Any

import structlog

from uptime_monitor.channels.base import HttpChannelAdapter, config_value, response_json
from uptime_monitor.models import DeliveryResult, NotificationChannel


logger = structlog.get_logger(__name__)


class WeComAdapter(HttpChannelAdapter):
    channel_type = "wecom"

    async def _deliver(
        self, channel: NotificationChannel, config: dict[str, Any], subject: str, body: str
    ) -> DeliveryResult:
        webhook_url = config_value(config, "webhookUrl", "webhook_url")
        if not webhook_url:
            return DeliveryResult(success=False, error="WeCom webhook URL is required", channel_id=channel.id)

        payload = {"msgtype": "markdown", "markdown": {"content": f"**{subject}**\n\n{body}"}}
        resp = await self.post_json(webhook_url, payload)
        data = response_json(resp)
        if data.get("errcode") == 0:
            logger.info("wecom_sent", channel_id=channel.id)
            return DeliveryResult(success=True, channel_id=channel.id)

        err = str(data.get("errmsg") or f"HTTP {resp.status_code}")
        logger.warning("wecom_send_failed", channel_id=channel.id, error=err)
        return DeliveryResult(success=False, error=err, channel_id=channel.id)
