from __future__ import annotations

from typing import Any

import structlog

from uptime_monitor.channels.base import HttpChannelAdapter, config_value, response_json
from uptime_monitor.models import DeliveryResult, NotificationChannel


logger = structlog.get_logger(__name__)


def build_feishu_card(subject: str, body: str) -> dict[str, Any]:
    return {
        "msg_type": "interactive",
        "card": {
            "header": {"title": {"content": subject, "tag": "plain_text"}},
            "elements": [{"tag": "div", "text": {"content": body, "tag": "lark_md"}}],
        },
    }


class FeishuAdapter(HttpChannelAdapter):
    channel_type = "feishu"

    async def _deliver(
        self, channel: NotificationChannel, config: dict[str, Any], subject: str, body: str
    ) -> DeliveryResult:
        webhook_url = config_value(config, "webhookUrl", "webhook_url")
        if not webhook_url:
            return DeliveryResult(success=False, error="Feishu webhook URL is required", channel_id=channel.id)

        resp = await self.post_json(webhook_url, build_feishu_card(subject, body))
        data = response_json(resp)
        # Older bot endpoints answer with StatusCode, newer ones with code.
        if data.get("StatusCode") == 0 or data.get("code") == 0:
            logger.info("feishu_sent", channel_id=channel.id)
            return DeliveryResult(success=True, channel_id=channel.id)

        err = str(data.get("StatusMessage") or data.get("msg") or f"HTTP {resp.status_code}")
        logger.warning("feishu_send_failed", channel_id=channel.id, error=err)
        return DeliveryResult(success=False, error=err, channel_id=channel.id)
