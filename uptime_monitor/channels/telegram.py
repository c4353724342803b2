from __future__ import annotations

from typing import Any, Mapping

import structlog

from uptime_monitor.channels.base import HttpChannelAdapter, config_value, response_json
from uptime_monitor.models import DeliveryResult, NotificationChannel


logger = structlog.get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


def format_telegram_message(subject: str, body: str) -> str:
    # Templates stored through JSON forms often carry escaped newlines.
    return f"{subject}\n\n{body}".replace("\\n", "\n")


class TelegramAdapter(HttpChannelAdapter):
    channel_type = "telegram"

    def __init__(self, client, *, timeout: float = 15.0, api_base: str = TELEGRAM_API_BASE):
        super().__init__(client, timeout=timeout)
        self.api_base = api_base.rstrip("/")

    async def _deliver(
        self, channel: NotificationChannel, config: dict[str, Any], subject: str, body: str
    ) -> DeliveryResult:
        bot_token = config_value(config, "botToken", "bot_token")
        chat_id = config_value(config, "chatId", "chat_id")
        if not bot_token:
            return DeliveryResult(success=False, error="Telegram bot token is required", channel_id=channel.id)
        if not chat_id:
            return DeliveryResult(success=False, error="Telegram chat id is required", channel_id=channel.id)

        url = f"{self.api_base}/bot{bot_token}/sendMessage"
        resp = await self.post_json(url, {"chat_id": chat_id, "text": format_telegram_message(subject, body)})
        data = response_json(resp)
        if data.get("ok") is True:
            message_id = (data.get("result") or {}).get("message_id") if isinstance(data.get("result"), dict) else None
            logger.info("telegram_sent", channel_id=channel.id, message_id=message_id)
            return DeliveryResult(success=True, channel_id=channel.id)

        err = self.redact(config, str(data.get("description") or f"HTTP {resp.status_code}"))
        logger.warning("telegram_send_failed", channel_id=channel.id, error=err)
        return DeliveryResult(success=False, error=err, channel_id=channel.id)

    def redact(self, config: Mapping[str, Any], text: str) -> str:
        bot_token = config_value(config, "botToken", "bot_token")
        if bot_token:
            return text.replace(bot_token, "<redacted>")
        return text
