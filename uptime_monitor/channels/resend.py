from __future__ import annotations

from typing import Any, Mapping

import structlog

from uptime_monitor.channels.base import HttpChannelAdapter, config_value, response_json
from uptime_monitor.models import DeliveryResult, NotificationChannel


logger = structlog.get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


def parse_recipients(config: Mapping[str, Any]) -> list[str]:
    """Recipients from a comma-separated string or an already-parsed list."""
    for key in ("to", "to_addresses"):
        raw = config.get(key)
        if isinstance(raw, (list, tuple)):
            items = [str(addr).strip() for addr in raw]
        elif raw is not None:
            items = [addr.strip() for addr in str(raw).split(",")]
        else:
            continue
        recipients = [addr for addr in items if addr]
        if recipients:
            return recipients
    return []


class ResendAdapter(HttpChannelAdapter):
    """Email delivery through the Resend HTTP API."""

    channel_type = "resend"

    def __init__(self, client, *, timeout: float = 15.0, api_url: str = RESEND_API_URL):
        super().__init__(client, timeout=timeout)
        self.api_url = api_url

    async def _deliver(
        self, channel: NotificationChannel, config: dict[str, Any], subject: str, body: str
    ) -> DeliveryResult:
        api_key = config_value(config, "apiKey", "api_key")
        sender = config_value(config, "from", "from_address")
        recipients = parse_recipients(config)
        if not api_key:
            return DeliveryResult(success=False, error="Resend API key is required", channel_id=channel.id)
        if not sender:
            return DeliveryResult(success=False, error="Resend sender is required", channel_id=channel.id)
        if not recipients:
            return DeliveryResult(success=False, error="Resend recipient is required", channel_id=channel.id)

        payload = {
            "from": sender,
            "to": recipients,
            "subject": subject,
            "html": body.replace("\n", "<br>"),
        }
        resp = await self.post_json(self.api_url, payload, headers={"Authorization": f"Bearer {api_key}"})
        if resp.is_success:
            logger.info("resend_sent", channel_id=channel.id, recipients=len(recipients))
            return DeliveryResult(success=True, channel_id=channel.id)

        data = response_json(resp)
        err = self.redact(config, str(data.get("message") or f"HTTP status {resp.status_code}"))
        logger.warning("resend_send_failed", channel_id=channel.id, status_code=resp.status_code, error=err)
        return DeliveryResult(success=False, error=err, channel_id=channel.id)

    def redact(self, config: Mapping[str, Any], text: str) -> str:
        api_key = config_value(config, "apiKey", "api_key")
        if api_key:
            return text.replace(api_key, "<redacted>")
        return text
