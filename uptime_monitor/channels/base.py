from __future__ import annotations

import json
from typing import Any, Mapping, Protocol

import httpx
import structlog

from uptime_monitor.models import DeliveryResult, NotificationChannel


logger = structlog.get_logger(__name__)


class ChannelAdapter(Protocol):
    async def deliver(self, channel: NotificationChannel, subject: str, body: str) -> DeliveryResult: ...


def parse_channel_config(channel: NotificationChannel) -> dict[str, Any]:
    """
    Best-effort decode of a channel's provider config.
    Accepts a serialized JSON object or an already-parsed mapping; anything else yields {}.
    """
    raw = channel.config
    if isinstance(raw, Mapping):
        return dict(raw)
    if raw is None or not str(raw).strip():
        return {}
    try:
        parsed = json.loads(str(raw))
    except Exception as e:
        logger.warning("channel_config_parse_failed", channel_id=channel.id, error=f"{type(e).__name__}: {e}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("channel_config_not_object", channel_id=channel.id)
        return {}
    return parsed


def config_value(config: Mapping[str, Any], *keys: str) -> str:
    """First non-empty value among keys (stored camelCase form first, snake_case alias after)."""
    for k in keys:
        v = config.get(k)
        if v is None:
            continue
        s = str(v).strip()
        if s:
            return s
    return ""


def error_text(exc: BaseException) -> str:
    msg = str(exc or "").strip()
    return msg or type(exc).__name__


def response_json(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


class HttpChannelAdapter:
    """Shared plumbing for adapters that POST one JSON document per delivery."""

    channel_type = ""

    def __init__(self, client: httpx.AsyncClient, *, timeout: float = 15.0):
        self.client = client
        self.timeout = float(timeout)

    async def post_json(self, url: str, payload: dict[str, Any], *, headers: dict[str, str] | None = None) -> httpx.Response:
        return await self.client.post(url, json=payload, headers=headers, timeout=self.timeout)

    async def deliver(self, channel: NotificationChannel, subject: str, body: str) -> DeliveryResult:
        config = parse_channel_config(channel)
        try:
            return await self._deliver(channel, config, subject, body)
        except Exception as e:
            err = self.redact(config, error_text(e))
            logger.warning("channel_delivery_error", channel_id=channel.id, channel_type=self.channel_type, error=err)
            return DeliveryResult(success=False, error=err, channel_id=channel.id)

    async def _deliver(
        self, channel: NotificationChannel, config: dict[str, Any], subject: str, body: str
    ) -> DeliveryResult:
        raise NotImplementedError

    def redact(self, config: Mapping[str, Any], text: str) -> str:
        return text
