from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping

import structlog

from uptime_monitor import db as dbm
from uptime_monitor.channels.base import error_text
from uptime_monitor.channels.registry import AdapterRegistry
from uptime_monitor.config import ServiceConfig
from uptime_monitor.models import (
    DeliveryResult,
    NotificationChannel,
    NotificationTemplate,
    SendResult,
)
from uptime_monitor.templates import render


logger = structlog.get_logger(__name__)


def pick_template(templates: list[NotificationTemplate], template_type: str) -> NotificationTemplate | None:
    """The default template of a type, else the first one of that type in insertion order."""
    of_type = [t for t in templates if t.type == template_type]
    for t in of_type:
        if t.is_default:
            return t
    return of_type[0] if of_type else None


def history_content(subject: str, body: str, variables: Mapping[str, Any]) -> str:
    return json.dumps({"subject": subject, "content": body, "variables": dict(variables)}, ensure_ascii=False)


class NotificationDispatcher:
    """Renders one notification and fans it out to every requested channel."""

    def __init__(self, config: ServiceConfig, registry: AdapterRegistry):
        self.config = config
        self.registry = registry

    async def _resolve_channels(self, channel_ids: list[int], user_id: int) -> list[NotificationChannel]:
        out: list[NotificationChannel] = []
        for cid in channel_ids:
            channel = await asyncio.to_thread(
                dbm.get_notification_channel, self.config, channel_id=int(cid), user_id=int(user_id)
            )
            if channel is None:
                logger.info("dispatch_channel_missing", channel_id=cid, user_id=user_id)
                continue
            out.append(channel)
        return out

    async def _record(
        self,
        *,
        template_type: str,
        target_id: int | None,
        template_id: int,
        result: DeliveryResult,
        content: str,
    ) -> None:
        try:
            await asyncio.to_thread(
                dbm.create_notification_history,
                self.config,
                type=template_type,
                target_id=target_id,
                channel_id=int(result.channel_id or 0),
                template_id=template_id,
                status="success" if result.success else "failed",
                content=content,
                error=result.error,
            )
        except Exception:
            logger.exception("notification_history_write_failed", channel_id=result.channel_id, target_id=target_id)

    async def _deliver_one(
        self,
        channel: NotificationChannel,
        *,
        template_type: str,
        target_id: int | None,
        template_id: int,
        subject: str,
        body: str,
        content: str,
    ) -> DeliveryResult:
        try:
            result = await self.registry.dispatch_by_channel(channel, subject, body)
        except Exception as e:
            logger.exception("channel_dispatch_raised", channel_id=channel.id, channel_type=channel.type)
            result = DeliveryResult(success=False, error=error_text(e), channel_id=channel.id)

        await self._record(
            template_type=template_type, target_id=target_id, template_id=template_id, result=result, content=content
        )
        return result

    async def send(
        self,
        *,
        template_type: str,
        target_id: int | None,
        variables: Mapping[str, Any],
        channel_ids: list[int],
        user_id: int,
    ) -> SendResult:
        if not channel_ids:
            return SendResult(success=False, results=[])

        try:
            templates = await asyncio.to_thread(dbm.list_notification_templates, self.config, user_id=int(user_id))
            template = pick_template(templates, template_type)
            if template is None:
                logger.warning("dispatch_no_template", template_type=template_type, user_id=user_id)
                return SendResult(success=False, results=[])

            subject, body = render(template, variables)
            channels = await self._resolve_channels(channel_ids, user_id)
        except Exception as e:
            logger.exception("dispatch_resolution_failed", template_type=template_type, target_id=target_id)
            return SendResult(success=False, results=[DeliveryResult(success=False, error=error_text(e), channel_id=None)])

        if not channels:
            logger.info("dispatch_no_channels_resolved", template_type=template_type, target_id=target_id)
            return SendResult(success=False, results=[])

        content = history_content(subject, body, variables)
        results = await asyncio.gather(
            *[
                self._deliver_one(
                    ch,
                    template_type=template_type,
                    target_id=target_id,
                    template_id=template.id,
                    subject=subject,
                    body=body,
                    content=content,
                )
                for ch in channels
            ]
        )
        success = any(r.success for r in results)
        logger.info(
            "dispatch_done",
            template_type=template_type,
            target_id=target_id,
            template_id=template.id,
            channels=len(results),
            delivered=sum(1 for r in results if r.success),
        )
        return SendResult(success=success, results=list(results))
