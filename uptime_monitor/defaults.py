from __future__ import annotations

import structlog

from uptime_monitor import db as dbm
from uptime_monitor.config import ServiceConfig
from uptime_monitor.models import TARGET_GLOBAL_AGENT, TARGET_GLOBAL_MONITOR
from uptime_monitor.templates import DEFAULT_AGENT_TEMPLATE, DEFAULT_MONITOR_TEMPLATE


logger = structlog.get_logger(__name__)

PLACEHOLDER_CHANNEL_NAME = "Telegram bot (fill in botToken and chatId)"


def create_default_notification_settings_for_user(config: ServiceConfig, user_id: int) -> bool:
    """
    Seed a new user with default templates, a placeholder Telegram channel and disabled
    global settings rows. Errors are logged; returns False when seeding failed.
    """
    try:
        for tpl in (DEFAULT_MONITOR_TEMPLATE, DEFAULT_AGENT_TEMPLATE):
            dbm.create_notification_template(
                config,
                name=tpl["name"],
                type=tpl["type"],
                subject=tpl["subject"],
                content=tpl["content"],
                is_default=True,
                created_by=user_id,
            )

        channel_id = dbm.create_notification_channel(
            config,
            name=PLACEHOLDER_CHANNEL_NAME,
            type="telegram",
            channel_config={"botToken": "", "chatId": ""},
            enabled=False,
            created_by=user_id,
        )

        dbm.create_or_update_settings(
            config,
            user_id=user_id,
            target_type=TARGET_GLOBAL_MONITOR,
            target_id=0,
            enabled=False,
            on_down=True,
            on_recovery=True,
            on_offline=True,
            on_cpu_threshold=False,
            cpu_threshold=90,
            on_memory_threshold=False,
            memory_threshold=85,
            on_disk_threshold=False,
            disk_threshold=90,
            channels=[channel_id],
        )
        dbm.create_or_update_settings(
            config,
            user_id=user_id,
            target_type=TARGET_GLOBAL_AGENT,
            target_id=0,
            enabled=False,
            on_down=False,
            on_recovery=True,
            on_offline=True,
            on_cpu_threshold=True,
            cpu_threshold=80,
            on_memory_threshold=True,
            memory_threshold=80,
            on_disk_threshold=True,
            disk_threshold=90,
            channels=[channel_id],
        )
    except Exception:
        logger.exception("default_notification_settings_failed", user_id=user_id)
        return False

    logger.info("default_notification_settings_created", user_id=user_id, channel_id=channel_id)
    return True
