from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx
import structlog

from uptime_monitor import db as dbm
from uptime_monitor.channels.registry import AdapterRegistry, build_default_registry
from uptime_monitor.config import ServiceConfig
from uptime_monitor.dispatcher import NotificationDispatcher


logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    """Process-wide collaborators shared by ticks, alert handlers and the API."""

    config: ServiceConfig
    http_client: httpx.AsyncClient
    registry: AdapterRegistry
    dispatcher: NotificationDispatcher


def build_runtime(config: ServiceConfig, http_client: httpx.AsyncClient) -> Runtime:
    registry = build_default_registry(http_client, timeout=config.channel_timeout_seconds)
    return Runtime(
        config=config,
        http_client=http_client,
        registry=registry,
        dispatcher=NotificationDispatcher(config, registry),
    )


@asynccontextmanager
async def open_runtime(config: ServiceConfig) -> AsyncIterator[Runtime]:
    await asyncio.to_thread(dbm.ensure_schema, config)
    async with httpx.AsyncClient(headers={"User-Agent": "uptime-monitor/1.0"}) as client:
        runtime = build_runtime(config, client)
        logger.info("runtime_started", db_path=config.db_path, channel_types=runtime.registry.types())
        yield runtime
