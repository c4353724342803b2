from __future__ import annotations

import asyncio
from dataclasses import asdict

import httpx
import structlog
from fastapi import FastAPI, HTTPException, Path, Query

from uptime_monitor import db as dbm
from uptime_monitor.config import ServiceConfig, get_config
from uptime_monitor.defaults import create_default_notification_settings_for_user
from uptime_monitor.ingest import ingest_agent_report
from uptime_monitor.runtime import build_runtime
from uptime_monitor.scheduler import TaskCoordinator
from uptime_monitor.scheduler.ticks import manual_check_monitor
from uptime_monitor.schema import AgentReportRequest, ManualCheckRequest


logger = structlog.get_logger(__name__)


def create_app(config: ServiceConfig | None = None, *, http_client: httpx.AsyncClient | None = None) -> FastAPI:
    """
    HTTP surface for triggering ticks, manual checks and agent reports.

    When http_client is given the app uses it as-is and leaves closing it to the caller.
    """
    app = FastAPI(title="Uptime Monitor", version="1.0.0")
    app.state.config = config or get_config()
    app.state.runtime = None
    app.state.coordinator = None

    @app.on_event("startup")
    async def _startup() -> None:
        cfg: ServiceConfig = app.state.config
        await asyncio.to_thread(dbm.ensure_schema, cfg)
        client = http_client or httpx.AsyncClient(headers={"User-Agent": "uptime-monitor/1.0"})
        app.state.owns_client = http_client is None
        app.state.runtime = build_runtime(cfg, client)
        app.state.coordinator = TaskCoordinator(app.state.runtime)
        if cfg.scheduler_enabled:
            await app.state.coordinator.start()
        logger.info("api_started", scheduler_enabled=cfg.scheduler_enabled, db_path=cfg.db_path)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        coordinator: TaskCoordinator | None = app.state.coordinator
        if coordinator is not None:
            await coordinator.stop()
        runtime = app.state.runtime
        if runtime is not None and getattr(app.state, "owns_client", False):
            await runtime.http_client.aclose()

    @app.get("/healthz")
    async def healthz() -> dict:
        runtime = app.state.runtime
        return {"ok": True, "channel_types": runtime.registry.types() if runtime else []}

    @app.post("/api/v1/monitors/{monitor_id}/check")
    async def check_monitor_now(monitor_id: int, req: ManualCheckRequest) -> dict:
        result = await manual_check_monitor(app.state.runtime, monitor_id, req.user_id)
        if result is None:
            raise HTTPException(status_code=404, detail="monitor_not_found")
        return {"ok": True, "result": asdict(result)}

    @app.post("/api/v1/agents/{agent_id}/report")
    async def agent_report(agent_id: int, req: AgentReportRequest) -> dict:
        try:
            out = await ingest_agent_report(
                app.state.runtime,
                agent_id,
                cpu=req.cpu,
                memory=req.memory,
                disk=req.disk,
                hostname=req.hostname,
                ip_addresses=req.ip_addresses,
                os=req.os,
            )
        except LookupError:
            raise HTTPException(status_code=404, detail="agent_not_found") from None
        return {"ok": True, **out}

    @app.post("/api/v1/users/{user_id}/defaults")
    async def seed_user_defaults(user_id: int = Path(..., ge=1)) -> dict:
        cfg: ServiceConfig = app.state.config
        existing = await asyncio.to_thread(dbm.list_notification_templates, cfg, user_id=user_id)
        if existing:
            raise HTTPException(status_code=409, detail="defaults_already_present")
        created = await asyncio.to_thread(create_default_notification_settings_for_user, cfg, user_id)
        if not created:
            raise HTTPException(status_code=500, detail="defaults_seed_failed")
        return {"ok": True, "user_id": user_id}

    @app.post("/api/v1/tasks/monitors")
    async def run_monitor_tasks() -> dict:
        return await app.state.coordinator.run_monitor_tasks()

    @app.post("/api/v1/tasks/agents")
    async def run_agent_tasks() -> dict:
        return await app.state.coordinator.run_agent_tasks()

    @app.get("/api/v1/notifications/history")
    async def notification_history(
        user_id: int | None = None,
        type: str | None = None,
        target_id: int | None = None,
        status: str | None = None,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ) -> dict:
        total, records = await asyncio.to_thread(
            dbm.list_notification_history,
            app.state.config,
            type=type,
            target_id=target_id,
            status=status,
            user_id=user_id,
            limit=limit,
            offset=offset,
        )
        return {"total": total, "records": [asdict(r) for r in records]}

    @app.get("/api/v1/scheduler/jobs")
    async def scheduler_jobs() -> dict:
        return app.state.coordinator.get_system_status()

    return app
