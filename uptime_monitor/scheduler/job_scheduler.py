"""Cron scheduling for the periodic monitor and agent passes."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger


logger = structlog.get_logger(__name__)

CRON_FIELDS = ("minute", "hour", "day", "month", "day_of_week")


def cron_trigger(cron_expression: str) -> CronTrigger:
    """Build a UTC trigger from a 5-field "minute hour day month day_of_week" expression."""
    parts = str(cron_expression or "").split()
    if len(parts) != len(CRON_FIELDS):
        raise ValueError(f"Invalid cron expression: {cron_expression!r}")
    return CronTrigger(timezone=timezone.utc, **dict(zip(CRON_FIELDS, parts)))


class JobScheduler:
    """AsyncIOScheduler holding the tick jobs, one entry per job id."""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    async def start(self):
        if self.running:
            return
        self.scheduler.start()
        self.running = True
        logger.info("scheduler_started")

    async def stop(self):
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("scheduler_stopped", jobs=len(self.jobs))

    def add_cron_job(
        self,
        job_id: str,
        func: Callable,
        cron_expression: str,
        description: Optional[str] = None,
    ):
        trigger = cron_trigger(cron_expression)
        if job_id in self.jobs:
            self.remove_job(job_id)

        # One run per job at a time; a late tick is folded into the next one.
        self.scheduler.add_job(func, trigger=trigger, id=job_id, name=description or job_id, max_instances=1, coalesce=True)
        self.jobs[job_id] = {
            "cron": cron_expression,
            "description": description,
            "added_at": datetime.now(timezone.utc),
        }
        logger.info("scheduler_job_added", job_id=job_id, cron=cron_expression)

    def remove_job(self, job_id: str) -> bool:
        if self.jobs.pop(job_id, None) is None:
            return False
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
        logger.info("scheduler_job_removed", job_id=job_id)
        return True

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        info = self.jobs.get(job_id)
        job = self.scheduler.get_job(job_id) if info else None
        if job is None:
            return None
        next_run = getattr(job, "next_run_time", None)
        return {
            "job_id": job_id,
            "cron": info["cron"],
            "description": info["description"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": info["added_at"].isoformat(),
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        return [s for s in (self.get_job_status(j) for j in self.jobs) if s]

    def get_scheduler_status(self) -> Dict[str, Any]:
        return {"running": self.running, "job_count": len(self.jobs)}
