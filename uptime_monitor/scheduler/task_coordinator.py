"""Wires the periodic ticks into the job scheduler and keeps a short run history."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ..models import TickSummary
from .job_scheduler import JobScheduler
from .ticks import run_agent_tick, run_monitor_tick

if TYPE_CHECKING:
    from ..runtime import Runtime


logger = structlog.get_logger(__name__)

MONITOR_TICK_JOB = "monitor_tick"
AGENT_TICK_JOB = "agent_tick"
TASK_HISTORY_LIMIT = 100


class TaskCoordinator:
    """Runs the monitor and agent ticks, on a schedule or on demand."""

    def __init__(self, runtime: "Runtime", scheduler: Optional[JobScheduler] = None):
        self.runtime = runtime
        self.config = runtime.config
        self.scheduler = scheduler or JobScheduler()

        self.running_tasks: Dict[str, Dict[str, Any]] = {}
        self.task_history: List[Dict[str, Any]] = []

    async def start(self):
        await self.scheduler.start()
        self.setup_default_jobs()

    async def stop(self):
        await self.scheduler.stop()

    def setup_default_jobs(self):
        self.scheduler.add_cron_job(
            MONITOR_TICK_JOB,
            self.run_monitor_tasks,
            self.config.monitor_tick_cron,
            description="Probe due monitors and roll up daily stats",
        )
        self.scheduler.add_cron_job(
            AGENT_TICK_JOB,
            self.run_agent_tasks,
            self.config.agent_tick_cron,
            description="Mark stale agents offline and prune metrics",
        )

    async def run_monitor_tasks(self) -> Dict[str, Any]:
        return await self._run(MONITOR_TICK_JOB, run_monitor_tick)

    async def run_agent_tasks(self) -> Dict[str, Any]:
        return await self._run(AGENT_TICK_JOB, run_agent_tick)

    async def _run(self, task_type: str, tick: Callable[["Runtime"], Awaitable[TickSummary]]) -> Dict[str, Any]:
        started = datetime.now(timezone.utc)
        task_id = f"{task_type}_{started.strftime('%Y%m%d_%H%M%S_%f')}"
        self.running_tasks[task_id] = {"task_id": task_id, "type": task_type, "start_time": started, "status": "running"}
        try:
            summary = await tick(self.runtime)
        finally:
            task = self.running_tasks.pop(task_id)

        result = {
            "success": summary.success,
            "checked": summary.checked,
            "notified": summary.notified,
            "failed": summary.failed,
            "message": summary.message,
            "housekeeping": summary.housekeeping,
        }
        ended = datetime.now(timezone.utc)
        task.update(result, status="completed", end_time=ended, duration=(ended - started).total_seconds())
        self.task_history.append(task)
        del self.task_history[:-TASK_HISTORY_LIMIT]
        logger.info("tick_finished", task_id=task_id, duration=task["duration"], message=summary.message)
        return result

    def get_system_status(self) -> Dict[str, Any]:
        return {
            "scheduler": self.scheduler.get_scheduler_status(),
            "jobs": self.scheduler.list_jobs(),
            "running_tasks": len(self.running_tasks),
            "completed_tasks": len(self.task_history),
            "recent_tasks": [_public_task(t) for t in self.task_history[-5:]],
        }


def _public_task(task: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(task)
    for k in ("start_time", "end_time"):
        if isinstance(out.get(k), datetime):
            out[k] = out[k].isoformat()
    return out
