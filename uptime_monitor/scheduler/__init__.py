"""Scheduler module for the periodic monitor and agent passes."""

from .job_scheduler import JobScheduler
from .task_coordinator import TaskCoordinator

__all__ = ["JobScheduler", "TaskCoordinator"]
