"""Scheduling utilities for recurring loyalty maintenance."""

from .config import JobDefinition, ScheduleConfig, load_job_definitions
from .runner import LoyaltyJobScheduler, resolve_schedule_path

__all__ = [
    "JobDefinition",
    "LoyaltyJobScheduler",
    "ScheduleConfig",
    "load_job_definitions",
    "resolve_schedule_path",
]
