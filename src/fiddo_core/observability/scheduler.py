"""In-process metrics for the recurring job scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Dict

from fiddo_core.core.clock import utcnow


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class SchedulerJobSnapshot:
    """Serializable snapshot of a scheduled job."""

    job_id: str
    task: str
    totals: Dict[str, int]
    total_runtime_seconds: float
    last_started_at: datetime | None
    last_success_at: datetime | None
    last_error_at: datetime | None
    last_error: str | None
    last_attempts: int
    last_retry_delay_seconds: float | None
    last_result: Dict[str, Any] | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "task": self.task,
            "totals": self.totals,
            "total_runtime_seconds": self.total_runtime_seconds,
            "last_started_at": _iso(self.last_started_at),
            "last_success_at": _iso(self.last_success_at),
            "last_error_at": _iso(self.last_error_at),
            "last_error": self.last_error,
            "last_attempts": self.last_attempts,
            "last_retry_delay_seconds": self.last_retry_delay_seconds,
            "last_result": self.last_result,
        }


@dataclass
class SchedulerSnapshot:
    totals: Dict[str, int]
    jobs: Dict[str, SchedulerJobSnapshot]

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": self.totals,
            "jobs": {job_id: snapshot.as_dict() for job_id, snapshot in self.jobs.items()},
        }


@dataclass
class _JobState:
    job_id: str
    task: str
    counters: Dict[str, int] = field(
        default_factory=lambda: {
            "runs": 0,
            "success": 0,
            "run_failures": 0,
            "attempt_failures": 0,
            "retries": 0,
            "consecutive_failures": 0,
        }
    )
    total_runtime_seconds: float = 0.0
    last_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    last_attempts: int = 0
    last_retry_delay_seconds: float | None = None
    last_result: Dict[str, Any] | None = None

    def snapshot(self) -> SchedulerJobSnapshot:
        return SchedulerJobSnapshot(
            job_id=self.job_id,
            task=self.task,
            totals=dict(self.counters),
            total_runtime_seconds=self.total_runtime_seconds,
            last_started_at=self.last_started_at,
            last_success_at=self.last_success_at,
            last_error_at=self.last_error_at,
            last_error=self.last_error,
            last_attempts=self.last_attempts,
            last_retry_delay_seconds=self.last_retry_delay_seconds,
            last_result=dict(self.last_result) if self.last_result is not None else None,
        )


class JobSchedulerObservabilityStore:
    """Tracks dispatches, retries and outcomes per scheduled job."""

    def __init__(self) -> None:
        self._lock: Lock = Lock()
        self._jobs: Dict[str, _JobState] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _state(self, job_id: str, task: str) -> _JobState:
        state = self._jobs.get(job_id)
        if state is None:
            state = self._jobs[job_id] = _JobState(job_id=job_id, task=task)
        else:
            state.task = task
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["runs"] += 1
            state.last_started_at = utcnow()
            state.last_attempts = 0
            state.last_retry_delay_seconds = None

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["attempt_failures"] += 1
            state.counters["consecutive_failures"] += 1
            state.last_error = error
            state.last_error_at = utcnow()
            state.last_attempts = attempts

    def record_retry(self, job_id: str, task: str, *, delay_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["retries"] += 1
            state.last_retry_delay_seconds = delay_seconds
            state.last_attempts = attempts

    def record_success(
        self,
        job_id: str,
        task: str,
        *,
        runtime_seconds: float,
        attempts: int,
        result: Dict[str, Any] | None = None,
    ) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["success"] += 1
            state.counters["consecutive_failures"] = 0
            state.total_runtime_seconds += runtime_seconds
            state.last_success_at = utcnow()
            state.last_attempts = attempts
            state.last_error = None
            state.last_error_at = None
            if result is not None:
                state.last_result = result

    def record_run_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["run_failures"] += 1
            state.total_runtime_seconds += runtime_seconds
            state.last_error = error
            state.last_error_at = utcnow()
            state.last_attempts = attempts

    def snapshot(self) -> SchedulerSnapshot:
        with self._lock:
            jobs = {job_id: state.snapshot() for job_id, state in self._jobs.items()}
        totals: Dict[str, int] = {}
        for key in ("runs", "success", "run_failures", "attempt_failures", "retries"):
            totals[key] = sum(job.totals[key] for job in jobs.values())
        return SchedulerSnapshot(totals=totals, jobs=jobs)


_SCHEDULER_STORE = JobSchedulerObservabilityStore()


def get_job_scheduler_store() -> JobSchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = [
    "JobSchedulerObservabilityStore",
    "SchedulerJobSnapshot",
    "SchedulerSnapshot",
    "get_job_scheduler_store",
]
