"""Dispatch metrics for jobs registered with the APScheduler runner."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class JobRunState:
    job_id: str
    task: str
    runs: int = 0
    successes: int = 0
    failures: int = 0
    retries: int = 0
    consecutive_failures: int = 0
    runtime_seconds: float = 0.0
    last_attempts: int = 0
    last_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None

    def as_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        for key in ("last_started_at", "last_success_at", "last_error_at"):
            payload[key] = _iso(payload[key])
        return payload


class JobSchedulerObservabilityStore:
    """Per-job counters updated by the scheduler's retry wrapper."""

    def __init__(self) -> None:
        self._lock: Lock = Lock()
        self._jobs: Dict[str, JobRunState] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _state(self, job_id: str, task: str) -> JobRunState:
        state = self._jobs.setdefault(job_id, JobRunState(job_id=job_id, task=task))
        state.task = task
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.runs += 1
            state.last_attempts = 0
            state.last_started_at = _utcnow()

    def record_retry(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.retries += 1
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()

    def record_success(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.successes += 1
            state.consecutive_failures = 0
            state.runtime_seconds += runtime_seconds
            state.last_attempts = attempts
            state.last_success_at = _utcnow()

    def record_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.failures += 1
            state.consecutive_failures += 1
            state.runtime_seconds += runtime_seconds
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            return {job_id: state.as_dict() for job_id, state in self._jobs.items()}


_SCHEDULER_STORE = JobSchedulerObservabilityStore()


def get_scheduler_store() -> JobSchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = ["JobRunState", "JobSchedulerObservabilityStore", "get_scheduler_store"]
