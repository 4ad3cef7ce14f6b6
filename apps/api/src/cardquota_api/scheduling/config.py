"""TOML loader for cron-driven job schedules."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib


@dataclass(slots=True)
class JobDefinition:
    """One scheduled job: an async task path, a crontab line and its retry policy."""

    id: str
    task: str
    cron: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    max_attempts: int = 1
    base_backoff_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 60.0
    jitter_seconds: float = 1.0

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based), without jitter."""

        delay = self.base_backoff_seconds * (self.backoff_multiplier ** (attempt - 1))
        if self.max_backoff_seconds:
            delay = min(delay, self.max_backoff_seconds)
        return max(delay, 0.0)


@dataclass(slots=True)
class ScheduleConfig:
    timezone: str
    jobs: list[JobDefinition]


def _number(payload: dict[str, Any], key: str, default: float, floor: float) -> float:
    value = payload.get(key, default)
    return max(float(value if value is not None else default), floor)


def _parse_job(key: str, payload: dict[str, Any]) -> JobDefinition | None:
    task = payload.get("task")
    cron = payload.get("cron")
    if not isinstance(task, str) or not isinstance(cron, str):
        return None
    kwargs = payload.get("kwargs") if isinstance(payload.get("kwargs"), dict) else {}
    return JobDefinition(
        id=str(payload.get("id") or key),
        task=task,
        cron=cron,
        kwargs=kwargs,
        max_attempts=int(_number(payload, "max_attempts", 1, 1)),
        base_backoff_seconds=_number(payload, "base_backoff_seconds", 5.0, 0.0),
        backoff_multiplier=_number(payload, "backoff_multiplier", 2.0, 1.0),
        max_backoff_seconds=_number(payload, "max_backoff_seconds", 60.0, 0.0),
        jitter_seconds=_number(payload, "jitter_seconds", 1.0, 0.0),
    )


def load_job_definitions(config_path: Path) -> ScheduleConfig:
    """Parse ``[jobs.<name>]`` tables; entries without a task or cron are skipped."""

    if not config_path.exists():
        raise FileNotFoundError(f"Schedule config not found: {config_path}")

    data = tomllib.loads(config_path.read_text())
    jobs = [
        job
        for key, payload in data.get("jobs", {}).items()
        if isinstance(payload, dict) and (job := _parse_job(key, payload)) is not None
    ]
    return ScheduleConfig(timezone=str(data.get("timezone", "UTC")), jobs=jobs)


__all__ = ["JobDefinition", "ScheduleConfig", "load_job_definitions"]
