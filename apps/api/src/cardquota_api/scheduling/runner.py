"""APScheduler runtime for jobs declared in the schedule TOML."""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from cardquota_api.observability.scheduler import get_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]


def resolve_task(task: str) -> JobCallable:
    """Import ``package.module.function`` and check it is a coroutine function."""

    module_name, _, attr = task.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {task}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {task} not found")
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"Task {task} must be an async function")
    return func


class JobScheduler:
    """Registers configured jobs on an ``AsyncIOScheduler`` and retries failed runs."""

    def __init__(self, *, session_factory: SessionFactory, config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._observability = get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        zone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=zone)

        for job in config.jobs:
            scheduler.add_job(
                self.build_runner(resolve_task(job.task), job),
                trigger=CronTrigger.from_crontab(job.cron, timezone=zone),
                id=job.id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("Registered scheduled job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        logger.info("Job scheduler started", jobs=len(config.jobs), timezone=config.timezone)

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Job scheduler stopped")

    def build_runner(self, func: JobCallable, job: JobDefinition) -> Callable[[], Awaitable[None]]:
        async def _run() -> None:
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()

            for attempt in range(1, job.max_attempts + 1):
                try:
                    await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    if attempt >= job.max_attempts:
                        self._observability.record_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=str(exc),
                        )
                        logger.exception("Scheduled job failed", job_id=job.id, attempts=attempt, error=str(exc))
                        return

                    delay = job.backoff_delay(attempt)
                    if job.jitter_seconds:
                        delay += random.uniform(0, job.jitter_seconds)
                    self._observability.record_retry(job.id, job.task, attempts=attempt, error=str(exc))
                    logger.warning(
                        "Scheduled job retrying",
                        job_id=job.id,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                        error=str(exc),
                    )
                    if delay:
                        await asyncio.sleep(delay)
                else:
                    runtime_seconds = time.perf_counter() - started_at
                    self._observability.record_success(
                        job.id, job.task, runtime_seconds=runtime_seconds, attempts=attempt
                    )
                    logger.info(
                        "Scheduled job completed",
                        job_id=job.id,
                        attempts=attempt,
                        runtime_seconds=runtime_seconds,
                    )
                    return

        return _run

    def health(self) -> dict[str, object]:
        metrics = self._observability.snapshot()
        jobs = self._config.jobs if self._config else []
        return {
            "running": self.is_running,
            "configured_jobs": len(jobs),
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.max_attempts,
                    "metrics": metrics.get(job.id),
                }
                for job in jobs
            ],
        }


__all__ = ["JobScheduler", "resolve_task"]
