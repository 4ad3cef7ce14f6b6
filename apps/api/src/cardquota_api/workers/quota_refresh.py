"""Background worker that resets quota ledger rows on schedule."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict

from loguru import logger

from cardquota_api.core.settings import settings
from cardquota_api.observability.quota import get_quota_store
from cardquota_api.services.quota.refresh import RefreshSummary, SessionFactory, refresh_due_quotas


class QuotaRefreshWorker:
    """Periodically sweeps pending ledger rows and resets the due ones.

    A failing tick is logged once per exception class; further failures of
    the same class stay quiet until ``error_cooldown_seconds`` have passed.
    The loop itself never exits on errors.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: float | None = None,
        startup_delay_seconds: float | None = None,
        error_cooldown_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.quota_refresh_interval_seconds
        self.startup_delay_seconds = (
            startup_delay_seconds
            if startup_delay_seconds is not None
            else settings.quota_refresh_startup_delay_seconds
        )
        self.error_cooldown_seconds = (
            error_cooldown_seconds
            if error_cooldown_seconds is not None
            else settings.quota_refresh_error_cooldown_seconds
        )
        self._clock = clock
        self._error_logged_at: Dict[str, float] = {}
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False
        self.last_summary: RefreshSummary | None = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Quota refresh worker started",
            interval_seconds=self.interval_seconds,
            startup_delay_seconds=self.startup_delay_seconds,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Quota refresh worker stopped")

    async def run_once(self) -> RefreshSummary:
        """Run one sweep; errors propagate to the caller."""

        summary = await refresh_due_quotas(self._session_factory)
        self.last_summary = summary
        get_quota_store().record_sweep(refreshed=summary.refreshed)
        if summary.refreshed:
            logger.info("Quota refresh sweep completed", **summary.as_dict())
        return summary

    async def tick(self) -> RefreshSummary | None:
        """Run one sweep, recording instead of raising failures."""

        try:
            summary = await self.run_once()
        except Exception as exc:
            self._record_failure(exc)
            return None
        self._error_logged_at.clear()
        return summary

    def should_log(self, error_kind: str) -> bool:
        """True when ``error_kind`` is outside its cooldown window; opens a new window."""

        now = self._clock()
        logged_at = self._error_logged_at.get(error_kind)
        if logged_at is not None and now - logged_at < self.error_cooldown_seconds:
            return False
        self._error_logged_at[error_kind] = now
        return True

    def _record_failure(self, exc: Exception) -> None:
        error_kind = type(exc).__name__
        get_quota_store().record_sweep_failure(error_kind, str(exc))
        if self.should_log(error_kind):
            logger.opt(exception=exc).error(
                "Quota refresh sweep failed",
                error_kind=error_kind,
                error=str(exc),
                cooldown_seconds=self.error_cooldown_seconds,
            )
        else:
            logger.debug("Quota refresh sweep failed again", error_kind=error_kind)

    async def _sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return True when a stop was requested."""

        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run_loop(self) -> None:
        if self.startup_delay_seconds and await self._sleep(self.startup_delay_seconds):
            return
        while not self._stop_event.is_set():
            await self.tick()
            if await self._sleep(self.interval_seconds):
                return

    def health(self) -> Dict[str, object]:
        now = self._clock()
        suppressed = {
            kind: round(self.error_cooldown_seconds - (now - logged_at), 3)
            for kind, logged_at in self._error_logged_at.items()
            if now - logged_at < self.error_cooldown_seconds
        }
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "error_cooldown_seconds": self.error_cooldown_seconds,
            "suppressed_errors": suppressed,
            "last_summary": self.last_summary.as_dict() if self.last_summary else None,
        }


__all__ = ["QuotaRefreshWorker"]
