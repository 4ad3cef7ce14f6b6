from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from cardquota_api.core.settings import settings
from cardquota_api.observability.quota import get_quota_store

router = APIRouter(prefix="/health")


class QuotaRefreshHealth(BaseModel):
    status: Literal["ready", "starting", "disabled", "degraded"]
    mode: Literal["worker", "scheduler", "disabled"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    worker: dict[str, Any] | None = None
    scheduler: dict[str, Any] | None = None
    metrics: dict[str, Any]


@router.get("/quota-refresh", response_model=QuotaRefreshHealth)
async def quota_refresh_health(request: Request) -> QuotaRefreshHealth:
    """State of whichever component drives the quota refresh sweep."""

    metrics = get_quota_store().snapshot().as_dict()

    scheduler = getattr(request.app.state, "job_scheduler", None)
    if settings.job_scheduler_enabled and scheduler is not None:
        running = scheduler.is_running
        return QuotaRefreshHealth(
            status="ready" if running else "degraded",
            mode="scheduler",
            detail=None if running else "Job scheduler not running",
            scheduler=scheduler.health(),
            metrics=metrics,
        )

    worker = getattr(request.app.state, "quota_refresh_worker", None)
    if settings.quota_refresh_worker_enabled and worker is not None:
        worker_health = worker.health()
        status: Literal["ready", "starting", "degraded"] = "ready" if worker.is_running else "starting"
        detail = None
        if worker_health["suppressed_errors"]:
            status = "degraded"
            detail = f"Sweeps failing: {', '.join(sorted(worker_health['suppressed_errors']))}"
        return QuotaRefreshHealth(status=status, mode="worker", detail=detail, worker=worker_health, metrics=metrics)

    return QuotaRefreshHealth(
        status="disabled",
        mode="disabled",
        detail="Quota refresh disabled via settings",
        metrics=metrics,
    )
