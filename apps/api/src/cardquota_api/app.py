from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from cardquota_api.core.settings import settings
from cardquota_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import JobScheduler
from .workers import QuotaRefreshWorker


APP_VERSION = "0.1.0"
SERVICE_NAME = "cardquota-api"


def _session_factory():
    return async_session()


def _schedule_path() -> Path:
    path = Path(settings.job_schedule_path)
    if not path.is_absolute():
        path = Path(__file__).resolve().parent.parent.parent / path
    return path


@asynccontextmanager
async def lifespan(app: FastAPI):
    refresh_worker = QuotaRefreshWorker(
        session_factory=_session_factory,
        interval_seconds=settings.quota_refresh_interval_seconds,
        startup_delay_seconds=settings.quota_refresh_startup_delay_seconds,
        error_cooldown_seconds=settings.quota_refresh_error_cooldown_seconds,
    )
    schedule_path = _schedule_path()
    job_scheduler = JobScheduler(session_factory=_session_factory, config_path=schedule_path)

    app.state.quota_refresh_worker = refresh_worker
    app.state.job_scheduler = job_scheduler

    scheduler_enabled = settings.job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Job scheduler failed to start", error=str(exc))
        else:
            logger.info("Job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info("Job scheduler disabled", reason="job_scheduler_enabled is false")

    worker_enabled = settings.quota_refresh_worker_enabled
    if worker_enabled and not scheduler_enabled:
        refresh_worker.start()
    elif worker_enabled:
        logger.info("Quota refresh managed via scheduler", schedule_path=str(schedule_path))
    else:
        logger.info("Quota refresh worker disabled", reason="quota_refresh_worker_enabled is false")

    try:
        yield
    finally:
        if refresh_worker.is_running:
            await refresh_worker.stop()
        if job_scheduler.is_running:
            await job_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the card quota service."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Card Quota API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.otel_tracing_enabled:
        configure_tracing(
            app,
            service_name=SERVICE_NAME,
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
