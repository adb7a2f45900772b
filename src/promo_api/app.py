from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from promo_api.core.settings import settings
from promo_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import PromotionJobScheduler
from .workers import CouponExpirationWorker


APP_VERSION = "0.1.0"
SERVICE_NAME = "promo-api"


def _session_factory():
    return async_session()


def _resolve_schedule_path() -> Path:
    schedule_path = Path(settings.marketing_job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    expiration_worker = CouponExpirationWorker(
        session_factory=_session_factory,
        interval_seconds=settings.coupon_expiration_interval_seconds,
    )
    schedule_path = _resolve_schedule_path()
    job_scheduler = PromotionJobScheduler(
        session_factory=_session_factory,
        config_path=schedule_path,
    )

    app.state.coupon_expiration_worker = expiration_worker
    app.state.promotion_job_scheduler = job_scheduler

    scheduler_enabled = settings.marketing_job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Promotion job scheduler failed to start", error=str(exc))
        else:
            logger.info("Promotion job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info(
            "Promotion job scheduler disabled",
            reason="marketing_job_scheduler_enabled is false",
        )

    expiration_enabled = settings.coupon_expiration_worker_enabled
    if expiration_enabled and not scheduler_enabled:
        expiration_worker.start()
        logger.info(
            "Coupon expiration worker enabled",
            interval_seconds=expiration_worker.interval_seconds,
        )
    elif expiration_enabled and scheduler_enabled:
        logger.info(
            "Coupon expiration worker managed via scheduler",
            schedule_path=str(schedule_path),
        )
    else:
        logger.info(
            "Coupon expiration worker disabled",
            reason="coupon_expiration_worker_enabled is false",
        )

    try:
        yield
    finally:
        if job_scheduler.is_running:
            await job_scheduler.stop()
        if expiration_worker.is_running:
            await expiration_worker.stop()


def create_app() -> FastAPI:
    """Application factory for the promotion engine FastAPI service."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
        sql_echo=settings.database_echo,
    )

    app = FastAPI(
        title="Promotion API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name=SERVICE_NAME,
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)
    return app
