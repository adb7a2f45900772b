from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.settings import settings
from promo_api.db.session import get_session
from promo_api.observability.marketing import get_marketing_store
from promo_api.observability.scheduler import get_scheduler_store


router = APIRouter()

ComponentState = Literal["ready", "starting", "disabled", "error", "degraded"]


class ComponentStatus(BaseModel):
    status: ComponentState
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {
        "database": await _evaluate_database(session),
        "coupon_expiration": _evaluate_expiration_component(request),
        "promotion_scheduler": _evaluate_scheduler_component(request),
    }

    overall: Literal["ready", "degraded", "error"] = "ready"
    for component in components.values():
        if component.status == "error":
            overall = "error"
            break
        if component.status in {"degraded", "starting"}:
            overall = "degraded"
    return ReadinessPayload(status=overall, components=components)


async def _evaluate_database(session: AsyncSession) -> ComponentStatus:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        logger.warning("Readiness database probe failed", error=str(error))
        return ComponentStatus(
            status="error",
            detail="Database unreachable",
            last_error_at=datetime.now(timezone.utc).isoformat(),
        )
    return ComponentStatus(status="ready")


def _evaluate_expiration_component(request: Request) -> ComponentStatus:
    last_sweep = get_marketing_store().snapshot().sweeps.get("last_run_at")
    if settings.marketing_job_scheduler_enabled:
        return ComponentStatus(status="ready", detail="Managed by promotion scheduler", last_success_at=last_sweep)

    worker = getattr(request.app.state, "coupon_expiration_worker", None)
    if not settings.coupon_expiration_worker_enabled or worker is None:
        return ComponentStatus(status="disabled", detail="Coupon expiration worker disabled via settings")

    running = bool(getattr(worker, "is_running", False))
    return ComponentStatus(
        status="ready" if running else "starting",
        detail=None if running else "Coupon expiration worker not running",
        last_success_at=last_sweep,
    )


def _evaluate_scheduler_component(request: Request) -> ComponentStatus:
    scheduler = getattr(request.app.state, "promotion_job_scheduler", None)
    if not settings.marketing_job_scheduler_enabled or scheduler is None:
        return ComponentStatus(status="disabled", detail="Promotion scheduler disabled via settings")

    snapshot = get_scheduler_store().snapshot()
    failing = [
        job_id
        for job_id, job in snapshot.jobs.items()
        if job["totals"].get("consecutive_failures", 0) > 0
    ]
    if failing:
        return ComponentStatus(status="error", detail=f"Jobs failing: {', '.join(sorted(failing))}")
    running = bool(getattr(scheduler, "is_running", False))
    return ComponentStatus(
        status="ready" if running else "starting",
        detail=None if running else "Promotion scheduler not running",
    )
