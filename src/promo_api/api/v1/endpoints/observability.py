"""Observability endpoints for promotion counters and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from promo_api.api.dependencies.security import require_checkout_api_key
from promo_api.observability.marketing import get_marketing_store
from promo_api.observability.scheduler import get_scheduler_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_checkout_api_key)],
)


@router.get("/marketing", summary="Coupon lifecycle observability snapshot")
async def get_marketing_snapshot() -> dict[str, object]:
    return get_marketing_store().snapshot().as_dict()


@router.get("/scheduler", summary="Promotion scheduler observability snapshot")
async def get_scheduler_snapshot() -> dict[str, object]:
    return get_scheduler_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    marketing = get_marketing_store().snapshot()
    scheduler = get_scheduler_store().snapshot()

    lines: list[str] = []
    labelled = (
        ("promo_coupon_claims_total", "Coupon claim attempts grouped by outcome", marketing.claims),
        ("promo_coupon_redemptions_total", "Coupon redemption attempts grouped by outcome", marketing.redemptions),
        ("promo_coupon_reversals_total", "Coupon reversal attempts grouped by outcome", marketing.reversals),
    )
    for name, description, counts in labelled:
        for outcome, value in sorted(counts.items()):
            lines.extend(_format_metric(name, description, value, labels={"outcome": outcome}))

    lines.extend(
        _format_metric(
            "promo_coupon_discount_granted_total",
            "Discount granted by redeemed coupons",
            float(marketing.discount_granted_total),
        )
    )
    lines.extend(
        _format_metric("promo_coupon_expiration_runs_total", "Coupon expiration sweeps executed", marketing.sweeps["runs"])
    )
    lines.extend(
        _format_metric(
            "promo_coupon_expired_total",
            "Claimed coupons transitioned to expired",
            marketing.sweeps["expired"],
        )
    )

    for key, value in scheduler.totals.items():
        lines.extend(
            _format_metric(
                f"promo_scheduler_{key}_total",
                f"Promotion scheduler job {key.replace('_', ' ')}",
                value,
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n", media_type="text/plain; version=0.0.4")
