from __future__ import annotations

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from promo_api.app import create_app
from promo_api.core.settings import settings
from promo_api.observability.marketing import MarketingObservabilityStore, get_marketing_store
from promo_api.observability.scheduler import get_scheduler_store
from promo_api.observability.tracing import parse_otlp_headers


def test_marketing_store_snapshot_and_reset() -> None:
    store = MarketingObservabilityStore()
    store.record_claim("claimed")
    store.record_claim("claimed")
    store.record_claim("coupon_sold_out")
    store.record_redemption("used", Decimal("7.50"))
    store.record_reversal("noop")
    store.record_sweep(3)

    payload = store.snapshot().as_dict()
    assert payload["claims"] == {"claimed": 2, "coupon_sold_out": 1}
    assert payload["redemptions"] == {"used": 1}
    assert payload["reversals"] == {"noop": 1}
    assert payload["sweeps"]["runs"] == 1
    assert payload["sweeps"]["expired"] == 3
    assert payload["discount_granted_total"] == 7.5

    store.reset()
    cleared = store.snapshot().as_dict()
    assert cleared["claims"] == {}
    assert cleared["sweeps"]["last_run_at"] is None


@pytest.mark.asyncio
async def test_marketing_snapshot_requires_key() -> None:
    app = create_app()
    previous_key = settings.checkout_api_key
    settings.checkout_api_key = "snapshot-key"

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            denied = await client.get("/api/v1/observability/marketing")
            allowed = await client.get(
                "/api/v1/observability/marketing",
                headers={"X-API-Key": "snapshot-key"},
            )
    finally:
        settings.checkout_api_key = previous_key

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert set(allowed.json()) == {"claims", "redemptions", "reversals", "sweeps", "discount_granted_total"}


@pytest.mark.asyncio
async def test_prometheus_metrics_include_coupon_counters() -> None:
    app = create_app()
    store = get_marketing_store()
    store.record_claim("claimed")
    store.record_redemption("used", Decimal("10"))
    store.record_sweep(2)
    get_scheduler_store().reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/observability/prometheus")

    assert response.status_code == 200
    body = response.text
    assert 'promo_coupon_claims_total{outcome="claimed"} 1' in body
    assert 'promo_coupon_redemptions_total{outcome="used"} 1' in body
    assert "promo_coupon_discount_granted_total 10.0" in body
    assert "promo_coupon_expired_total 2" in body
    assert "promo_scheduler_runs_total 0" in body


def test_parse_otlp_headers() -> None:
    assert parse_otlp_headers(None) is None
    assert parse_otlp_headers("authorization=Bearer abc, x-team = promo,broken,=novalue") == {
        "authorization": "Bearer abc",
        "x-team": "promo",
    }
