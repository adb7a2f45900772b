from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Dict


@dataclass
class MarketingSnapshot:
    claims: Dict[str, int]
    redemptions: Dict[str, int]
    reversals: Dict[str, int]
    sweeps: Dict[str, object]
    discount_granted_total: Decimal

    def as_dict(self) -> Dict[str, object]:
        return {
            "claims": dict(self.claims),
            "redemptions": dict(self.redemptions),
            "reversals": dict(self.reversals),
            "sweeps": dict(self.sweeps),
            "discount_granted_total": float(self.discount_granted_total),
        }


class MarketingObservabilityStore:
    """Collect coupon lifecycle counters for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._claims: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._reversals: Dict[str, int] = defaultdict(int)
        self._sweep_runs = 0
        self._expired_total = 0
        self._last_sweep_at: datetime | None = None
        self._discount_total = Decimal("0")

    def record_claim(self, outcome: str) -> None:
        with self._lock:
            self._claims[outcome] += 1

    def record_redemption(self, outcome: str, discount: Decimal | None = None) -> None:
        with self._lock:
            self._redemptions[outcome] += 1
            if discount is not None:
                self._discount_total += discount

    def record_reversal(self, outcome: str) -> None:
        with self._lock:
            self._reversals[outcome] += 1

    def record_sweep(self, expired: int) -> None:
        with self._lock:
            self._sweep_runs += 1
            self._expired_total += expired
            self._last_sweep_at = datetime.now(timezone.utc)

    def snapshot(self) -> MarketingSnapshot:
        with self._lock:
            sweeps: Dict[str, object] = {
                "runs": self._sweep_runs,
                "expired": self._expired_total,
                "last_run_at": self._last_sweep_at.isoformat() if self._last_sweep_at else None,
            }
            return MarketingSnapshot(
                claims=dict(self._claims),
                redemptions=dict(self._redemptions),
                reversals=dict(self._reversals),
                sweeps=sweeps,
                discount_granted_total=self._discount_total,
            )

    def reset(self) -> None:
        with self._lock:
            self._claims.clear()
            self._redemptions.clear()
            self._reversals.clear()
            self._sweep_runs = 0
            self._expired_total = 0
            self._last_sweep_at = None
            self._discount_total = Decimal("0")


_STORE = MarketingObservabilityStore()


def get_marketing_store() -> MarketingObservabilityStore:
    return _STORE


__all__ = ["MarketingObservabilityStore", "MarketingSnapshot", "get_marketing_store"]
