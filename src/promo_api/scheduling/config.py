"""Loader for the TOML file that declares recurring promotion jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib
from loguru import logger


@dataclass(slots=True)
class JobDefinition:
    """A task path bound to a cron expression and its retry policy."""

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
        """Delay before retrying after ``attempt`` failed, without jitter."""

        delay = self.base_backoff_seconds * (self.backoff_multiplier ** (attempt - 1))
        if self.max_backoff_seconds:
            delay = min(delay, self.max_backoff_seconds)
        return max(delay, 0.0)


@dataclass(slots=True)
class ScheduleConfig:
    timezone: str
    jobs: list[JobDefinition]


def _number(payload: dict[str, Any], key: str, default: float, floor: float) -> float:
    raw = payload.get(key, default)
    try:
        return max(float(raw), floor)
    except (TypeError, ValueError):
        return default


def _parse_job(key: str, payload: Any) -> JobDefinition | None:
    if not isinstance(payload, dict):
        return None
    task = payload.get("task")
    cron = payload.get("cron")
    if not isinstance(task, str) or not isinstance(cron, str):
        return None
    kwargs = payload.get("kwargs", {})
    return JobDefinition(
        id=str(payload.get("id") or key),
        task=task,
        cron=cron,
        kwargs=kwargs if isinstance(kwargs, dict) else {},
        max_attempts=int(_number(payload, "max_attempts", 1, 1)),
        base_backoff_seconds=_number(payload, "base_backoff_seconds", 5.0, 0.0),
        backoff_multiplier=_number(payload, "backoff_multiplier", 2.0, 1.0),
        max_backoff_seconds=_number(payload, "max_backoff_seconds", 60.0, 0.0),
        jitter_seconds=_number(payload, "jitter_seconds", 1.0, 0.0),
    )


def load_job_definitions(config_path: Path) -> ScheduleConfig:
    """Load job definitions from a TOML schedule file.

    Entries missing a string ``task`` or ``cron`` are skipped with a warning.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Schedule config not found: {config_path}")

    data = tomllib.loads(config_path.read_text())
    jobs: list[JobDefinition] = []
    for key, payload in data.get("jobs", {}).items():
        job = _parse_job(key, payload)
        if job is None:
            logger.warning("Skipping malformed schedule entry", job_key=key, path=str(config_path))
            continue
        jobs.append(job)

    return ScheduleConfig(timezone=str(data.get("timezone", "UTC")), jobs=jobs)


__all__ = ["JobDefinition", "ScheduleConfig", "load_job_definitions"]
