"""Scheduler runtime for recurring promotion jobs."""

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

from promo_api.observability.scheduler import SchedulerObservabilityStore, get_scheduler_store

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


class PromotionJobScheduler:
    """Register recurring jobs on APScheduler and run them with retries."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        config_path: Path,
        observability: SchedulerObservabilityStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._is_running = False
        self._observability = observability or get_scheduler_store()
        self._sleep = sleep

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.jobs:
            func = resolve_task(job.task)
            scheduler.add_job(
                self.run_job,
                trigger=CronTrigger.from_crontab(job.cron, timezone=timezone),
                args=[job, func],
                id=job.id,
                replace_existing=True,
            )
            logger.info("Registered promotion job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        self._is_running = True
        logger.info("Promotion job scheduler started", jobs=len(config.jobs))

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        self._is_running = False
        logger.info("Promotion job scheduler stopped")

    async def run_job(self, job: JobDefinition, func: JobCallable | None = None) -> Any:
        """Run ``job`` once, retrying with exponential backoff and jitter.

        Returns the job's result, or ``None`` once every attempt has failed. Failures
        are recorded and logged rather than raised so the scheduler keeps firing.
        """

        func = func or resolve_task(job.task)
        attempts_allowed = max(job.max_attempts, 1)
        self._observability.record_dispatch(job.id, job.task)
        started_at = time.perf_counter()

        for attempt in range(1, attempts_allowed + 1):
            try:
                result = await func(session_factory=self._session_factory, **job.kwargs)
            except Exception as exc:
                error = str(exc)
                self._observability.record_attempt_failure(job.id, job.task, attempts=attempt, error=error)
                if attempt >= attempts_allowed:
                    self._observability.record_run_failure(
                        job.id,
                        job.task,
                        runtime_seconds=time.perf_counter() - started_at,
                        attempts=attempt,
                        error=error,
                    )
                    logger.exception(
                        "Scheduled job failed after retries",
                        job_id=job.id,
                        task=job.task,
                        attempts=attempt,
                        error=error,
                    )
                    return None

                delay = job.backoff_delay(attempt)
                if job.jitter_seconds:
                    delay += random.uniform(0, job.jitter_seconds)
                self._observability.record_retry(job.id, job.task, delay_seconds=delay, attempts=attempt + 1)
                logger.warning(
                    "Scheduled job retrying",
                    job_id=job.id,
                    task=job.task,
                    attempt=attempt + 1,
                    delay_seconds=delay,
                )
                if delay:
                    await self._sleep(delay)
                continue

            runtime_seconds = time.perf_counter() - started_at
            self._observability.record_success(job.id, job.task, runtime_seconds=runtime_seconds, attempts=attempt)
            logger.info(
                "Scheduled job completed",
                job_id=job.id,
                task=job.task,
                attempts=attempt,
                runtime_seconds=runtime_seconds,
            )
            return result
        return None

    def health(self) -> dict[str, object]:
        """Scheduler state and per-job metrics for diagnostics."""

        snapshot = self._observability.snapshot()
        config_jobs = self._config.jobs if self._config else []
        return {
            "running": self._is_running,
            "configured_jobs": len(config_jobs),
            "totals": snapshot.totals,
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.max_attempts,
                    "metrics": snapshot.jobs.get(job.id),
                }
                for job in config_jobs
            ],
        }


__all__ = ["PromotionJobScheduler", "resolve_task"]
