from pathlib import Path

import pytest

from conftest import build_coupon, build_user, utc
from promo_api.models.marketing import UserCoupon
from promo_api.observability.scheduler import SchedulerObservabilityStore
from promo_api.scheduling import JobDefinition, PromotionJobScheduler, ScheduleConfig, load_job_definitions
from promo_api.scheduling.runner import resolve_task


def _job(job_id: str, **overrides) -> JobDefinition:
    values = {
        "id": job_id,
        "task": "tests.inline",
        "cron": "* * * * *",
        "kwargs": {},
        "max_attempts": 1,
        "base_backoff_seconds": 0.0,
        "backoff_multiplier": 1.0,
        "max_backoff_seconds": 0.0,
        "jitter_seconds": 0.0,
    }
    values.update(overrides)
    return JobDefinition(**values)


def _scheduler(tmp_path: Path, store: SchedulerObservabilityStore, **kwargs) -> PromotionJobScheduler:
    return PromotionJobScheduler(
        session_factory=lambda: None,
        config_path=tmp_path / "noop.toml",
        observability=store,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_scheduler_retries_with_backoff_and_records_metrics(tmp_path: Path) -> None:
    store = SchedulerObservabilityStore()
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    scheduler = _scheduler(tmp_path, store, sleep=fake_sleep)
    attempts = 0

    async def flaky_job(*, session_factory) -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise RuntimeError("boom")
        return "done"

    job = _job("job-alpha", max_attempts=3, base_backoff_seconds=2.0, backoff_multiplier=3.0, max_backoff_seconds=5.0)
    result = await scheduler.run_job(job, flaky_job)

    assert result == "done"
    assert delays == [2.0, 5.0]
    snapshot = store.snapshot()
    assert snapshot.totals == {"runs": 1, "success": 1, "run_failures": 0, "attempt_failures": 2, "retries": 2}
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot["last_success_at"] is not None
    assert job_snapshot["last_error"] is None
    assert job_snapshot["totals"]["consecutive_failures"] == 0


@pytest.mark.asyncio
async def test_scheduler_records_final_failure_without_raising(tmp_path: Path) -> None:
    store = SchedulerObservabilityStore()
    scheduler = _scheduler(tmp_path, store)

    async def failing_job(*, session_factory) -> None:
        raise RuntimeError("boom")

    job = _job("job-failure", max_attempts=2)
    assert await scheduler.run_job(job, failing_job) is None

    snapshot = store.snapshot()
    assert snapshot.totals["run_failures"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot["totals"]["consecutive_failures"] == 2
    assert job_snapshot["last_error"] == "boom"
    assert job_snapshot["last_error_at"] is not None


@pytest.mark.asyncio
async def test_scheduler_health_snapshot(tmp_path: Path) -> None:
    store = SchedulerObservabilityStore()
    scheduler = _scheduler(tmp_path, store)

    async def successful_job(*, session_factory) -> None:
        return None

    job = _job("job-health")
    await scheduler.run_job(job, successful_job)

    scheduler._config = ScheduleConfig(timezone="UTC", jobs=[job])
    scheduler._is_running = True

    health = scheduler.health()
    assert health["running"] is True
    assert health["configured_jobs"] == 1
    assert health["totals"]["runs"] == 1
    assert health["jobs"][0]["metrics"]["totals"]["runs"] == 1
    assert health["jobs"][0]["metrics"]["last_success_at"] is not None


@pytest.mark.asyncio
async def test_scheduler_runs_coupon_expiration_task(tmp_path: Path, session_factory) -> None:
    async with session_factory() as session:
        user = build_user()
        coupon = build_coupon(received_count=1)
        session.add_all([user, coupon])
        await session.flush()
        session.add(UserCoupon(user_id=user.id, coupon_id=coupon.id, claimed_at=utc(days=-3), expires_at=utc(days=-1)))
        await session.commit()

    store = SchedulerObservabilityStore()
    scheduler = PromotionJobScheduler(
        session_factory=session_factory,
        config_path=tmp_path / "noop.toml",
        observability=store,
    )
    job = _job("coupon_expiration", task="promo_api.jobs.marketing.run_coupon_expiration")

    summary = await scheduler.run_job(job)

    assert summary["expired"] == 1
    assert store.snapshot().totals["success"] == 1


def test_load_job_definitions_parses_retry_fields_and_skips_malformed(tmp_path: Path) -> None:
    config_path = tmp_path / "schedules.toml"
    config_path.write_text(
        """
        timezone = "Europe/Berlin"

        [jobs.sample]
        task = "module.task"
        cron = "*/5 * * * *"
        max_attempts = 5
        base_backoff_seconds = 2
        backoff_multiplier = 3
        max_backoff_seconds = 30
        jitter_seconds = 1.5

        [jobs.broken]
        cron = "* * * * *"
        """
    )

    config = load_job_definitions(config_path)
    assert config.timezone == "Europe/Berlin"
    assert [job.id for job in config.jobs] == ["sample"]
    job = config.jobs[0]
    assert job.max_attempts == 5
    assert job.base_backoff_seconds == 2.0
    assert job.backoff_multiplier == 3.0
    assert job.max_backoff_seconds == 30.0
    assert job.jitter_seconds == 1.5
    assert job.backoff_delay(1) == 2.0
    assert job.backoff_delay(3) == 18.0
    assert job.backoff_delay(4) == 30.0


def test_bundled_schedule_registers_coupon_expiration() -> None:
    config_path = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"
    config = load_job_definitions(config_path)

    tasks = {job.id: job.task for job in config.jobs}
    assert tasks["coupon_expiration"] == "promo_api.jobs.marketing.run_coupon_expiration"
    assert resolve_task(tasks["coupon_expiration"]).__name__ == "run_coupon_expiration"


def test_missing_schedule_and_bad_task_paths(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_job_definitions(tmp_path / "absent.toml")
    with pytest.raises(ValueError):
        resolve_task("no_module_path")
    with pytest.raises(AttributeError):
        resolve_task("promo_api.jobs.marketing.does_not_exist")
    with pytest.raises(TypeError):
        resolve_task("promo_api.services.marketing.discounts.calculate_discount")
