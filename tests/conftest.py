import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from promo_api.app import create_app  # noqa: E402
from promo_api.db.base import Base  # noqa: E402
from promo_api.db.session import get_session  # noqa: E402
from promo_api.models import (  # noqa: E402
    Campaign,
    CampaignStatus,
    CampaignType,
    Coupon,
    CouponDiscountType,
    CouponScope,
    CouponStatus,
    User,
)
from promo_api.observability.marketing import get_marketing_store  # noqa: E402


def utc(minutes: int = 0, *, days: int = 0) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days, minutes=minutes)


async def _create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    await _create_schema(engine)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path: Path):
    """File-backed database so concurrent sessions hold separate connections."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'promo.db'}",
        future=True,
        connect_args={"timeout": 30},
    )
    await _create_schema(engine)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_marketing_store():
    get_marketing_store().reset()
    yield


def build_user(email: str = "member@example.com") -> User:
    return User(email=email)


def build_coupon(**overrides) -> Coupon:
    values = {
        "name": "Spring voucher",
        "discount_type": CouponDiscountType.FIXED,
        "value": Decimal("10.00"),
        "min_amount": Decimal("50.00"),
        "max_discount": None,
        "applicable_scope": CouponScope.ALL,
        "total_count": 100,
        "received_count": 0,
        "used_count": 0,
        "per_user_limit": 1,
        "start_time": utc(days=-1),
        "end_time": utc(days=30),
        "valid_days": None,
        "status": CouponStatus.ACTIVE,
    }
    values.update(overrides)
    return Coupon(**values)


def build_campaign(**overrides) -> Campaign:
    values = {
        "name": "Spend more, save more",
        "campaign_type": CampaignType.TIERED_DISCOUNT,
        "rules": {"tiers": [{"minAmount": 100, "discountAmount": 10}, {"minAmount": 200, "discountAmount": 30}]},
        "start_time": utc(days=-1),
        "end_time": utc(days=7),
        "status": CampaignStatus.ACTIVE,
    }
    values.update(overrides)
    return Campaign(**values)
