import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from subscription_activation.core.config import Settings
from subscription_activation.dependencies import get_app_settings, get_record_store, get_subscription_control
from subscription_activation.main import app
from subscription_activation.models.activation_code import Base
from subscription_activation.models.activation_record import ActivationRecord, ActivationStatus
from subscription_activation.services.memory_store import InMemoryRecordStore
from subscription_activation.services.subscription_control import SubscriptionControl


class StubSubscriptionControl(SubscriptionControl):
    """Records pause/resume calls; set ``pause_error``/``resume_error`` to fail them."""

    def __init__(self) -> None:
        self.paused: list[str] = []
        self.resumed: list[str] = []
        self.statuses: dict[str, str] = {}
        self.pause_error: Exception | None = None
        self.resume_error: Exception | None = None

    async def pause(self, subscription_id: str) -> None:
        self.paused.append(subscription_id)
        if self.pause_error is not None:
            raise self.pause_error

    async def resume(self, subscription_id: str) -> None:
        self.resumed.append(subscription_id)
        # Yield so concurrent redemptions interleave between lookup and swap.
        await asyncio.sleep(0)
        if self.resume_error is not None:
            raise self.resume_error

    async def fetch_status(self, subscription_id: str) -> str:
        return self.statuses.get(subscription_id, "PAUSED")


ISSUED_AT = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_record():
    def _make(code="AB12CD34EF56", subscription_id="SUB123", *, issued_at=ISSUED_AT, used_at=None, **extra):
        return ActivationRecord(
            code=code,
            subscription_id=subscription_id,
            status=ActivationStatus.USED if used_at else ActivationStatus.UNUSED,
            issued_at=issued_at,
            used_at=used_at,
            **extra,
        )

    return _make


@pytest.fixture
def settings() -> Settings:
    return Settings(app_url="https://activate.test", seal_api_key="test-key", record_store="memory")


@pytest.fixture
def memory_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def subscription_control() -> StubSubscriptionControl:
    return StubSubscriptionControl()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'activations.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def client(settings, memory_store, subscription_control):
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_record_store] = lambda: memory_store
    app.dependency_overrides[get_subscription_control] = lambda: subscription_control

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
            yield http
    finally:
        app.dependency_overrides.clear()
