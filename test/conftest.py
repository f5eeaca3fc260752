"""
Shared pytest fixtures: in-memory SQLite database, fixed clock, mock voice
provider and an HTTP client bound to the FastAPI app.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import codconfirm.models  # noqa: F401
from codconfirm.calls.models import CallAttempt
from codconfirm.orders.models import Order, OrderStatus
from codconfirm.settings.runtime import RuntimeSettings
from codconfirm.shared.database import Base
from codconfirm.stores.models import Store
from codconfirm.telephony.mock_adapter import MockVoiceProvider

MADRID = ZoneInfo("Europe/Madrid")

# Tuesday 11:00 in Madrid (CET, UTC+1)
FIXED_NOW = datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def tz() -> ZoneInfo:
    return MADRID


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def runtime_settings() -> RuntimeSettings:
    return RuntimeSettings(
        wait_minutes=15,
        hour_start=9,
        hour_end=21,
        max_retries=3,
        vapi_key="test-key",
        vapi_assistant_id="asst-123",
        vapi_phone_id="phone-456",
    )


@pytest.fixture
def mock_provider() -> MockVoiceProvider:
    return MockVoiceProvider()


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[Any, None]:
    """Create test database engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: Any) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_store(db_session: AsyncSession) -> Callable[..., Awaitable[Store]]:
    async def _make(**overrides: Any) -> Store:
        values: dict[str, Any] = {
            "name": "Tienda Uno",
            "url": "tienda-uno.myshopify.com",
            "access_token": "shpat_test",
            "is_active": True,
            "cod_gateway_name": "Cash on Delivery",
            "created_at": FIXED_NOW - timedelta(days=10),
        }
        values.update(overrides)
        store = Store(**values)
        db_session.add(store)
        await db_session.commit()
        return store

    return _make


@pytest.fixture
def make_order(db_session: AsyncSession) -> Callable[..., Awaitable[Order]]:
    counter = {"n": 0}

    async def _make(**overrides: Any) -> Order:
        counter["n"] += 1
        n = counter["n"]
        values: dict[str, Any] = {
            "external_order_id": f"50000{n}",
            "order_number": f"#10{n:02d}",
            "customer_name": "María García",
            "customer_phone": "+34600111222",
            "address": "Calle Mayor 1, Madrid, 28013, Spain",
            "product": "Zapatillas x2",
            "amount": Decimal("59.90"),
            "currency": "EUR",
            "status": OrderStatus.PENDING,
            "call_scheduled_at": FIXED_NOW - timedelta(minutes=5),
            "call_attempts": 0,
            "created_at": FIXED_NOW - timedelta(hours=1),
            "updated_at": FIXED_NOW - timedelta(hours=1),
        }
        values.update(overrides)
        order = Order(**values)
        db_session.add(order)
        await db_session.commit()
        return order

    return _make


@pytest.fixture
def make_attempt(db_session: AsyncSession) -> Callable[..., Awaitable[CallAttempt]]:
    async def _make(order: Order, **overrides: Any) -> CallAttempt:
        values: dict[str, Any] = {
            "order_id": order.id,
            "attempt_number": order.call_attempts or 1,
            "provider_call_id": "call-abc",
            "started_at": FIXED_NOW - timedelta(minutes=3),
            "created_at": FIXED_NOW - timedelta(minutes=3),
        }
        values.update(overrides)
        attempt = CallAttempt(**values)
        db_session.add(attempt)
        await db_session.commit()
        return attempt

    return _make


async def reload(session: AsyncSession, model: type, pk: Any) -> Any:
    """Fetch a row bypassing the identity map's cached attribute values."""
    return await session.get(model, pk, populate_existing=True)


def as_naive_utc(value: datetime) -> datetime:
    """SQLite returns naive datetimes; compare on naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class FakeCommerceClient:
    """Returns canned raw orders per store URL."""

    def __init__(self, orders_by_url: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.orders_by_url = orders_by_url or {}
        self.failures: dict[str, Exception] = {}
        self.requested: list[str] = []

    async def fetch_recent_orders(self, store: Any) -> list[dict[str, Any]]:
        self.requested.append(store.url)
        if store.url in self.failures:
            raise self.failures[store.url]
        return list(self.orders_by_url.get(store.url, []))


@pytest.fixture
def commerce_client() -> FakeCommerceClient:
    return FakeCommerceClient()


@pytest_asyncio.fixture
async def api_client(
    session_factory: async_sessionmaker[AsyncSession],
    mock_provider: MockVoiceProvider,
    commerce_client: FakeCommerceClient,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with DB, clock and providers overridden."""
    from codconfirm.commerce.router import get_commerce_client
    from codconfirm.main import app
    from codconfirm.shared.clock import get_clock
    from codconfirm.shared.database import get_db_session
    from codconfirm.telephony.factory import get_voice_provider

    async def _override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _override_get_db_session
    app.dependency_overrides[get_voice_provider] = lambda: mock_provider
    app.dependency_overrides[get_commerce_client] = lambda: commerce_client
    app.dependency_overrides[get_clock] = lambda: (lambda: FIXED_NOW)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def sample_raw_order(**overrides: Any) -> dict[str, Any]:
    """A Shopify-style order paid cash on delivery."""
    order: dict[str, Any] = {
        "id": 820982911946154508,
        "name": "#1001",
        "order_number": 1001,
        "total_price": "59.90",
        "currency": "EUR",
        "phone": None,
        "payment_gateway_names": ["Cash on Delivery (COD)"],
        "customer": {"first_name": "María"},
        "shipping_address": {
            "first_name": "María",
            "last_name": "García",
            "phone": "+34600111222",
            "address1": "Calle Mayor 1",
            "address2": "",
            "city": "Madrid",
            "province": None,
            "zip": "28013",
            "country": "Spain",
        },
        "billing_address": {"phone": "+34999888777"},
        "line_items": [
            {"title": "Zapatillas", "quantity": 2},
            {"title": "Calcetines", "quantity": 1},
        ],
    }
    order.update(overrides)
    return order
