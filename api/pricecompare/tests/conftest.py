"""Test fixtures and configuration for PriceCompare API tests."""
from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Iterator
from decimal import Decimal
from typing import Optional, Union

import pytest


def pytest_configure(config):
    """Set up environment variables before any test imports happen."""
    os.environ["ENVIRONMENT"] = "development"
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
    os.environ["REDIS_URL"] = "redis://localhost:6379/0"
    os.environ["CACHE_BACKEND"] = "memory"
    os.environ["CORS_ORIGINS"] = "http://localhost:5173"
    os.environ["RATE_LIMIT_ENABLED"] = "false"
    os.environ["GOOGLE_MAPS_API_KEY"] = ""

    try:
        from pricecompare.core.config import get_settings
        get_settings.cache_clear()
    except ImportError:
        pass


from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pricecompare.db.base import Base
from pricecompare.services.domain import RawMatch, SaleTerms
from pricecompare.services.errors import PriceSourceError
from pricecompare.services.price_source import PriceSource

Response = Union[list[RawMatch], Exception]


def make_match(
    store_name: str,
    price: Union[str, float],
    *,
    chain: str = "Shufersal",
    address: str = "Dizengoff 50, Tel Aviv",
    sale: Optional[SaleTerms] = None,
) -> RawMatch:
    return RawMatch(
        chain=chain,
        store_name=store_name,
        address=address,
        unit_price=Decimal(str(price)),
        sale=sale,
    )


class FakePriceSource(PriceSource):
    """In-memory price source keyed by identifier; records every search."""

    def __init__(self, responses: Optional[dict[str, Response]] = None, delay: float = 0.0) -> None:
        self.responses: dict[str, Response] = dict(responses or {})
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def search(self, city: str, identifier: str) -> list[RawMatch]:
        self.calls.append((city, identifier))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            response = self.responses.get(identifier, [])
            if isinstance(response, Exception):
                raise response
            return list(response)
        finally:
            self.in_flight -= 1

    @property
    def identifiers(self) -> list[str]:
        return [identifier for _, identifier in self.calls]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_source() -> FakePriceSource:
    return FakePriceSource()


@pytest.fixture
def tel_aviv_source() -> FakePriceSource:
    """Store A sells barcode 123 at 5.00; store B sells it at 4.50 and Milk at 6.00."""
    return FakePriceSource(
        {
            "123": [
                make_match("Store A", "5.00", chain="Chain A", address="Herzl 1, Tel Aviv"),
                make_match("Store B", "4.50", chain="Chain B", address="Ibn Gabirol 2, Tel Aviv"),
            ],
            "Milk": [
                make_match("Store B", "6.00", chain="Chain B", address="Ibn Gabirol 2, Tel Aviv"),
            ],
        }
    )


@pytest.fixture
def failing_source() -> FakePriceSource:
    return FakePriceSource({"123": PriceSourceError("boom")})


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncIterator[AsyncSession]:
    """Create an async session for testing."""
    factory = async_sessionmaker(async_engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def comparison_service(tel_aviv_source):
    from pricecompare.services.cache import MemoryCacheStore, ResultCache
    from pricecompare.services.comparison import ComparisonService

    return ComparisonService(
        tel_aviv_source,
        cache=ResultCache(MemoryCacheStore(), ttl=60),
        enricher=None,
    )


@pytest.fixture
def client(comparison_service) -> Iterator[TestClient]:
    """Create a test client whose comparison service uses the fake price source."""
    from pricecompare.core.config import get_settings
    get_settings.cache_clear()

    from pricecompare.main import app
    from pricecompare.routes.compare import get_comparison_service

    app.dependency_overrides[get_comparison_service] = lambda: comparison_service
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def test_settings():
    """Get test settings."""
    from pricecompare.core.config import get_settings
    get_settings.cache_clear()
    return get_settings()
