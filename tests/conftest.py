"""Shared pytest fixtures: SQLite-backed durable store, in-memory fast store, coordinator, API client."""

import logging
from collections.abc import AsyncGenerator
from types import SimpleNamespace
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shortener.config import Settings
from shortener.database import Base
from shortener.dependencies import get_service_manager
from shortener.exceptions import CacheError
from shortener.main import app
from shortener.models import ShortLink
from shortener.registry import NodeRegistry
from shortener.service import CacheAsideCoordinator
from shortener.store import DurableStore
from shortener.validation import URLValidator


class InMemoryFastStore:
    """Dict-backed stand-in for FastStore; set ``fail = True`` to simulate an outage."""

    def __init__(self) -> None:
        self.data: dict[str, object] = {}
        self.ttls: dict[str, Optional[int]] = {}
        self.calls: list[str] = []
        self.fail = False

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.fail:
            raise CacheError(f"{operation}: connection refused")

    async def get(self, key: str) -> Optional[str]:
        self._check("get")
        value = self.data.get(key)
        return None if value is None else str(value)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self._check("set")
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key: str) -> None:
        self._check("delete")
        self.data.pop(key, None)

    async def increment_counter(self, key: str, delta: int = 1, ttl: Optional[int] = None) -> int:
        self._check("increment_counter")
        value = int(self.data.get(key, 0)) + delta
        self.data[key] = value
        if ttl and value == delta:
            self.ttls[key] = ttl
        return value

    async def get_counter(self, key: str) -> int:
        self._check("get_counter")
        return int(self.data.get(key) or 0)

    async def pop_counter(self, key: str) -> int:
        self._check("pop_counter")
        return int(self.data.pop(key, 0) or 0)

    async def scan(self, pattern: str, count: int = 500):
        self._check("scan")
        prefix = pattern.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key

    async def health_check(self) -> None:
        self._check("health_check")

    async def close(self) -> None:
        pass


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        NODE_ID=3,
        BASE_URL="http://sho.rt",
        BLOCKED_DOMAINS=["phishing.example.com"],
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shortener.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def store(session_factory) -> DurableStore:
    return DurableStore(session_factory)


@pytest.fixture
def fast_store() -> InMemoryFastStore:
    return InMemoryFastStore()


@pytest.fixture
def registry() -> NodeRegistry:
    return NodeRegistry()


@pytest.fixture
def validator(settings) -> URLValidator:
    return URLValidator(blocked_domains=settings.BLOCKED_DOMAINS, max_length=settings.MAX_URL_LENGTH)


@pytest.fixture
def coordinator(store, fast_store, validator, registry, settings) -> CacheAsideCoordinator:
    return CacheAsideCoordinator(
        store,
        fast_store,
        validator,
        registry,
        settings,
        logger=logging.getLogger("urlshortener.tests"),
    )


@pytest.fixture
def count_links(session_factory):
    async def _count(original_url: Optional[str] = None) -> int:
        query = select(func.count()).select_from(ShortLink)
        if original_url is not None:
            query = query.where(ShortLink.original_url == original_url)
        async with session_factory() as session:
            return (await session.execute(query)).scalar_one()

    return _count


@pytest.fixture
def service_manager(settings, store, fast_store, coordinator) -> SimpleNamespace:
    return SimpleNamespace(
        settings=settings,
        logger=logging.getLogger("urlshortener.tests"),
        store=store,
        cache=fast_store,
        coordinator=coordinator,
    )


@pytest_asyncio.fixture
async def client(service_manager) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_service_manager() -> SimpleNamespace:
        return service_manager

    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await service_manager.coordinator.drain_clicks()
    app.dependency_overrides.clear()
