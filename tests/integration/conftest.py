"""
Integration test configuration and fixtures.

Builds the full FastAPI application around an in-memory store by
default. Tests that need a real Redis server use the ``redis_store``
fixture, which is skipped unless TEST_REDIS_URL is set.

Environment Variables:
- TEST_REDIS_URL: Redis URL for the Redis-backed tests (e.g. redis://localhost:6379/15)
"""
import asyncio
import os
import uuid
from dataclasses import dataclass, field
from typing import Iterable

import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from latest.models import MeasurementRecord
from main import create_app
from store.memory_store import InMemoryMeasurementStore
from store.redis_store import RedisMeasurementStore
from telemetry.service import TelemetryService


@dataclass
class TestRedisConfig:
    """Configuration of the optional Redis instance used by integration tests."""
    url: str = field(default_factory=lambda: os.getenv("TEST_REDIS_URL", ""))

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    def unique_prefix(self) -> str:
        """A key prefix private to one test."""
        return f"test-latest-{uuid.uuid4().hex[:12]}"


@pytest.fixture(scope="session")
def redis_config() -> TestRedisConfig:
    return TestRedisConfig()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, api_name="latest-api-test")


@pytest.fixture
def api_store() -> InMemoryMeasurementStore:
    return InMemoryMeasurementStore()


@pytest.fixture
def app(settings, api_store):
    return create_app(
        settings=settings,
        store=api_store,
        telemetry=TelemetryService(configure_logging=False),
    )


@pytest.fixture
def client(app):
    """Test client with the lifespan running; server errors become 500s."""
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def seed(app):
    """Submit records through the application's index."""
    def _seed(records: Iterable[MeasurementRecord]) -> None:
        async def submit_all():
            for record in records:
                await app.state.index.submit(record)
        asyncio.run(submit_all())
    return _seed


@pytest.fixture
def redis_store(redis_config):
    """A connected RedisMeasurementStore on a private key prefix."""
    if not redis_config.is_configured:
        pytest.skip("TEST_REDIS_URL not set")

    store = RedisMeasurementStore(redis_config.url, key_prefix=redis_config.unique_prefix())

    async def cleanup():
        await store.connect()
        await store.client.delete(store.entries_key, store.order_key)
        await store.disconnect()

    yield store
    asyncio.run(cleanup())
