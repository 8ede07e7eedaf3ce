"""
Shared pytest fixtures and configuration for all tests.
"""
import os
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import Phase, Verbosity, settings

from latest.coordinator import QueryCoordinator
from latest.index import LatestValueIndex
from store.memory_store import InMemoryMeasurementStore
from telemetry.service import TelemetryService

# Hypothesis profiles for the ordering properties
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
    print_blob=True,
)
settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    derandomize=True,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    phases=[Phase.explicit, Phase.reuse, Phase.generate],
)
settings.register_profile(
    "fast",
    max_examples=20,
    verbosity=Verbosity.normal,
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


@pytest.fixture
def telemetry() -> TelemetryService:
    """Telemetry that leaves pytest's log capture in place."""
    return TelemetryService(configure_logging=False)


@pytest.fixture
def memory_store() -> InMemoryMeasurementStore:
    return InMemoryMeasurementStore()


@pytest.fixture
def index(memory_store, telemetry) -> LatestValueIndex:
    return LatestValueIndex(memory_store, telemetry=telemetry)


@pytest.fixture
def coordinator(index, telemetry) -> QueryCoordinator:
    return QueryCoordinator(index, telemetry=telemetry, timeout_seconds=5.0)


@pytest.fixture
def mock_redis() -> MagicMock:
    """Mock async Redis client for unit tests."""
    mock = MagicMock()
    mock.hget = AsyncMock(return_value=None)
    mock.ping = AsyncMock(return_value=True)
    mock.aclose = AsyncMock(return_value=None)
    mock.register_script = MagicMock(return_value=AsyncMock(return_value=1))

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, 1])
    pipeline_cm = MagicMock()
    pipeline_cm.__aenter__ = AsyncMock(return_value=pipe)
    pipeline_cm.__aexit__ = AsyncMock(return_value=False)
    mock.pipeline = MagicMock(return_value=pipeline_cm)
    mock.pipe = pipe
    return mock
