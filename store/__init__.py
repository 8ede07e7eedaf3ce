"""
Measurement store adapters.

The latest-value index is built on top of a MeasurementStore: Redis in
deployed environments, a dictionary in development and tests.
"""

from store.base import MeasurementStore
from store.memory_store import InMemoryMeasurementStore
from store.redis_store import RedisMeasurementStore

__all__ = ["MeasurementStore", "InMemoryMeasurementStore", "RedisMeasurementStore"]
