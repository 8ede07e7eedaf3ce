"""
Health check service for the latest-values service.

Liveness only says the process answers. Readiness checks the
measurement store within a timeout and reports how long it took.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from store.base import MeasurementStore

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class DependencyHealth:
    """
    Health status of a single dependency.

    Attributes:
        name: The name of the dependency (e.g., "measurement_store")
        healthy: Whether the dependency is healthy and responding
        response_time_ms: The time taken to check the dependency in milliseconds
        error: Optional error message if the dependency check failed
    """
    name: str
    healthy: bool
    response_time_ms: float
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "name": self.name,
            "healthy": self.healthy,
            "response_time_ms": round(self.response_time_ms, 2),
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class HealthStatus:
    """Overall readiness: "healthy" or "unhealthy"."""
    status: str
    timestamp: str = field(default_factory=_timestamp)
    dependencies: list[DependencyHealth] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "dependencies": [dep.to_dict() for dep in self.dependencies],
        }


class HealthCheckService:
    """
    Checks readiness and liveness of the service.

    Attributes:
        store: The measurement store backing the latest-value index
        check_timeout: Timeout in seconds for the store check (default: 5.0)
    """

    def __init__(self, store: "MeasurementStore", check_timeout: float = 5.0):
        self.store = store
        self.check_timeout = check_timeout

    async def check_readiness(self) -> HealthStatus:
        """Check the measurement store and derive the overall status."""
        store_health = await self._check_store()
        return HealthStatus(
            status="healthy" if store_health.healthy else "unhealthy",
            dependencies=[store_health],
        )

    async def check_liveness(self) -> dict[str, Any]:
        """Simple liveness check - process is running."""
        return {"status": "alive", "timestamp": _timestamp()}

    async def check_health(self) -> dict[str, Any]:
        """Basic health check - service is accepting requests."""
        return {"status": "ok", "timestamp": _timestamp()}

    async def _check_store(self) -> DependencyHealth:
        start_time = time.perf_counter()
        error: Optional[str] = None
        healthy = False

        try:
            healthy = await asyncio.wait_for(self.store.health_check(), timeout=self.check_timeout)
            if not healthy:
                error = "Measurement store health check returned False"
        except asyncio.TimeoutError:
            error = f"Measurement store health check timed out after {self.check_timeout} seconds"
        except Exception as e:
            error = f"Measurement store health check failed: {e}"

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        if error:
            logger.warning(error, extra={"extra_data": {"response_time_ms": round(elapsed_ms, 2)}})
        else:
            logger.debug(f"Measurement store health check passed in {elapsed_ms:.2f}ms")

        return DependencyHealth(
            name="measurement_store",
            healthy=healthy,
            response_time_ms=elapsed_ms,
            error=error,
        )
