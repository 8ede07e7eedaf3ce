"""
Health check module: liveness of the process and readiness of the
measurement store.
"""

from health.service import (
    DependencyHealth,
    HealthCheckService,
    HealthStatus,
)

__all__ = [
    "DependencyHealth",
    "HealthCheckService",
    "HealthStatus",
]
