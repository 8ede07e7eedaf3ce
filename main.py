"""
HTTP surface of the latest-values service.

GET /v1/latest answers with the latest value of every parameter at
every matching location, never paginated, plus the total match count
in ``meta.found``. Health routes report liveness and store readiness.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from config.settings import Settings, StoreBackend, get_settings, validate_startup
from errors.handlers import register_exception_handlers
from health.service import HealthCheckService
from ingestion.service import MeasurementIngestionService
from latest.coordinator import QueryCoordinator
from latest.index import LatestValueIndex
from middleware.request_id import RequestIDMiddleware
from store.base import MeasurementStore
from store.memory_store import InMemoryMeasurementStore
from store.redis_store import RedisMeasurementStore
from telemetry.service import TelemetryService, initialize_telemetry

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

router = APIRouter()


def build_store(settings: Settings) -> MeasurementStore:
    """Create the measurement store selected by the settings."""
    if settings.effective_store_backend == StoreBackend.REDIS:
        return RedisMeasurementStore(settings.redis_url, key_prefix=settings.redis_key_prefix)
    if settings.store_backend == StoreBackend.REDIS:
        logger.warning("redis_url not configured, falling back to the in-memory measurement store")
    return InMemoryMeasurementStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the measurement store on startup, close it on shutdown."""
    store = app.state.store
    manage_connection = isinstance(store, RedisMeasurementStore) and store.client is None
    if manage_connection:
        await store.connect()
    logger.info(
        "Latest-values API started",
        extra={"extra_data": {"store": type(store).__name__, "version": API_VERSION}}
    )

    yield

    if manage_connection:
        await store.disconnect()
    logger.info("Latest-values API stopped")


@router.get("/v1/latest")
async def get_latest(request: Request):
    """
    Latest value of each available parameter for every location.

    Query parameters (all optional): country, location, parameter
    (pm25, pm10, so2, no2, o3, co, bc), has_geo (only ``true`` has an
    effect), value_from, value_to. No limit is applied.
    """
    coordinator: QueryCoordinator = request.app.state.coordinator
    result = await coordinator.query(dict(request.query_params))
    return {
        "meta": {
            "name": request.app.state.settings.api_name,
            "found": result.total_count,
        },
        "results": [summary.to_dict() for summary in result.results],
    }


@router.get("/health")
async def health_basic(request: Request):
    """Returns 200 OK when the service is accepting requests."""
    result = await request.app.state.health.check_health()
    return {**result, "version": API_VERSION}


@router.get("/health/live")
async def health_live(request: Request):
    """Returns 200 OK while the process is running, whatever the store does."""
    result = await request.app.state.health.check_liveness()
    return {**result, "version": API_VERSION}


@router.get("/health/ready")
async def health_ready(request: Request):
    """Returns 200 when the measurement store answers, 503 otherwise."""
    health_status = await request.app.state.health.check_readiness()
    response_data = {**health_status.to_dict(), "version": API_VERSION}

    if not health_status.healthy:
        response_data["failure_reasons"] = [
            {"dependency": dep.name, "error": dep.error}
            for dep in health_status.dependencies
            if not dep.healthy
        ]
        return JSONResponse(status_code=503, content=response_data)

    return response_data


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[MeasurementStore] = None,
    telemetry: Optional[TelemetryService] = None,
) -> FastAPI:
    """
    Build the FastAPI application and wire the engine components.

    Args:
        settings: Settings to use, loaded from the environment if omitted
        store: Measurement store to use, built from settings if omitted
        telemetry: Telemetry service, initialized globally if omitted
    """
    if settings is None:
        settings = get_settings()
    validate_startup(settings)
    if telemetry is None:
        telemetry = initialize_telemetry(settings)
    # An empty store is falsy, so compare with None
    if store is None:
        store = build_store(settings)

    index = LatestValueIndex(store, telemetry=telemetry)

    app = FastAPI(title="Latest Values API", version=API_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.telemetry = telemetry
    app.state.store = store
    app.state.index = index
    app.state.coordinator = QueryCoordinator(
        index,
        telemetry=telemetry,
        timeout_seconds=settings.query_timeout_seconds,
    )
    app.state.health = HealthCheckService(store, check_timeout=settings.health_check_timeout_seconds)
    # In-process writers submit through this service
    app.state.ingestion = MeasurementIngestionService(index, telemetry=telemetry)

    register_exception_handlers(app)
    app.add_middleware(RequestIDMiddleware)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
