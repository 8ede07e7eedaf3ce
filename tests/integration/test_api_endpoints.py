"""
Integration tests for API endpoints.

Verifies /v1/latest and the health routes through the full application
stack: middleware, exception handlers, coordinator, index and store.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from latest.coordinator import QueryCoordinator
from latest.index import LatestValueIndex
from latest.models import Coordinates, MeasurementKey, UpdateOutcome
from main import create_app
from middleware.request_id import REQUEST_ID_HEADER
from telemetry.service import TelemetryService
from tests.factories import at, make_entry, make_record

# Mark all tests in this module as integration tests
pytestmark = pytest.mark.integration

DELHI = Coordinates(latitude=28.63576, longitude=77.22445)


def failing_app(error: Exception):
    """Application whose store scan always raises ``error``."""
    async def broken_scan():
        raise error
        yield  # pragma: no cover

    store = MagicMock()
    store.scan_all = broken_scan
    store.health_check = AsyncMock(return_value=False)
    return create_app(
        settings=Settings(_env_file=None),
        store=store,
        telemetry=TelemetryService(configure_logging=False),
    )


class TestLatestEndpoint:
    """Integration tests for GET /v1/latest."""

    def test_response_shape(self, client, seed):
        seed([make_record(location_id="Punjabi Bagh", parameter="so2", value=7.8, coordinates=DELHI)])

        response = client.get("/v1/latest")

        assert response.status_code == 200
        assert response.json() == {
            "meta": {"name": "latest-api-test", "found": 1},
            "results": [{
                "location": "Punjabi Bagh",
                "city": "Delhi",
                "country": "IN",
                "coordinates": {"latitude": 28.63576, "longitude": 77.22445},
                "measurements": [{
                    "parameter": "so2",
                    "value": 7.8,
                    "lastUpdated": "2015-07-24T11:30:00.000Z",
                    "unit": "µg/m³",
                }],
            }],
        }

    def test_empty_store(self, client):
        response = client.get("/v1/latest")
        assert response.json() == {"meta": {"name": "latest-api-test", "found": 0}, "results": []}

    def test_only_latest_value_per_parameter(self, client, seed):
        seed([
            make_record(location_id="Punjabi Bagh", parameter="so2", timestamp=at(0), value=7.8),
            make_record(location_id="Punjabi Bagh", parameter="so2", timestamp=at(60), value=9.0),
            make_record(location_id="Punjabi Bagh", parameter="so2", timestamp=at(30), value=8.1),
        ])

        data = client.get("/v1/latest", params={"location": "Punjabi Bagh"}).json()

        assert data["meta"]["found"] == 1
        assert data["results"][0]["measurements"] == [{
            "parameter": "so2",
            "value": 9.0,
            "lastUpdated": "2015-07-24T12:30:00.000Z",
            "unit": "µg/m³",
        }]

    def test_value_bound_applies_to_matching_parameter(self, client, seed):
        seed([
            make_record(location_id="A", parameter="pm25", timestamp=at(0), value=10.0),
            make_record(location_id="A", parameter="co", timestamp=at(1), value=1.3),
        ])

        data = client.get("/v1/latest", params={"parameter": "pm25", "value_to": "5"}).json()

        assert data["meta"]["found"] == 0
        assert data["results"] == []

    def test_only_surviving_measurements_returned(self, client, seed):
        seed([
            make_record(location_id="A", parameter="o3", value=55.0),
            make_record(location_id="A", parameter="pm25", value=120.0),
            make_record(location_id="B", parameter="o3", value=20.0),
        ])

        data = client.get("/v1/latest", params={"parameter": "o3", "value_from": "50"}).json()

        assert data["meta"]["found"] == 1
        assert [m["parameter"] for m in data["results"][0]["measurements"]] == ["o3"]

    def test_has_geo(self, client, seed):
        seed([
            make_record(location_id="A", coordinates=DELHI),
            make_record(location_id="B"),
        ])

        with_geo = client.get("/v1/latest", params={"has_geo": "true"}).json()
        explicit_false = client.get("/v1/latest", params={"has_geo": "false"}).json()
        omitted = client.get("/v1/latest").json()

        assert [r["location"] for r in with_geo["results"]] == ["A"]
        assert explicit_false == omitted
        assert omitted["meta"]["found"] == 2
        assert "coordinates" not in omitted["results"][1]

    def test_country_filter(self, client, seed):
        seed([
            make_record(location_id="A", country="IN"),
            make_record(location_id="B", country="GB", city="London"),
        ])

        data = client.get("/v1/latest", params={"country": "gb"}).json()

        assert [r["city"] for r in data["results"]] == ["London"]

    def test_no_pagination(self, client, seed):
        seed([make_record(location_id=f"station-{n:04d}") for n in range(1200)])

        data = client.get("/v1/latest", params={"limit": "10", "page": "2"}).json()

        assert data["meta"]["found"] == 1200
        assert len(data["results"]) == 1200

    def test_invalid_filter_returns_400(self, client):
        response = client.get(
            "/v1/latest",
            params={"value_from": "abc"},
            headers={REQUEST_ID_HEADER: "bad-filter-request"},
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error_code"] == "INVALID_FILTER"
        assert data["details"] == {"filter": "value_from", "value": "abc"}
        assert data["request_id"] == "bad-filter-request"

    def test_store_failure_returns_500_without_partial_results(self):
        app = failing_app(ConnectionError("connection reset by peer"))
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/v1/latest")

        assert response.status_code == 500
        data = response.json()
        assert data["error_code"] == "STORE_UNAVAILABLE"
        assert "results" not in data
        assert response.headers[REQUEST_ID_HEADER] == data["request_id"]

    def test_unexpected_error_returns_generic_500(self, app, monkeypatch):
        async def explode(self, filters=None):
            raise RuntimeError("secret internals")

        monkeypatch.setattr(QueryCoordinator, "query", explode)
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/v1/latest")

        assert response.status_code == 500
        data = response.json()
        assert data["error_code"] == "INTERNAL_ERROR"
        assert "secret" not in data["message"]


class TestHealthEndpoints:
    """Integration tests for health check endpoints."""

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["version"] == "1.0.0"

    def test_liveness(self, client):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readiness_with_memory_store(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["dependencies"][0]["name"] == "measurement_store"
        assert "failure_reasons" not in data

    def test_readiness_fails_when_store_down(self):
        with TestClient(failing_app(ConnectionError("down")), raise_server_exceptions=False) as client:
            response = client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["failure_reasons"][0]["dependency"] == "measurement_store"

    def test_liveness_survives_store_down(self):
        with TestClient(failing_app(ConnectionError("down")), raise_server_exceptions=False) as client:
            assert client.get("/health/live").status_code == 200


class TestRedisBackedIndex:
    """Index semantics against a real Redis server."""

    def test_conditional_write_keeps_newest(self, redis_store):
        key = MeasurementKey("Punjabi Bagh", "so2")

        async def scenario():
            await redis_store.connect()
            try:
                index = LatestValueIndex(redis_store, telemetry=TelemetryService(configure_logging=False))
                outcomes = [
                    await index.submit(make_record(timestamp=at(10), ingested_at=at(11), value=1.0)),
                    await index.submit(make_record(timestamp=at(5), ingested_at=at(20), value=2.0)),
                    await index.submit(make_record(timestamp=at(10), ingested_at=at(12), value=3.0)),
                    await index.submit(make_record(timestamp=at(10), ingested_at=at(12), value=4.0)),
                ]
                held = await index.get(key)
                entries = [entry async for entry in index.snapshot()]
                return outcomes, held, entries
            finally:
                await redis_store.disconnect()

        outcomes, held, entries = asyncio.run(scenario())

        assert outcomes == [
            UpdateOutcome.APPLIED,
            UpdateOutcome.IGNORED_STALE,
            UpdateOutcome.APPLIED,
            UpdateOutcome.IGNORED_STALE,
        ]
        assert held.value == 3.0
        assert entries == [held]

    def test_concurrent_writers(self, redis_store):
        key = MeasurementKey("Punjabi Bagh", "so2")
        records = [make_record(timestamp=at(minute), value=float(minute)) for minute in range(30)]

        async def scenario():
            await redis_store.connect()
            try:
                index = LatestValueIndex(redis_store, telemetry=TelemetryService(configure_logging=False))
                await asyncio.gather(*(index.submit(r) for r in reversed(records)))
                return await index.get(key)
            finally:
                await redis_store.disconnect()

        assert asyncio.run(scenario()).value == 29.0

    def test_put_and_scan_round_trip(self, redis_store):
        entry = make_entry(location_id="Anand Vihar", parameter="pm25", coordinates=DELHI)

        async def scenario():
            await redis_store.connect()
            try:
                await redis_store.put(entry.key, entry)
                return [pair async for pair in redis_store.scan_all()], await redis_store.health_check()
            finally:
                await redis_store.disconnect()

        scanned, healthy = asyncio.run(scenario())

        assert scanned == [(entry.key, entry)]
        assert healthy is True


class TestIngestionToQuery:
    """Measurements submitted in-process are visible to /v1/latest."""

    def test_batch_then_query(self, app, client):
        from ingestion.service import MeasurementUpdate

        updates = [
            MeasurementUpdate(
                location_id="Anand Vihar", parameter="PM25", value=141.0, unit="µg/m³",
                timestamp=at(0), city="Delhi", country="in", latitude=28.65, longitude=77.31,
            ),
            MeasurementUpdate(
                location_id="Anand Vihar", parameter="pm25", value=99.0, unit="µg/m³",
                timestamp=at(-15), city="Delhi", country="IN",
            ),
        ]
        result = asyncio.run(app.state.ingestion.submit_batch(updates))

        assert (result.applied, result.ignored_stale, result.failed) == (1, 1, 0)

        data = client.get("/v1/latest", params={"country": "IN", "has_geo": "true"}).json()
        assert data["meta"]["found"] == 1
        assert data["results"][0]["coordinates"] == {"latitude": 28.65, "longitude": 77.31}
        assert data["results"][0]["measurements"][0]["value"] == 141.0
