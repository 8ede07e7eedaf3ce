"""
Telemetry service for structured logging and observability.

All logs are emitted as JSON lines on stdout with the request id of the
HTTP request being served. The service also keeps in-process counters
(applied and stale writes, queries) and opens OpenTelemetry spans when a
collector endpoint is configured.
"""

import json
import logging
import sys
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from middleware.request_id import request_id_var

# LogRecord attributes copied into the JSON body when they carry a value
_LOCATION_FIELDS = (("module", "module"), ("funcName", "function"), ("lineno", "line"))


class JSONFormatter(logging.Formatter):
    """
    Log formatter that outputs one JSON object per record.

    Each entry contains timestamp, level, message, logger and request_id,
    the emitting module/function/line, and any mapping passed through
    ``extra={"extra_data": {...}}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "request_id": request_id_var.get(""),
        }
        for attr, key in _LOCATION_FIELDS:
            value = getattr(record, attr, None)
            if value and value != "<module>":
                entry[key] = value

        entry.update(getattr(record, "extra_data", None) or {})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_trace"] = record.stack_info
        return json.dumps(entry, default=str)


class _NoOpSpan:
    """Stands in for a span when tracing is off."""

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def record_exception(self, exception: Exception) -> None:
        pass


class TelemetryService:
    """
    Logging setup, process-local counters, metrics and optional tracing.

    Counters exist so that normal-but-interesting outcomes, such as
    ignored stale writes, can be counted without being reported as
    failures.
    """

    def __init__(self, settings: Optional[Any] = None, configure_logging: bool = True):
        """
        Args:
            settings: Object providing log_level, otel_endpoint and
                otel_service_name; missing attributes fall back to defaults
            configure_logging: Install the JSON handler on the root logger.
                Tests pass False to keep pytest's capture handlers.
        """
        self.settings = settings
        self.tracer = None
        self._counters: Dict[str, float] = defaultdict(float)
        self._counters_lock = threading.Lock()
        self._logger = logging.getLogger("telemetry")
        if configure_logging:
            self._configure_root_logger()
        self._configure_tracing()

    def _setting(self, name: str, default: Any) -> Any:
        value = getattr(self.settings, name, None)
        return default if value is None else value

    def _configure_root_logger(self) -> None:
        level_name = str(self._setting("log_level", "INFO")).upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(JSONFormatter())

        root = logging.getLogger()
        for existing in list(root.handlers):
            root.removeHandler(existing)
        root.addHandler(handler)
        root.setLevel(level)

        self._logger.info("Telemetry service initialized", extra={
            "extra_data": {"log_level": level_name}
        })

    def _configure_tracing(self) -> None:
        endpoint = self._setting("otel_endpoint", None)
        if not endpoint:
            self._logger.debug("OpenTelemetry endpoint not configured, tracing disabled")
            return

        try:
            from opentelemetry import trace
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            from opentelemetry.sdk.resources import SERVICE_NAME, Resource
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import BatchSpanProcessor
        except ImportError as e:
            self._logger.warning(
                "OpenTelemetry packages not installed, tracing disabled",
                extra={"extra_data": {"error": str(e)}}
            )
            return

        service_name = self._setting("otel_service_name", "latest-api")
        provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: service_name}))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        self.tracer = trace.get_tracer(service_name)

        self._logger.info("OpenTelemetry tracing configured", extra={
            "extra_data": {"otel_endpoint": endpoint, "service_name": service_name}
        })

    def increment(self, name: str, value: float = 1.0, tags: Optional[Dict[str, str]] = None) -> float:
        """
        Add ``value`` to a counter such as ``latest.ignored_stale`` and
        return the new total. Tags are only logged.
        """
        with self._counters_lock:
            self._counters[name] += value
            total = self._counters[name]
        self._logger.debug(
            f"Counter: {name}={total}",
            extra={"extra_data": {"counter_name": name, "counter_value": total, "tags": tags or {}}}
        )
        return total

    def get_counter(self, name: str) -> float:
        with self._counters_lock:
            return self._counters.get(name, 0.0)

    def record_metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        """Log a point metric such as a query duration at DEBUG."""
        payload: Dict[str, Any] = {"metric_name": name, "metric_value": value}
        if tags:
            payload["tags"] = tags
        self._logger.debug(f"Metric: {name}={value}", extra={"extra_data": payload})

    @contextmanager
    def create_span(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        """
        Open a span for the duration of the ``with`` block.

        Yields an OpenTelemetry span when tracing is configured and a
        no-op span otherwise. Exceptions always propagate.
        """
        if self.tracer is None:
            yield _NoOpSpan()
            return
        with self.tracer.start_as_current_span(name) as span:
            for key, value in (attributes or {}).items():
                span.set_attribute(key, value)
            yield span


_telemetry_service: Optional[TelemetryService] = None


def get_telemetry_service() -> Optional[TelemetryService]:
    """The process-wide telemetry service, or None before initialize_telemetry()."""
    return _telemetry_service


def initialize_telemetry(settings: Optional[Any] = None) -> TelemetryService:
    global _telemetry_service
    _telemetry_service = TelemetryService(settings)
    return _telemetry_service
