"""Observability setup for OpenTelemetry, Prometheus metrics, and structured logging."""

import logging
from typing import Any

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from .config import settings

SERVICE_NAME = "gatehouse-api"
SERVICE_VERSION = "1.0.0"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Lifecycle metrics
BOOKING_TRANSITIONS = Counter(
    'booking_transitions_total',
    'Committed booking status transitions',
    ['from_status', 'to_status'],
    registry=REGISTRY
)

GUEST_TRANSITIONS = Counter(
    'guest_transitions_total',
    'Committed guest status transitions',
    ['to_status'],
    registry=REGISTRY
)

# Gate metrics
VEHICLE_SCANS = Counter(
    'vehicle_scans_total',
    'Vehicle plate scans processed',
    ['direction', 'classification'],
    registry=REGISTRY
)

VEHICLE_ORPHAN_EXITS = Counter(
    'vehicle_orphan_exits_total',
    'Vehicle exit scans without an open entry record',
    registry=REGISTRY
)

CREDENTIAL_SCANS = Counter(
    'credential_scans_total',
    'QR credential scans by outcome',
    ['outcome'],
    registry=REGISTRY
)

# Ledger metrics
LEDGER_EVENTS = Counter(
    'ledger_events_total',
    'Attendance events appended to the ledger',
    ['source', 'direction'],
    registry=REGISTRY
)

LEDGER_APPEND_FAILURES = Counter(
    'ledger_append_failures_total',
    'Best-effort ledger appends that failed after a committed transition',
    ['source'],
    registry=REGISTRY
)


def add_trace_context(logger, method_name, event_dict):
    """Add the active OpenTelemetry span to log events."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict['trace_id'] = format(ctx.trace_id, '032x')
        event_dict['span_id'] = format(ctx.span_id, '016x')
    return event_dict


def setup_structured_logging():
    """Configure structured logging with structlog."""
    processors = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.extend([
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })


def setup_tracing(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource())

    if settings.otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint))
        )

    trace.set_tracer_provider(provider)
    return trace.get_tracer(app_name)


def setup_metrics(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=settings.otlp_endpoint),
            export_interval_millis=60000,
        )
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(app_name)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy():
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Collector for access-control metrics."""

    @staticmethod
    def record_booking_transition(from_status: str, to_status: str):
        BOOKING_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def record_guest_transition(to_status: str):
        GUEST_TRANSITIONS.labels(to_status=to_status).inc()

    @staticmethod
    def record_vehicle_scan(direction: str, classification: str):
        VEHICLE_SCANS.labels(direction=direction, classification=classification).inc()

    @staticmethod
    def record_orphan_exit():
        VEHICLE_ORPHAN_EXITS.inc()

    @staticmethod
    def record_credential_scan(outcome: str):
        CREDENTIAL_SCANS.labels(outcome=outcome).inc()

    @staticmethod
    def record_ledger_event(source: str, direction: str):
        LEDGER_EVENTS.labels(source=source, direction=direction).inc()

    @staticmethod
    def record_ledger_failure(source: str):
        LEDGER_APPEND_FAILURES.labels(source=source).inc()

    @staticmethod
    def record_request(method: str, endpoint: str, status_code: int, duration_seconds: float):
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration_seconds)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


class StructuredLogger:
    """Structured logger with business context."""

    def __init__(self, name: str, bound: Any = None):
        self.logger = bound if bound is not None else structlog.get_logger(name)

    def info(self, message: str, **kwargs):
        """Log info message with context."""
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with context."""
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with context."""
        self.logger.error(message, **kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug message with context."""
        self.logger.debug(message, **kwargs)

    def with_context(self, **kwargs) -> "StructuredLogger":
        """Return a logger with extra context bound."""
        return StructuredLogger("", bound=self.logger.bind(**kwargs))


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)
