"""
Observability utilities for dispatchlock.

Tracing is composition-based: components accept an optional Tracer and
otherwise build one with create_tracer(). OpenTelemetry is optional;
without it every component silently uses a NullTracer.

Example:
    >>> from dispatchlock.observability import create_tracer, ATTR_BOOKING_ID
    >>>
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("dispatchlock.lock.acquire", {ATTR_BOOKING_ID: "B1"}):
    ...     pass
"""

from dispatchlock.observability.attributes import (
    ATTR_BOOKING_ID,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_HOLDER_ID,
    ATTR_LEASE_MS,
    ATTR_LOCK_AGE_MS,
    ATTR_LOCK_OUTCOME,
    ATTR_SWEPT_COUNT,
)
from dispatchlock.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from dispatchlock.observability.tracing import OTEL_AVAILABLE

__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_BOOKING_ID",
    "ATTR_HOLDER_ID",
    "ATTR_LOCK_OUTCOME",
    "ATTR_LOCK_AGE_MS",
    "ATTR_LEASE_MS",
    "ATTR_SWEPT_COUNT",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    "ATTR_ERROR_TYPE",
]
