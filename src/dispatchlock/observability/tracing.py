"""
OpenTelemetry availability detection for dispatchlock.

OpenTelemetry is an optional dependency. Components never import it
directly; they receive a Tracer built by create_tracer(), which falls
back to a no-op implementation when the library is missing.
"""

# Optional OpenTelemetry import - single source of truth
try:
    from opentelemetry import trace  # noqa: F401

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False

__all__ = [
    "OTEL_AVAILABLE",
]
