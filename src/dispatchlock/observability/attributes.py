"""
Standard span attributes for dispatchlock.

Database attributes follow OpenTelemetry semantic conventions; the rest
live under the ``dispatchlock.`` namespace.
"""

# =============================================================================
# Booking / Lock Attributes
# =============================================================================

ATTR_BOOKING_ID = "dispatchlock.booking.id"
"""Identifier of the booking the lock guards (string)."""

ATTR_HOLDER_ID = "dispatchlock.lock.holder_id"
"""Identity of the driver requesting or holding the lock (string)."""

ATTR_LOCK_OUTCOME = "dispatchlock.lock.outcome"
"""Result of an acquire attempt: created, refreshed, expired_override,
stale_override, held, not_found, assigned (string)."""

ATTR_LOCK_AGE_MS = "dispatchlock.lock.age_ms"
"""Age of the competing lock record in milliseconds (integer)."""

ATTR_LEASE_MS = "dispatchlock.lock.lease_ms"
"""Configured lease window in milliseconds (integer)."""

ATTR_SWEPT_COUNT = "dispatchlock.lock.swept_count"
"""Number of expired lock records deleted by a sweep (integer)."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'postgresql', 'sqlite', 'memory')."""

ATTR_DB_NAME = "db.name"
"""Database name or file path (string)."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'transaction', 'delete')."""

# =============================================================================
# Error Attributes
# =============================================================================

ATTR_ERROR_TYPE = "error.type"
"""Exception class name when an operation fails (string)."""

__all__ = [
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
