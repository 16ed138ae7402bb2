"""
Configuration for the booking lock manager.

This module provides:
- LockConfig: lease, grace, timeout, sweep and cache settings
- DEFAULT_LEASE_MS / DEFAULT_STALE_GRACE_MS: the reference constants
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_LEASE_MS = 30_000
DEFAULT_STALE_GRACE_MS = 5_000

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class LockConfig:
    """
    Configuration for a BookingLockManager and its stores.

    Attributes:
        lease_ms: Lease window. A lock record at least this old is
            treated as not held by anyone.
        stale_grace_ms: Age after which a different holder's live lock
            may be overridden while the booking is still pending. Must be
            strictly smaller than lease_ms. Raising it narrows the
            double-grant window at the cost of slower recovery from
            crashed holders; lowering it does the opposite.
        transaction_timeout_seconds: Upper bound on a single store
            transaction. A timed-out acquire fails closed.
        sweep_interval_seconds: Period of the background expiry sweep.
        cache_max_entries: Capacity of the per-process lock cache.
        lock_table: Table/collection holding lock records.
        booking_table: Table/collection holding booking records.

    Example:
        >>> config = LockConfig(lease_ms=10_000, stale_grace_ms=2_000)
    """

    lease_ms: int = DEFAULT_LEASE_MS
    stale_grace_ms: int = DEFAULT_STALE_GRACE_MS
    transaction_timeout_seconds: float = 5.0
    sweep_interval_seconds: float = 60.0
    cache_max_entries: int = 10_000
    lock_table: str = "booking_locks"
    booking_table: str = "bookings"

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.lease_ms <= 0:
            raise ValueError(f"lease_ms must be positive, got {self.lease_ms}")

        if self.stale_grace_ms <= 0:
            raise ValueError(f"stale_grace_ms must be positive, got {self.stale_grace_ms}")

        if self.stale_grace_ms >= self.lease_ms:
            raise ValueError(
                f"stale_grace_ms ({self.stale_grace_ms}) must be smaller than "
                f"lease_ms ({self.lease_ms}); otherwise live locks could never be respected "
                "for their full grace period."
            )

        if self.transaction_timeout_seconds <= 0:
            raise ValueError(
                "transaction_timeout_seconds must be positive, "
                f"got {self.transaction_timeout_seconds}"
            )

        if self.sweep_interval_seconds <= 0:
            raise ValueError(
                f"sweep_interval_seconds must be positive, got {self.sweep_interval_seconds}"
            )

        if self.cache_max_entries < 1:
            raise ValueError(f"cache_max_entries must be >= 1, got {self.cache_max_entries}")

        for name in ("lock_table", "booking_table"):
            value = getattr(self, name)
            if not _IDENTIFIER_RE.match(value):
                raise ValueError(f"{name} must be a plain SQL identifier, got {value!r}")


__all__ = [
    "DEFAULT_LEASE_MS",
    "DEFAULT_STALE_GRACE_MS",
    "LockConfig",
]
