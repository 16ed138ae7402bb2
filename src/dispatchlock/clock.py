"""
Clock abstraction for lease arithmetic.

All lease and grace-window decisions go through a Clock so the timing
rules can be exercised deterministically. Production code uses
SystemClock; tests use ManualClock and advance it explicitly.

Example:
    >>> clock = ManualClock(start_ms=0)
    >>> manager = BookingLockManager(store, clock=clock)
    >>> await manager.acquire("B1", "D1")
    >>> clock.advance(6_000)
    >>> await manager.acquire("B1", "D2")  # stale override
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current time in epoch milliseconds."""

    def now_ms(self) -> int:
        """Return the current time in milliseconds since the epoch."""
        ...


class SystemClock:
    """Wall-clock time from ``time.time()``."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def __repr__(self) -> str:
        return "SystemClock()"


class ManualClock:
    """
    Clock that only moves when told to.

    Args:
        start_ms: Initial time in epoch milliseconds
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = start_ms

    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, delta_ms: int) -> int:
        """
        Move time forward.

        Args:
            delta_ms: Milliseconds to add; must not be negative

        Returns:
            The new current time

        Raises:
            ValueError: If delta_ms is negative
        """
        if delta_ms < 0:
            raise ValueError(f"delta_ms must be >= 0, got {delta_ms}")
        self._now_ms += delta_ms
        return self._now_ms

    def set(self, now_ms: int) -> None:
        """Jump to an absolute time."""
        self._now_ms = now_ms

    def __repr__(self) -> str:
        return f"ManualClock(now_ms={self._now_ms})"


__all__ = [
    "Clock",
    "SystemClock",
    "ManualClock",
]
