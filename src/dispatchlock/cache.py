"""
Per-process read-through cache of lock snapshots.

The cache is a hint, never an authority. Entries are written only from
what the store was just observed to contain, so a stale entry lives at
most until the next store read for that booking. Acquire and release
always go to the store.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass

from dispatchlock.types import BookingId, EpochMillis, HolderId, LockRecord


@dataclass(frozen=True)
class CachedLock:
    """Last observed holder of a booking lock."""

    holder_id: HolderId
    acquired_at_ms: EpochMillis

    def is_live(self, now_ms: EpochMillis, lease_ms: int) -> bool:
        return now_ms - self.acquired_at_ms < lease_ms


class LockCache:
    """
    Bounded LRU map from booking ID to its last observed lock.

    Args:
        max_entries: Capacity; the least recently touched entry is
            evicted when it is exceeded.

    Example:
        >>> cache = LockCache(max_entries=2)
        >>> cache.observe("B1", record)
        >>> cache.get_live("B1", now_ms, lease_ms)
        CachedLock(holder_id='D1', acquired_at_ms=0)
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self._max_entries = max_entries
        self._entries: OrderedDict[BookingId, CachedLock] = OrderedDict()

    def observe(self, booking_id: BookingId, record: LockRecord | None) -> None:
        """
        Overwrite the entry with what the store just showed.

        Passing None (no record, or no live record) removes the entry.
        """
        if record is None:
            self._entries.pop(booking_id, None)
            return

        self._entries[booking_id] = CachedLock(
            holder_id=record.holder_id,
            acquired_at_ms=record.acquired_at_ms,
        )
        self._entries.move_to_end(booking_id)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def get_live(
        self,
        booking_id: BookingId,
        now_ms: EpochMillis,
        lease_ms: int,
    ) -> CachedLock | None:
        """Return the cached entry if it is still inside the lease, dropping it otherwise."""
        entry = self._entries.get(booking_id)
        if entry is None:
            return None
        if not entry.is_live(now_ms, lease_ms):
            del self._entries[booking_id]
            return None
        self._entries.move_to_end(booking_id)
        return entry

    def discard(self, booking_id: BookingId, holder_id: HolderId | None = None) -> None:
        """
        Remove an entry.

        If ``holder_id`` is given, only an entry naming that holder is removed.
        """
        entry = self._entries.get(booking_id)
        if entry is None:
            return
        if holder_id is None or entry.holder_id == holder_id:
            del self._entries[booking_id]

    def prune_expired(self, now_ms: EpochMillis, lease_ms: int) -> int:
        """Drop every entry past the lease window and return how many were dropped."""
        expired = [
            booking_id
            for booking_id, entry in self._entries.items()
            if not entry.is_live(now_ms, lease_ms)
        ]
        for booking_id in expired:
            del self._entries[booking_id]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, booking_id: object) -> bool:
        return booking_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"LockCache(entries={len(self._entries)}, max_entries={self._max_entries})"


__all__ = [
    "CachedLock",
    "LockCache",
]
