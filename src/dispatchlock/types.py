"""Common type definitions for the dispatchlock library."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Type aliases for clarity and documentation
BookingId = str
HolderId = str
EpochMillis = int


class BookingStatus(str, Enum):
    """Booking statuses the lock knows about. Stores may hold others."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    DRIVER_ASSIGNED = "driver_assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingDocument(BaseModel):
    """
    The slice of a booking record the lock reads.

    The booking lifecycle is owned elsewhere; only ``status`` and the
    assignee are consulted when deciding whether a booking still needs
    serialization. ``status`` stays a plain string so unknown lifecycle
    states load without error and are treated as not pending.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    booking_id: BookingId = Field(min_length=1)
    status: str
    driver_id: HolderId | None = None

    @property
    def is_available(self) -> bool:
        """True while the booking is pending and nobody is assigned."""
        return self.status == BookingStatus.PENDING.value and not self.driver_id


@dataclass(frozen=True)
class LockRecord:
    """
    One lock document, keyed by ``booking_id``.

    Attributes:
        booking_id: Booking the lock guards (primary key)
        holder_id: Driver currently granted the lock
        acquired_at_ms: When the record was (re)written, epoch milliseconds
        expires_at_ms: ``acquired_at_ms`` plus the lease window
    """

    booking_id: BookingId
    holder_id: HolderId
    acquired_at_ms: EpochMillis
    expires_at_ms: EpochMillis

    def age_ms(self, now_ms: EpochMillis) -> int:
        """Milliseconds since the record was written."""
        return now_ms - self.acquired_at_ms

    def is_expired(self, now_ms: EpochMillis, lease_ms: int) -> bool:
        """True once the record is at least one lease window old."""
        return self.age_ms(now_ms) >= lease_ms

    @classmethod
    def issue(
        cls,
        booking_id: BookingId,
        holder_id: HolderId,
        now_ms: EpochMillis,
        lease_ms: int,
    ) -> LockRecord:
        """Build a fresh record for ``holder_id`` starting at ``now_ms``."""
        return cls(
            booking_id=booking_id,
            holder_id=holder_id,
            acquired_at_ms=now_ms,
            expires_at_ms=now_ms + lease_ms,
        )


__all__ = [
    "BookingId",
    "HolderId",
    "EpochMillis",
    "BookingStatus",
    "BookingDocument",
    "LockRecord",
]
