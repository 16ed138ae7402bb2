"""
Driver booking acceptance flow.

Acquire the booking lock, assign the booking in its own transaction,
and release the lock whatever happened. The outcome is returned as a
value so request handlers can map it straight onto a response.

Example:
    >>> workflow = BookingAcceptanceWorkflow(manager, store)
    >>> result = await workflow.accept("B1", "D1")
    >>> if not result.ok:
    ...     return {"success": False, "message": result.message}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from dispatchlock.exceptions import (
    BookingAlreadyAssignedError,
    BookingNotFoundError,
    LockHeldError,
    LockStoreError,
)
from dispatchlock.manager import BookingLockManager
from dispatchlock.stores.interface import LockStore
from dispatchlock.types import BookingDocument, BookingId, BookingStatus, HolderId

logger = logging.getLogger(__name__)

MESSAGE_ACCEPTED = "Booking accepted"
MESSAGE_UNAVAILABLE = "Booking no longer available"
MESSAGE_LOCKED = "Booking is being accepted by another driver, please try again"
MESSAGE_NOT_FOUND = "Booking not found"


class AcceptanceOutcome(str, Enum):
    """Machine-readable result of an accept attempt."""

    ACCEPTED = "accepted"
    LOCKED = "locked"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class AcceptanceResult:
    """
    Result of BookingAcceptanceWorkflow.accept.

    Attributes:
        outcome: What happened
        message: User-facing text
        booking: The assigned booking when ``outcome`` is ACCEPTED
    """

    outcome: AcceptanceOutcome
    message: str
    booking: BookingDocument | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is AcceptanceOutcome.ACCEPTED

    @property
    def retryable(self) -> bool:
        """Only a held lock is worth retrying; the other failures are final."""
        return self.outcome is AcceptanceOutcome.LOCKED


class BookingAcceptanceWorkflow:
    """
    Accept a booking on behalf of a driver under the booking lock.

    Retry and backoff are left to the caller; ``AcceptanceResult.retryable``
    says whether another attempt can succeed.

    Args:
        lock_manager: Lock manager guarding the bookings
        store: Store the bookings are assigned in
        assigned_status: Status written on assignment (default "assigned")
    """

    def __init__(
        self,
        lock_manager: BookingLockManager,
        store: LockStore,
        *,
        assigned_status: str = BookingStatus.ASSIGNED.value,
    ) -> None:
        self._lock_manager = lock_manager
        self._store = store
        self._assigned_status = assigned_status

    async def accept(self, booking_id: BookingId, driver_id: HolderId) -> AcceptanceResult:
        """
        Try to assign ``booking_id`` to ``driver_id``.

        Raises:
            ValueError: If either id is empty
            LockStoreError: If assigning the booking failed after the
                lock was acquired (the lock is still released)
        """
        try:
            await self._lock_manager.acquire(booking_id, driver_id)
        except BookingNotFoundError:
            return AcceptanceResult(AcceptanceOutcome.NOT_FOUND, MESSAGE_NOT_FOUND)
        except BookingAlreadyAssignedError:
            return AcceptanceResult(AcceptanceOutcome.UNAVAILABLE, MESSAGE_UNAVAILABLE)
        except LockHeldError as e:
            logger.debug("Driver %s lost the lock race for booking %s: %s", driver_id, booking_id, e)
            return AcceptanceResult(AcceptanceOutcome.LOCKED, MESSAGE_LOCKED)
        except LockStoreError as e:
            logger.warning("Could not lock booking %s for driver %s: %s", booking_id, driver_id, e)
            return AcceptanceResult(AcceptanceOutcome.LOCKED, MESSAGE_LOCKED)

        try:
            booking = await self._store.assign_booking(
                booking_id,
                driver_id,
                status=self._assigned_status,
            )
        except BookingAlreadyAssignedError:
            return AcceptanceResult(AcceptanceOutcome.UNAVAILABLE, MESSAGE_UNAVAILABLE)
        except BookingNotFoundError:
            return AcceptanceResult(AcceptanceOutcome.NOT_FOUND, MESSAGE_NOT_FOUND)
        finally:
            await self._lock_manager.release(booking_id, driver_id)

        logger.info("Booking %s assigned to driver %s", booking_id, driver_id)
        return AcceptanceResult(AcceptanceOutcome.ACCEPTED, MESSAGE_ACCEPTED, booking)


__all__ = [
    "AcceptanceOutcome",
    "AcceptanceResult",
    "BookingAcceptanceWorkflow",
    "MESSAGE_ACCEPTED",
    "MESSAGE_UNAVAILABLE",
    "MESSAGE_LOCKED",
    "MESSAGE_NOT_FOUND",
]
