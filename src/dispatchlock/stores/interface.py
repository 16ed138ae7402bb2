"""
Lock store interface.

The lock store is the transactional document store the lock manager is
built on. It holds two kinds of documents: lock records (one per
booking, owned by the lock manager) and booking records (owned by the
booking lifecycle, read by the lock manager).

This module provides:
- LockTransaction: Reads and buffered writes inside one transaction
- LockStore: Abstract base class for store implementations

Transaction contract:
- ``transaction()`` is an async context manager. Leaving the block
  normally commits; leaving it with an exception rolls back and
  re-raises that exception.
- A transaction never observes another transaction's uncommitted writes.
- If a concurrent commit invalidates what the transaction read, commit
  raises TransactionConflictError and nothing is written.
- Backend failures surface as LockStoreError.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Protocol

from dispatchlock.exceptions import BookingAlreadyAssignedError, BookingNotFoundError
from dispatchlock.types import (
    BookingDocument,
    BookingId,
    BookingStatus,
    EpochMillis,
    HolderId,
    LockRecord,
)


class LockTransaction(Protocol):
    """
    Operations available inside a single store transaction.

    Reads return the state as of the transaction; writes become visible
    to others only after commit.
    """

    async def get_booking(self, booking_id: BookingId) -> BookingDocument | None:
        """Read a booking, or None if it does not exist."""
        ...

    async def put_booking(self, booking: BookingDocument) -> None:
        """Create or overwrite a booking."""
        ...

    async def get_lock(self, booking_id: BookingId) -> LockRecord | None:
        """Read the lock record for a booking, or None if there is none."""
        ...

    async def put_lock(self, record: LockRecord) -> None:
        """Create or overwrite the lock record keyed by ``record.booking_id``."""
        ...

    async def delete_lock(self, booking_id: BookingId) -> None:
        """Delete the lock record for a booking if present."""
        ...


class LockStore(ABC):
    """
    Abstract base class for lock stores.

    Implementations provide the transaction primitive plus a few
    single-statement operations used outside the acquire path. The
    booking helpers (``save_booking``, ``assign_booking``) are built on
    ``transaction()`` and shared by every backend.
    """

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[LockTransaction]:
        """
        Open a transaction.

        Returns:
            Async context manager yielding a LockTransaction

        Raises:
            TransactionConflictError: On commit, if a concurrent write won
            LockStoreError: If the backend fails
        """
        ...

    @abstractmethod
    async def read_lock(self, booking_id: BookingId) -> LockRecord | None:
        """
        Read a lock record outside any transaction.

        Args:
            booking_id: Booking whose lock to read

        Returns:
            The stored record (possibly expired), or None
        """
        ...

    @abstractmethod
    async def delete_lock(self, booking_id: BookingId) -> bool:
        """
        Unconditionally delete a lock record.

        Returns:
            True if a record existed and was deleted
        """
        ...

    @abstractmethod
    async def delete_expired_locks(self, cutoff_ms: EpochMillis) -> int:
        """
        Delete every lock record with ``acquired_at_ms <= cutoff_ms`` in one batch.

        Args:
            cutoff_ms: Records acquired at or before this instant are deleted

        Returns:
            Number of records deleted
        """
        ...

    @abstractmethod
    async def list_locks(self) -> list[LockRecord]:
        """Return every stored lock record, ordered by booking ID."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release backend resources. The default implementation does nothing."""

    async def get_booking(self, booking_id: BookingId) -> BookingDocument | None:
        """Read a booking in its own transaction."""
        async with self.transaction() as tx:
            return await tx.get_booking(booking_id)

    async def save_booking(self, booking: BookingDocument) -> None:
        """Create or overwrite a booking in its own transaction."""
        async with self.transaction() as tx:
            await tx.put_booking(booking)

    async def assign_booking(
        self,
        booking_id: BookingId,
        driver_id: HolderId,
        status: str = BookingStatus.ASSIGNED.value,
    ) -> BookingDocument:
        """
        Assign a pending booking to a driver in its own transaction.

        This is the write a lock holder performs after a successful
        acquire. It re-checks availability so a holder whose lease was
        overridden cannot clobber a completed assignment.

        Args:
            booking_id: Booking to assign
            driver_id: Driver taking the booking
            status: Status to write (default "assigned")

        Returns:
            The updated booking

        Raises:
            BookingNotFoundError: If the booking does not exist
            BookingAlreadyAssignedError: If it is no longer available
        """
        async with self.transaction() as tx:
            booking = await tx.get_booking(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            if not booking.is_available:
                raise BookingAlreadyAssignedError(booking_id, booking.status, booking.driver_id)

            updated = booking.model_copy(update={"status": status, "driver_id": driver_id})
            await tx.put_booking(updated)
            return updated

    async def __aenter__(self) -> "LockStore":
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()


__all__ = [
    "LockTransaction",
    "LockStore",
]
