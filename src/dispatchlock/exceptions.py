"""Library exceptions for the dispatchlock package."""


class DispatchLockError(Exception):
    """Base exception for dispatchlock library."""

    pass


class BookingNotFoundError(DispatchLockError):
    """Raised when the booking a lock would guard does not exist."""

    def __init__(self, booking_id: str) -> None:
        self.booking_id = booking_id
        super().__init__(f"Booking not found: {booking_id}")


class BookingAlreadyAssignedError(DispatchLockError):
    """
    Raised when a booking is no longer pending or already has a driver.

    The race for this booking is decided. Callers should tell the driver
    the offer is no longer available rather than retrying.

    Attributes:
        booking_id: The booking that was requested
        status: The booking status observed in the store
        driver_id: The assignee observed in the store, if any
    """

    def __init__(
        self,
        booking_id: str,
        status: str,
        driver_id: str | None = None,
    ) -> None:
        self.booking_id = booking_id
        self.status = status
        self.driver_id = driver_id
        assignee = f", driver {driver_id}" if driver_id else ""
        super().__init__(f"Booking {booking_id} is not available (status {status}{assignee})")


class LockHeldError(DispatchLockError):
    """
    Raised when a live competing acquire attempt owns the booking lock.

    Also raised when the acquire transaction could not commit (conflict or
    timeout), since no success may be reported without a committed write.
    Retryable by the caller after its own backoff.

    Attributes:
        booking_id: The booking whose lock is held
        holder_id: Current holder, when known
        lock_age_ms: Age of the competing lock, when known
        reason: Short machine-readable reason ("held", "conflict", "timeout")
    """

    def __init__(
        self,
        booking_id: str,
        holder_id: str | None = None,
        lock_age_ms: int | None = None,
        reason: str = "held",
    ) -> None:
        self.booking_id = booking_id
        self.holder_id = holder_id
        self.lock_age_ms = lock_age_ms
        self.reason = reason
        if reason == "held":
            detail = f"held by {holder_id} for {lock_age_ms}ms"
        else:
            detail = f"transaction {reason}"
        super().__init__(f"Lock for booking {booking_id} unavailable: {detail}")


class LockStoreError(DispatchLockError):
    """Raised when the underlying document store fails transiently."""

    pass


class TransactionConflictError(LockStoreError):
    """Raised when a store transaction fails to commit due to a concurrent write."""

    def __init__(self, document_ids: list[str] | None = None) -> None:
        self.document_ids = document_ids or []
        ids = ", ".join(self.document_ids) if self.document_ids else "unknown documents"
        super().__init__(f"Transaction conflict on {ids}")
