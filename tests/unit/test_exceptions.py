"""Tests for the exception hierarchy."""

import pytest

from dispatchlock.exceptions import (
    BookingAlreadyAssignedError,
    BookingNotFoundError,
    DispatchLockError,
    LockHeldError,
    LockStoreError,
    TransactionConflictError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "error",
        [
            BookingNotFoundError("B1"),
            BookingAlreadyAssignedError("B1", "assigned", "D1"),
            LockHeldError("B1", "D1", 10),
            LockStoreError("down"),
            TransactionConflictError(),
        ],
    )
    def test_all_derive_from_base(self, error):
        assert isinstance(error, DispatchLockError)

    def test_conflict_is_store_error(self):
        assert issubclass(TransactionConflictError, LockStoreError)

    def test_lock_held_is_not_store_error(self):
        assert not issubclass(LockHeldError, LockStoreError)


class TestMessages:
    def test_not_found(self):
        error = BookingNotFoundError("B1")

        assert error.booking_id == "B1"
        assert str(error) == "Booking not found: B1"

    def test_already_assigned(self):
        error = BookingAlreadyAssignedError("B1", "assigned", "D1")

        assert error.status == "assigned"
        assert error.driver_id == "D1"
        assert str(error) == "Booking B1 is not available (status assigned, driver D1)"

    def test_already_assigned_without_driver(self):
        assert str(BookingAlreadyAssignedError("B1", "cancelled")) == (
            "Booking B1 is not available (status cancelled)"
        )

    def test_lock_held(self):
        error = LockHeldError("B1", holder_id="D1", lock_age_ms=10)

        assert error.reason == "held"
        assert str(error) == "Lock for booking B1 unavailable: held by D1 for 10ms"

    def test_lock_held_by_timeout(self):
        error = LockHeldError("B1", reason="timeout")

        assert error.holder_id is None
        assert str(error) == "Lock for booking B1 unavailable: transaction timeout"

    def test_conflict_lists_documents(self):
        error = TransactionConflictError(["locks/B1"])

        assert error.document_ids == ["locks/B1"]
        assert "locks/B1" in str(error)
        assert "unknown documents" in str(TransactionConflictError())
