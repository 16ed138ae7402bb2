"""Unit tests for LockRecord and BookingDocument."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from dispatchlock.types import BookingDocument, BookingStatus, LockRecord


class TestLockRecord:
    def test_issue(self):
        record = LockRecord.issue("B1", "D1", now_ms=1_000, lease_ms=30_000)

        assert record == LockRecord(
            booking_id="B1", holder_id="D1", acquired_at_ms=1_000, expires_at_ms=31_000
        )

    def test_age(self):
        record = LockRecord.issue("B1", "D1", 1_000, 30_000)

        assert record.age_ms(1_250) == 250

    @pytest.mark.parametrize(
        "now_ms,expired",
        [(0, False), (29_999, False), (30_000, True), (45_000, True)],
    )
    def test_is_expired(self, now_ms, expired):
        record = LockRecord.issue("B1", "D1", 0, 30_000)

        assert record.is_expired(now_ms, 30_000) is expired

    def test_hashable_and_frozen(self):
        record = LockRecord.issue("B1", "D1", 0, 30_000)

        assert {record: 1}[record] == 1
        with pytest.raises(AttributeError):
            record.holder_id = "D2"  # type: ignore[misc]


class TestBookingDocument:
    def test_pending_is_available(self):
        assert BookingDocument(booking_id="B1", status="pending").is_available

    def test_assigned_is_not_available(self):
        booking = BookingDocument(booking_id="B1", status="assigned", driver_id="D1")

        assert not booking.is_available

    def test_pending_with_driver_is_not_available(self):
        booking = BookingDocument(booking_id="B1", status="pending", driver_id="D1")

        assert not booking.is_available

    def test_unknown_status_loads(self):
        booking = BookingDocument(booking_id="B1", status="awaiting_payment")

        assert booking.status == "awaiting_payment"
        assert not booking.is_available

    def test_empty_booking_id_rejected(self):
        with pytest.raises(ValidationError):
            BookingDocument(booking_id="", status="pending")

    def test_frozen(self):
        booking = BookingDocument(booking_id="B1", status="pending")

        with pytest.raises(ValidationError):
            booking.status = "assigned"  # type: ignore[misc]

    def test_status_enum_values(self):
        assert BookingStatus.PENDING.value == "pending"
        assert BookingStatus("driver_assigned") is BookingStatus.DRIVER_ASSIGNED
