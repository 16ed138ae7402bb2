"""Unit tests for clocks."""

import time

import pytest

from dispatchlock.clock import Clock, ManualClock, SystemClock


class TestSystemClock:
    def test_returns_epoch_milliseconds(self):
        before = int(time.time() * 1000)
        now = SystemClock().now_ms()
        after = int(time.time() * 1000)

        assert before <= now <= after

    def test_satisfies_protocol(self):
        assert isinstance(SystemClock(), Clock)


class TestManualClock:
    def test_starts_at_given_time(self):
        assert ManualClock(start_ms=1_234).now_ms() == 1_234

    def test_defaults_to_zero(self):
        assert ManualClock().now_ms() == 0

    def test_advance(self):
        clock = ManualClock()

        assert clock.advance(10) == 10
        assert clock.advance(5) == 15
        assert clock.now_ms() == 15

    def test_advance_rejects_negative(self):
        with pytest.raises(ValueError):
            ManualClock().advance(-1)

    def test_set(self):
        clock = ManualClock(start_ms=100)
        clock.set(50)

        assert clock.now_ms() == 50
        assert repr(clock) == "ManualClock(now_ms=50)"

    def test_satisfies_protocol(self):
        assert isinstance(ManualClock(), Clock)
