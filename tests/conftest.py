"""
Shared pytest fixtures for the dispatchlock tests.

This module provides:
- Time fixtures (clock)
- Configuration fixtures (config)
- Store fixtures (store, seeded with pending bookings)
- Lock manager fixtures (tracer, manager)
- SQLite fixtures (sqlite_store)

Every lease-dependent test drives a ManualClock explicitly rather than
waiting on wall-clock time.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from dispatchlock.clock import ManualClock
from dispatchlock.config import LockConfig
from dispatchlock.manager import BookingLockManager
from dispatchlock.observability import MockTracer
from dispatchlock.stores.in_memory import InMemoryLockStore
from dispatchlock.stores.sqlite import SQLiteLockStore
from dispatchlock.types import BookingDocument

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")
    config.addinivalue_line("markers", "postgres: marks tests that require PostgreSQL")
    config.addinivalue_line("markers", "integration: marks integration tests against real databases")


# =============================================================================
# Sample Data Fixtures
# =============================================================================

PENDING_BOOKINGS = ("B1", "B2", "B3")


@pytest.fixture
def clock() -> ManualClock:
    """
    Provide a manual clock starting at t=0.

    Returns:
        A ManualClock the test advances explicitly.
    """
    return ManualClock(start_ms=0)


@pytest.fixture
def config() -> LockConfig:
    """Provide the reference configuration (30s lease, 5s grace)."""
    return LockConfig(lease_ms=30_000, stale_grace_ms=5_000, transaction_timeout_seconds=1.0)


@pytest.fixture
def tracer() -> MockTracer:
    """Provide a tracer that records spans."""
    return MockTracer()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def store() -> InMemoryLockStore:
    """
    Provide an in-memory store seeded with pending bookings B1, B2 and B3.

    Returns:
        A fresh InMemoryLockStore for each test.
    """
    store = InMemoryLockStore(enable_tracing=False)
    for booking_id in PENDING_BOOKINGS:
        await store.save_booking(BookingDocument(booking_id=booking_id, status="pending"))
    return store


@pytest_asyncio.fixture
async def manager(
    store: InMemoryLockStore,
    config: LockConfig,
    clock: ManualClock,
    tracer: MockTracer,
) -> BookingLockManager:
    """Provide a lock manager over the seeded in-memory store."""
    return BookingLockManager(store, config, clock=clock, tracer=tracer)


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_store(config: LockConfig) -> AsyncGenerator[SQLiteLockStore, None]:
    """
    Provide an initialized in-memory SQLite store seeded with pending bookings.

    WAL mode is disabled because ':memory:' databases do not support it.
    """
    async with SQLiteLockStore(":memory:", config, wal_mode=False, enable_tracing=False) as store:
        await store.initialize()
        for booking_id in PENDING_BOOKINGS:
            await store.save_booking(BookingDocument(booking_id=booking_id, status="pending"))
        yield store
