"""
Integration tests for the SQL lock stores.

The same behavior suite runs against SQLite (in-memory database) and,
when DISPATCHLOCK_TEST_POSTGRES_URL is set, PostgreSQL:
- Store transactions, single-statement operations and booking helpers
- BookingLockManager properties on top of a real database
"""

from __future__ import annotations

import asyncio
import os

import pytest

from dispatchlock.clock import ManualClock
from dispatchlock.config import LockConfig
from dispatchlock.exceptions import (
    BookingAlreadyAssignedError,
    BookingNotFoundError,
    LockHeldError,
)
from dispatchlock.manager import BookingLockManager
from dispatchlock.types import BookingDocument, LockRecord
from dispatchlock.workflow import AcceptanceOutcome, BookingAcceptanceWorkflow

pytestmark = pytest.mark.integration

skip_if_no_postgres = pytest.mark.skipif(
    "DISPATCHLOCK_TEST_POSTGRES_URL" not in os.environ,
    reason="DISPATCHLOCK_TEST_POSTGRES_URL not set",
)


def record(booking_id: str, holder_id: str = "D1", at: int = 0) -> LockRecord:
    return LockRecord.issue(booking_id, holder_id, at, 30_000)


class LockStoreContract:
    """Behavior every SQL store must share. Subclasses provide ``lock_store``."""

    @pytest.fixture
    def clock(self) -> ManualClock:
        return ManualClock(start_ms=0)

    @pytest.fixture
    def lock_manager(self, lock_store, clock) -> BookingLockManager:
        config = LockConfig(
            lock_table=lock_store._config.lock_table,
            booking_table=lock_store._config.booking_table,
        )
        return BookingLockManager(lock_store, config, clock=clock, enable_tracing=False)

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_transaction_roundtrip(self, lock_store):
        async with lock_store.transaction() as tx:
            await tx.put_lock(record("B1"))

        assert await lock_store.read_lock("B1") == record("B1")

    @pytest.mark.asyncio
    async def test_put_lock_overwrites(self, lock_store):
        async with lock_store.transaction() as tx:
            await tx.put_lock(record("B1", "D1", 0))
        async with lock_store.transaction() as tx:
            await tx.put_lock(record("B1", "D2", 100))

        assert await lock_store.list_locks() == [record("B1", "D2", 100)]

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, lock_store):
        with pytest.raises(RuntimeError):
            async with lock_store.transaction() as tx:
                await tx.put_lock(record("B1"))
                raise RuntimeError("abort")

        assert await lock_store.read_lock("B1") is None

    @pytest.mark.asyncio
    async def test_delete_lock(self, lock_store):
        async with lock_store.transaction() as tx:
            await tx.put_lock(record("B1"))

        assert await lock_store.delete_lock("B1") is True
        assert await lock_store.delete_lock("B1") is False

    @pytest.mark.asyncio
    async def test_delete_expired_locks(self, lock_store):
        async with lock_store.transaction() as tx:
            await tx.put_lock(record("B1", at=0))
            await tx.put_lock(record("B2", at=10_000))

        assert await lock_store.delete_expired_locks(0) == 1
        assert [r.booking_id for r in await lock_store.list_locks()] == ["B2"]

    @pytest.mark.asyncio
    async def test_booking_helpers(self, lock_store):
        booking = await lock_store.get_booking("B1")
        assert booking == BookingDocument(booking_id="B1", status="pending", driver_id=None)

        updated = await lock_store.assign_booking("B1", "D1")
        assert updated.driver_id == "D1"
        assert await lock_store.get_booking("B1") == updated

        with pytest.raises(BookingAlreadyAssignedError):
            await lock_store.assign_booking("B1", "D2")
        with pytest.raises(BookingNotFoundError):
            await lock_store.assign_booking("missing", "D1")

    # ------------------------------------------------------------------
    # Lock manager on top of the store
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, lock_manager, lock_store):
        acquired = await lock_manager.acquire("B1", "D1")

        assert await lock_store.read_lock("B1") == acquired
        assert await lock_manager.release("B1", "D1") is True
        assert await lock_store.read_lock("B1") is None

    @pytest.mark.asyncio
    async def test_concurrent_acquire_one_winner(self, lock_manager, lock_store):
        results = await asyncio.gather(
            *(lock_manager.acquire("B1", f"D{i}") for i in range(5)),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, LockRecord)]
        assert len(winners) == 1
        assert all(isinstance(r, (LockRecord, LockHeldError)) for r in results)
        assert await lock_store.list_locks() == winners

    @pytest.mark.asyncio
    async def test_grace_stale_and_expiry(self, lock_manager, clock):
        await lock_manager.acquire("B1", "D1")

        clock.set(5_000)
        with pytest.raises(LockHeldError):
            await lock_manager.acquire("B1", "D2")

        clock.set(5_001)
        assert (await lock_manager.acquire("B1", "D2")).holder_id == "D2"

        clock.set(40_000)
        assert (await lock_manager.acquire("B1", "D3")).holder_id == "D3"

    @pytest.mark.asyncio
    async def test_non_owner_release(self, lock_manager, lock_store):
        original = await lock_manager.acquire("B1", "D1")

        assert await lock_manager.release("B1", "D2") is False
        assert await lock_store.read_lock("B1") == original
        with pytest.raises(LockHeldError):
            await lock_manager.acquire("B1", "D2")

    @pytest.mark.asyncio
    async def test_force_release_and_sweep(self, lock_manager, lock_store, clock):
        await lock_manager.acquire("B1", "D1")
        await lock_manager.acquire("B2", "D2")

        assert await lock_manager.force_release("B1") is True

        clock.set(30_000)
        assert await lock_manager.sweep_expired() == 1
        assert await lock_store.list_locks() == []

    @pytest.mark.asyncio
    async def test_accept_scenario(self, lock_manager, lock_store, clock):
        assert await lock_manager.acquire("B1", "D1") == LockRecord("B1", "D1", 0, 30_000)

        clock.set(10)
        with pytest.raises(LockHeldError):
            await lock_manager.acquire("B1", "D2")

        await lock_store.assign_booking("B1", "D1")
        await lock_manager.release("B1", "D1")

        clock.set(50)
        with pytest.raises(BookingAlreadyAssignedError):
            await lock_manager.acquire("B1", "D2")

    @pytest.mark.asyncio
    async def test_workflow(self, lock_manager, lock_store):
        workflow = BookingAcceptanceWorkflow(lock_manager, lock_store)

        results = await asyncio.gather(*(workflow.accept("B2", f"D{i}") for i in range(3)))

        assert sum(r.outcome is AcceptanceOutcome.ACCEPTED for r in results) == 1
        assert await lock_store.list_locks() == []


@pytest.mark.sqlite
class TestSQLiteLockStore(LockStoreContract):
    """SQLite store over an in-memory database."""

    @pytest.fixture
    def lock_store(self, sqlite_store):
        return sqlite_store

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, lock_store):
        await lock_store.initialize()

        assert await lock_store.get_booking("B1") is not None

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        from dispatchlock.stores.sqlite import SQLiteLockStore

        store = SQLiteLockStore(":memory:", wal_mode=False, enable_tracing=False)

        with pytest.raises(RuntimeError, match="Not connected"):
            await store.read_lock("B1")

    @pytest.mark.asyncio
    async def test_file_database_with_wal(self, tmp_path):
        from dispatchlock.stores.sqlite import SQLiteLockStore

        path = str(tmp_path / "locks.db")
        async with SQLiteLockStore(path, enable_tracing=False) as store:
            await store.initialize()
            await store.save_booking(BookingDocument(booking_id="B1", status="pending"))
            manager = BookingLockManager(store, enable_tracing=False)
            await manager.acquire("B1", "D1")

        async with SQLiteLockStore(path, enable_tracing=False) as reopened:
            assert (await reopened.read_lock("B1")).holder_id == "D1"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, lock_store):
        await lock_store.close()
        await lock_store.close()

    @pytest.mark.asyncio
    async def test_timed_out_begin_is_rolled_back(self, tmp_path):
        import aiosqlite

        from dispatchlock.stores.sqlite import SQLiteLockStore

        path = str(tmp_path / "locks.db")
        config = LockConfig(transaction_timeout_seconds=0.2)
        async with SQLiteLockStore(path, config, busy_timeout=2000, enable_tracing=False) as store:
            await store.initialize()
            await store.save_booking(BookingDocument(booking_id="B1", status="pending"))
            manager = BookingLockManager(
                store, config, clock=ManualClock(start_ms=0), enable_tracing=False
            )

            # Another process holds the write lock until after the timeout fires.
            blocker = await aiosqlite.connect(path, isolation_level=None)
            try:
                await blocker.execute("BEGIN IMMEDIATE")
                pending = asyncio.create_task(manager.acquire("B1", "D1"))
                await asyncio.sleep(0.5)
                await blocker.execute("COMMIT")
            finally:
                await blocker.close()

            with pytest.raises(LockHeldError) as exc_info:
                await pending
            assert exc_info.value.reason == "timeout"

            assert (await manager.acquire("B1", "D1")).holder_id == "D1"
            assert await manager.release("B1", "D1") is True

        other = await aiosqlite.connect(path, isolation_level=None)
        try:
            await other.execute("BEGIN IMMEDIATE")
            await other.execute("ROLLBACK")
        finally:
            await other.close()

    @pytest.mark.asyncio
    async def test_cancelled_transaction_body_is_rolled_back(self, lock_store):
        started = asyncio.Event()

        async def hold_open():
            async with lock_store.transaction() as tx:
                await tx.put_lock(record("B1"))
                started.set()
                await asyncio.sleep(10)

        task = asyncio.create_task(hold_open())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await lock_store.read_lock("B1") is None
        async with lock_store.transaction() as tx:
            await tx.put_lock(record("B2"))
        assert [r.booking_id for r in await lock_store.list_locks()] == ["B2"]

    def test_default_busy_timeout_is_below_transaction_timeout(self):
        from dispatchlock.stores.sqlite import SQLiteLockStore

        store = SQLiteLockStore(":memory:", enable_tracing=False)

        assert store._busy_timeout / 1000 < LockConfig().transaction_timeout_seconds


@skip_if_no_postgres
@pytest.mark.postgres
class TestPostgreSQLLockStore(LockStoreContract):
    """PostgreSQL store; needs DISPATCHLOCK_TEST_POSTGRES_URL."""

    @pytest.fixture
    def lock_store(self, postgres_store):
        return postgres_store
