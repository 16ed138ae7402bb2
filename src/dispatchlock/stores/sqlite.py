"""
SQLite lock store implementation.

Lightweight lock store using SQLite with async support via aiosqlite.
Transactions use ``BEGIN IMMEDIATE`` so the write lock is taken before
the booking and lock rows are read; concurrent writers from other
processes wait up to ``busy_timeout`` and then fail as conflicts.

This implementation is suitable for:
- Development and testing environments
- Single-host deployments with several worker processes

For multi-host production deployments, use PostgreSQLLockStore.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

from dispatchlock.config import LockConfig
from dispatchlock.exceptions import LockStoreError, TransactionConflictError
from dispatchlock.migrations import get_schema
from dispatchlock.observability import (
    ATTR_BOOKING_ID,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_SWEPT_COUNT,
    Tracer,
    create_tracer,
)
from dispatchlock.stores.interface import LockStore
from dispatchlock.types import BookingDocument, BookingId, EpochMillis, LockRecord

logger = logging.getLogger(__name__)


def _translate_error(error: aiosqlite.Error) -> LockStoreError:
    """Map a driver error onto the store error taxonomy."""
    message = str(error).lower()
    if isinstance(error, aiosqlite.OperationalError) and (
        "locked" in message or "busy" in message
    ):
        return TransactionConflictError()
    return LockStoreError(f"SQLite error: {error}")


def _row_to_record(row: Any) -> LockRecord:
    return LockRecord(
        booking_id=row["booking_id"],
        holder_id=row["holder_id"],
        acquired_at_ms=int(row["acquired_at_ms"]),
        expires_at_ms=int(row["expires_at_ms"]),
    )


class _SQLiteTransaction:
    """Statements executed inside an open ``BEGIN IMMEDIATE`` transaction."""

    def __init__(self, connection: aiosqlite.Connection, config: LockConfig) -> None:
        self._connection = connection
        self._locks = config.lock_table
        self._bookings = config.booking_table

    async def _execute(self, sql: str, params: tuple[Any, ...]) -> aiosqlite.Cursor:
        try:
            return await self._connection.execute(sql, params)
        except aiosqlite.Error as e:
            raise _translate_error(e) from e

    async def get_booking(self, booking_id: BookingId) -> BookingDocument | None:
        cursor = await self._execute(
            f"SELECT booking_id, status, driver_id FROM {self._bookings} WHERE booking_id = ?",  # nosec B608 - table name validated by LockConfig
            (booking_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return BookingDocument(
            booking_id=row["booking_id"],
            status=row["status"],
            driver_id=row["driver_id"],
        )

    async def put_booking(self, booking: BookingDocument) -> None:
        await self._execute(
            f"""
            INSERT INTO {self._bookings} (booking_id, status, driver_id)
            VALUES (?, ?, ?)
            ON CONFLICT (booking_id) DO UPDATE
            SET status = excluded.status,
                driver_id = excluded.driver_id
            """,  # nosec B608 - table name validated by LockConfig
            (booking.booking_id, booking.status, booking.driver_id),
        )

    async def get_lock(self, booking_id: BookingId) -> LockRecord | None:
        cursor = await self._execute(
            f"""
            SELECT booking_id, holder_id, acquired_at_ms, expires_at_ms
            FROM {self._locks}
            WHERE booking_id = ?
            """,  # nosec B608 - table name validated by LockConfig
            (booking_id,),
        )
        row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def put_lock(self, record: LockRecord) -> None:
        await self._execute(
            f"""
            INSERT INTO {self._locks} (booking_id, holder_id, acquired_at_ms, expires_at_ms)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (booking_id) DO UPDATE
            SET holder_id = excluded.holder_id,
                acquired_at_ms = excluded.acquired_at_ms,
                expires_at_ms = excluded.expires_at_ms
            """,  # nosec B608 - table name validated by LockConfig
            (record.booking_id, record.holder_id, record.acquired_at_ms, record.expires_at_ms),
        )

    async def delete_lock(self, booking_id: BookingId) -> None:
        await self._execute(
            f"DELETE FROM {self._locks} WHERE booking_id = ?",  # nosec B608 - table name validated by LockConfig
            (booking_id,),
        )


class SQLiteLockStore(LockStore):
    """
    SQLite implementation of the lock store.

    One aiosqlite connection is shared by all operations of this store.
    Operations on it are serialized with an asyncio.Lock because SQLite
    connections carry a single transaction at a time; separate processes
    coordinate through SQLite's own file locking.

    SQLite-specific adaptations:
    - Autocommit connection (``isolation_level=None``) with explicit
      BEGIN IMMEDIATE / COMMIT / ROLLBACK
    - "database is locked" errors surface as TransactionConflictError

    Example:
        >>> async with SQLiteLockStore("locks.db") as store:
        ...     await store.initialize()
        ...     manager = BookingLockManager(store)
    """

    def __init__(
        self,
        database: str,
        config: LockConfig | None = None,
        *,
        wal_mode: bool = True,
        busy_timeout: int = 2000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite lock store.

        Args:
            database: Path to SQLite database file or ':memory:' for in-memory
            config: Supplies table names (defaults to LockConfig())
            wal_mode: If True, enable WAL mode for better concurrency (default: True)
            busy_timeout: Milliseconds to wait on a locked database (default: 2000).
                Keep it below the manager's transaction timeout: a cancelled
                BEGIN still waits this long before its cleanup can run.
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
        """
        self._database = database
        self._config = config or LockConfig()
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._settling: asyncio.Future[None] | None = None

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def __aenter__(self) -> SQLiteLockStore:
        await self._connect()
        return self

    async def _connect(self) -> None:
        """Open the database connection and configure settings."""
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database, isolation_level=None)
        await self._connection.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout)}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")
        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """Close the database connection. Safe to call multiple times."""
        if self._connection is not None:
            if self._settling is not None:
                await asyncio.shield(self._settling)
                self._settling = None
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self, *, create_booking_table: bool = True) -> None:
        """
        Create the lock table (and optionally the booking table).

        Idempotent - safe to call multiple times.

        Args:
            create_booking_table: Also create the minimal bookings table.
                Disable when bookings live in an existing table.
        """
        await self._connect()
        conn = self._ensure_connected()

        name = "all" if create_booking_table else "booking_locks"
        async with self._lock:
            await conn.executescript(get_schema(name, backend="sqlite", config=self._config))

        logger.info("Initialized SQLite lock store schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call 'initialize()' first."
            )
        return self._connection

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.execute("ROLLBACK")
        except aiosqlite.Error as e:
            logger.warning("Rollback failed on %s: %s", self._database, e)

    async def _settle(self, conn: aiosqlite.Connection) -> None:
        """
        Roll back a transaction left open by an interrupted statement.

        A cancelled await does not stop aiosqlite's worker thread, so a
        BEGIN or COMMIT may still finish after the caller has gone. The
        worker runs statements in order: once a trivial query returns,
        ``in_transaction`` reflects the outcome of everything queued
        before it.
        """
        try:
            await conn.execute("SELECT 1")
        except aiosqlite.Error as e:
            logger.warning("Could not settle connection to %s: %s", self._database, e)
        if conn.in_transaction:
            logger.warning("Rolling back interrupted transaction on %s", self._database)
            await self._rollback(conn)

    async def _discard_open_transaction(self, conn: aiosqlite.Connection) -> None:
        """Run ``_settle`` so that a second cancellation cannot interrupt it."""
        self._settling = asyncio.ensure_future(self._settle(conn))
        await asyncio.shield(self._settling)
        self._settling = None

    async def _recover(self, conn: aiosqlite.Connection) -> None:
        """Finish any cleanup a previous transaction could not wait for."""
        if self._settling is not None:
            await asyncio.shield(self._settling)
            self._settling = None
        if conn.in_transaction:
            logger.warning("Rolling back transaction left open on %s", self._database)
            await self._rollback(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_SQLiteTransaction]:
        conn = self._ensure_connected()

        with self._tracer.span(
            "dispatchlock.store.transaction",
            {
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_NAME: self._database,
                ATTR_DB_OPERATION: "transaction",
            },
        ):
            async with self._lock:
                await self._recover(conn)

                try:
                    await conn.execute("BEGIN IMMEDIATE")
                except aiosqlite.Error as e:
                    raise _translate_error(e) from e
                except BaseException:
                    await self._discard_open_transaction(conn)
                    raise

                try:
                    yield _SQLiteTransaction(conn, self._config)
                except BaseException:
                    await self._discard_open_transaction(conn)
                    raise

                try:
                    await conn.execute("COMMIT")
                except aiosqlite.Error as e:
                    await self._rollback(conn)
                    raise _translate_error(e) from e
                except BaseException:
                    await self._discard_open_transaction(conn)
                    raise

    async def read_lock(self, booking_id: BookingId) -> LockRecord | None:
        conn = self._ensure_connected()
        async with self._lock:
            await self._recover(conn)
            try:
                cursor = await conn.execute(
                    f"""
                    SELECT booking_id, holder_id, acquired_at_ms, expires_at_ms
                    FROM {self._config.lock_table}
                    WHERE booking_id = ?
                    """,  # nosec B608 - table name validated by LockConfig
                    (booking_id,),
                )
                row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise _translate_error(e) from e
        return _row_to_record(row) if row else None

    async def delete_lock(self, booking_id: BookingId) -> bool:
        conn = self._ensure_connected()
        with self._tracer.span(
            "dispatchlock.store.delete_lock",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_BOOKING_ID: booking_id},
        ):
            async with self._lock:
                await self._recover(conn)
                try:
                    cursor = await conn.execute(
                        f"DELETE FROM {self._config.lock_table} WHERE booking_id = ?",  # nosec B608 - table name validated by LockConfig
                        (booking_id,),
                    )
                except aiosqlite.Error as e:
                    raise _translate_error(e) from e
            return cursor.rowcount > 0

    async def delete_expired_locks(self, cutoff_ms: EpochMillis) -> int:
        conn = self._ensure_connected()
        with self._tracer.span(
            "dispatchlock.store.delete_expired_locks",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_NAME: self._database},
        ) as span:
            async with self._lock:
                await self._recover(conn)
                try:
                    cursor = await conn.execute(
                        f"DELETE FROM {self._config.lock_table} WHERE acquired_at_ms <= ?",  # nosec B608 - table name validated by LockConfig
                        (cutoff_ms,),
                    )
                except aiosqlite.Error as e:
                    raise _translate_error(e) from e

            deleted = max(cursor.rowcount, 0)
            if span is not None:
                span.set_attribute(ATTR_SWEPT_COUNT, deleted)
            return deleted

    async def list_locks(self) -> list[LockRecord]:
        conn = self._ensure_connected()
        async with self._lock:
            await self._recover(conn)
            try:
                cursor = await conn.execute(
                    f"""
                    SELECT booking_id, holder_id, acquired_at_ms, expires_at_ms
                    FROM {self._config.lock_table}
                    ORDER BY booking_id
                    """  # nosec B608 - table name validated by LockConfig
                )
                rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise _translate_error(e) from e
        return [_row_to_record(row) for row in rows]


__all__ = [
    "SQLiteLockStore",
]
