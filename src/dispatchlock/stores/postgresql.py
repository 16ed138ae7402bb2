"""
PostgreSQL lock store implementation.

Production lock store using async SQLAlchemy. Every transaction reads
the booking row and the lock row with ``SELECT ... FOR UPDATE``, so
competing acquirers for the same booking queue on the booking row and
each one sees the previous winner's committed lock. Different bookings
never contend.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatchlock.config import LockConfig
from dispatchlock.exceptions import LockStoreError, TransactionConflictError
from dispatchlock.migrations import get_statements
from dispatchlock.observability import (
    ATTR_BOOKING_ID,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_SWEPT_COUNT,
    Tracer,
    create_tracer,
)
from dispatchlock.stores.interface import LockStore
from dispatchlock.types import BookingDocument, BookingId, EpochMillis, LockRecord

logger = logging.getLogger(__name__)

# SQLSTATE codes that mean "another transaction got there first"
_CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def _translate_error(error: SQLAlchemyError) -> LockStoreError:
    """Map a SQLAlchemy error onto the store error taxonomy."""
    if isinstance(error, DBAPIError):
        orig = error.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _CONFLICT_SQLSTATES:
            return TransactionConflictError()
    return LockStoreError(f"PostgreSQL error: {error}")


class _PostgreSQLTransaction:
    """Statements executed inside one session transaction."""

    def __init__(self, session: AsyncSession, config: LockConfig) -> None:
        self._session = session
        self._locks = config.lock_table
        self._bookings = config.booking_table

    async def get_booking(self, booking_id: BookingId) -> BookingDocument | None:
        result = await self._session.execute(
            text(
                f"""
                SELECT booking_id, status, driver_id
                FROM {self._bookings}
                WHERE booking_id = :booking_id
                FOR UPDATE
                """  # nosec B608 - table name validated by LockConfig
            ),
            {"booking_id": booking_id},
        )
        row = result.fetchone()
        if row is None:
            return None
        return BookingDocument(booking_id=row[0], status=row[1], driver_id=row[2])

    async def put_booking(self, booking: BookingDocument) -> None:
        await self._session.execute(
            text(
                f"""
                INSERT INTO {self._bookings} (booking_id, status, driver_id)
                VALUES (:booking_id, :status, :driver_id)
                ON CONFLICT (booking_id) DO UPDATE
                SET status = EXCLUDED.status,
                    driver_id = EXCLUDED.driver_id
                """  # nosec B608 - table name validated by LockConfig
            ),
            {
                "booking_id": booking.booking_id,
                "status": booking.status,
                "driver_id": booking.driver_id,
            },
        )

    async def get_lock(self, booking_id: BookingId) -> LockRecord | None:
        result = await self._session.execute(
            text(
                f"""
                SELECT booking_id, holder_id, acquired_at_ms, expires_at_ms
                FROM {self._locks}
                WHERE booking_id = :booking_id
                FOR UPDATE
                """  # nosec B608 - table name validated by LockConfig
            ),
            {"booking_id": booking_id},
        )
        row = result.fetchone()
        if row is None:
            return None
        return LockRecord(
            booking_id=row[0],
            holder_id=row[1],
            acquired_at_ms=int(row[2]),
            expires_at_ms=int(row[3]),
        )

    async def put_lock(self, record: LockRecord) -> None:
        await self._session.execute(
            text(
                f"""
                INSERT INTO {self._locks} (booking_id, holder_id, acquired_at_ms, expires_at_ms)
                VALUES (:booking_id, :holder_id, :acquired_at_ms, :expires_at_ms)
                ON CONFLICT (booking_id) DO UPDATE
                SET holder_id = EXCLUDED.holder_id,
                    acquired_at_ms = EXCLUDED.acquired_at_ms,
                    expires_at_ms = EXCLUDED.expires_at_ms
                """  # nosec B608 - table name validated by LockConfig
            ),
            {
                "booking_id": record.booking_id,
                "holder_id": record.holder_id,
                "acquired_at_ms": record.acquired_at_ms,
                "expires_at_ms": record.expires_at_ms,
            },
        )

    async def delete_lock(self, booking_id: BookingId) -> None:
        await self._session.execute(
            text(f"DELETE FROM {self._locks} WHERE booking_id = :booking_id"),  # nosec B608 - table name validated by LockConfig
            {"booking_id": booking_id},
        )


class PostgreSQLLockStore(LockStore):
    """
    PostgreSQL implementation of the lock store.

    Thread-safe and supports concurrent operations across multiple
    processes/workers; each transaction uses its own session.

    Example:
        >>> from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
        >>>
        >>> engine = create_async_engine("postgresql+asyncpg://...")
        >>> session_factory = async_sessionmaker(engine, expire_on_commit=False)
        >>> store = PostgreSQLLockStore(session_factory)
        >>> await store.initialize()
        >>> manager = BookingLockManager(store)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: LockConfig | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the PostgreSQL lock store.

        Args:
            session_factory: SQLAlchemy async session factory for database access
            config: Supplies table names (defaults to LockConfig())
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
        """
        self._session_factory = session_factory
        self._config = config or LockConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def initialize(self, *, create_booking_table: bool = True) -> None:
        """
        Create the lock table (and optionally the booking table). Idempotent.
        """
        name = "all" if create_booking_table else "booking_locks"
        try:
            async with self._session_factory() as session, session.begin():
                for statement in get_statements(name, backend="postgresql", config=self._config):
                    await session.execute(text(statement))
        except SQLAlchemyError as e:
            raise _translate_error(e) from e

        logger.info("Initialized PostgreSQL lock store schema (table=%s)", self._config.lock_table)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_PostgreSQLTransaction]:
        with self._tracer.span(
            "dispatchlock.store.transaction",
            {ATTR_DB_SYSTEM: "postgresql", ATTR_DB_OPERATION: "transaction"},
        ):
            try:
                async with self._session_factory() as session, session.begin():
                    yield _PostgreSQLTransaction(session, self._config)
            except SQLAlchemyError as e:
                raise _translate_error(e) from e

    async def read_lock(self, booking_id: BookingId) -> LockRecord | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    text(
                        f"""
                        SELECT booking_id, holder_id, acquired_at_ms, expires_at_ms
                        FROM {self._config.lock_table}
                        WHERE booking_id = :booking_id
                        """  # nosec B608 - table name validated by LockConfig
                    ),
                    {"booking_id": booking_id},
                )
                row = result.fetchone()
        except SQLAlchemyError as e:
            raise _translate_error(e) from e

        if row is None:
            return None
        return LockRecord(
            booking_id=row[0],
            holder_id=row[1],
            acquired_at_ms=int(row[2]),
            expires_at_ms=int(row[3]),
        )

    async def delete_lock(self, booking_id: BookingId) -> bool:
        with self._tracer.span(
            "dispatchlock.store.delete_lock",
            {ATTR_DB_SYSTEM: "postgresql", ATTR_BOOKING_ID: booking_id},
        ):
            try:
                async with self._session_factory() as session, session.begin():
                    result = await session.execute(
                        text(
                            f"DELETE FROM {self._config.lock_table} WHERE booking_id = :booking_id"  # nosec B608 - table name validated by LockConfig
                        ),
                        {"booking_id": booking_id},
                    )
            except SQLAlchemyError as e:
                raise _translate_error(e) from e
            return (result.rowcount or 0) > 0

    async def delete_expired_locks(self, cutoff_ms: EpochMillis) -> int:
        with self._tracer.span(
            "dispatchlock.store.delete_expired_locks",
            {ATTR_DB_SYSTEM: "postgresql"},
        ) as span:
            try:
                async with self._session_factory() as session, session.begin():
                    result = await session.execute(
                        text(
                            f"DELETE FROM {self._config.lock_table} WHERE acquired_at_ms <= :cutoff_ms"  # nosec B608 - table name validated by LockConfig
                        ),
                        {"cutoff_ms": cutoff_ms},
                    )
            except SQLAlchemyError as e:
                raise _translate_error(e) from e

            deleted = result.rowcount or 0
            if span is not None:
                span.set_attribute(ATTR_SWEPT_COUNT, deleted)
            return deleted

    async def list_locks(self) -> list[LockRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    text(
                        f"""
                        SELECT booking_id, holder_id, acquired_at_ms, expires_at_ms
                        FROM {self._config.lock_table}
                        ORDER BY booking_id
                        """  # nosec B608 - table name validated by LockConfig
                    )
                )
                rows = result.fetchall()
        except SQLAlchemyError as e:
            raise _translate_error(e) from e

        return [
            LockRecord(
                booking_id=row[0],
                holder_id=row[1],
                acquired_at_ms=int(row[2]),
                expires_at_ms=int(row[3]),
            )
            for row in rows
        ]


__all__ = [
    "PostgreSQLLockStore",
]
