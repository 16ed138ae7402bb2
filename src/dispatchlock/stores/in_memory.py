"""
In-memory lock store implementation.

Models a remote document store with optimistic transactions: every
document carries a version, a transaction remembers the versions it
read and buffers its writes, and commit fails with
TransactionConflictError if any of those versions moved in the
meantime. Useful for testing and single-process deployments.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dispatchlock.exceptions import TransactionConflictError
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

_BOOKINGS = "bookings"
_LOCKS = "locks"

# (collection, document id)
DocumentKey = tuple[str, str]

_DELETED = object()


class _InMemoryTransaction:
    """Optimistic transaction over an InMemoryLockStore."""

    def __init__(self, store: "InMemoryLockStore") -> None:
        self._store = store
        self._read_versions: dict[DocumentKey, int] = {}
        self._writes: dict[DocumentKey, object] = {}

    async def _read(self, key: DocumentKey) -> object | None:
        if key in self._writes:
            value = self._writes[key]
            return None if value is _DELETED else value

        self._read_versions.setdefault(key, self._store._versions.get(key, 0))
        value = self._store._documents.get(key)

        # Yield so concurrent transactions interleave between read and commit.
        await asyncio.sleep(0)
        return value

    async def get_booking(self, booking_id: BookingId) -> BookingDocument | None:
        value = await self._read((_BOOKINGS, booking_id))
        return value if isinstance(value, BookingDocument) else None

    async def put_booking(self, booking: BookingDocument) -> None:
        self._writes[(_BOOKINGS, booking.booking_id)] = booking

    async def get_lock(self, booking_id: BookingId) -> LockRecord | None:
        value = await self._read((_LOCKS, booking_id))
        return value if isinstance(value, LockRecord) else None

    async def put_lock(self, record: LockRecord) -> None:
        self._writes[(_LOCKS, record.booking_id)] = record

    async def delete_lock(self, booking_id: BookingId) -> None:
        self._writes[(_LOCKS, booking_id)] = _DELETED

    def _commit(self) -> None:
        """Validate read versions and apply buffered writes. Caller holds the store lock."""
        stale = [
            key
            for key, version in self._read_versions.items()
            if self._store._versions.get(key, 0) != version
        ]
        if stale:
            raise TransactionConflictError([f"{collection}/{doc_id}" for collection, doc_id in stale])

        for key, value in self._writes.items():
            if value is _DELETED:
                self._store._documents.pop(key, None)
            else:
                self._store._documents[key] = value
            self._store._bump(key)


class InMemoryLockStore(LockStore):
    """
    In-memory implementation of the lock store.

    Thread-safety:
        Commits are serialized by an asyncio.Lock that is held only for
        the synchronous validate-and-apply step, never across reads.
        Safe for concurrent async operations within a single process.

    Example:
        >>> store = InMemoryLockStore()
        >>> await store.save_booking(BookingDocument(booking_id="B1", status="pending"))
        >>> async with store.transaction() as tx:
        ...     booking = await tx.get_booking("B1")

    Attributes:
        _documents: Committed documents keyed by (collection, id)
        _versions: Commit counter per document key, kept after deletion
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize an empty in-memory lock store.

        Args:
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._documents: dict[DocumentKey, object] = {}
        self._versions: dict[DocumentKey, int] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    def _bump(self, key: DocumentKey) -> None:
        self._versions[key] = self._versions.get(key, 0) + 1

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_InMemoryTransaction]:
        tx = _InMemoryTransaction(self)
        yield tx

        with self._tracer.span(
            "dispatchlock.store.commit",
            {ATTR_DB_SYSTEM: "memory", ATTR_DB_OPERATION: "transaction"},
        ):
            async with self._lock:
                tx._commit()

    async def read_lock(self, booking_id: BookingId) -> LockRecord | None:
        value = self._documents.get((_LOCKS, booking_id))
        return value if isinstance(value, LockRecord) else None

    async def delete_lock(self, booking_id: BookingId) -> bool:
        with self._tracer.span(
            "dispatchlock.store.delete_lock",
            {ATTR_DB_SYSTEM: "memory", ATTR_BOOKING_ID: booking_id},
        ):
            key = (_LOCKS, booking_id)
            async with self._lock:
                if key not in self._documents:
                    return False
                del self._documents[key]
                self._bump(key)
                return True

    async def delete_expired_locks(self, cutoff_ms: EpochMillis) -> int:
        with self._tracer.span(
            "dispatchlock.store.delete_expired_locks",
            {ATTR_DB_SYSTEM: "memory"},
        ) as span:
            async with self._lock:
                expired = [
                    key
                    for key, value in self._documents.items()
                    if isinstance(value, LockRecord) and value.acquired_at_ms <= cutoff_ms
                ]
                for key in expired:
                    del self._documents[key]
                    self._bump(key)

            if span is not None:
                span.set_attribute(ATTR_SWEPT_COUNT, len(expired))
            logger.debug("Deleted %d expired lock records", len(expired))
            return len(expired)

    async def list_locks(self) -> list[LockRecord]:
        async with self._lock:
            records = [value for value in self._documents.values() if isinstance(value, LockRecord)]
        return sorted(records, key=lambda record: record.booking_id)

    async def clear(self) -> None:
        """Remove all documents. Useful for test setup/teardown."""
        async with self._lock:
            for key in list(self._documents):
                self._bump(key)
            self._documents.clear()


__all__ = [
    "InMemoryLockStore",
]
