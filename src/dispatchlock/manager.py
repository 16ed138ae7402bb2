"""
Booking assignment lock.

Serializes concurrent "accept this booking" attempts from any number of
server processes. Exclusivity comes entirely from store transactions:
each acquire reads the booking and its lock record and conditionally
writes the lock inside one transaction, so whichever transaction commits
first wins. The manager itself keeps no in-process lock, never waits on
another holder and never retries.

Usage:
    >>> manager = BookingLockManager(store)
    >>> try:
    ...     await manager.acquire(booking_id, driver_id)
    ... except BookingAlreadyAssignedError:
    ...     return "Booking no longer available"
    ... except LockHeldError:
    ...     return "Someone else is accepting this booking, try again"
    >>> try:
    ...     await store.assign_booking(booking_id, driver_id)
    ... finally:
    ...     await manager.release(booking_id, driver_id)

Stale-lock heuristic:
    A live lock held by a different driver is overridden once it is
    older than ``stale_grace_ms`` while the booking is still pending and
    unassigned in the same transaction. The assumption is that a holder
    who has not assigned the booking within the grace period crashed or
    lost connectivity. Under extreme latency a legitimate holder older
    than the grace period can be overridden, briefly allowing two
    holders; the booking assignment write re-checks availability, so at
    most one of them can complete the assignment. Both constants live in
    LockConfig.
"""

from __future__ import annotations

import asyncio
import logging

from dispatchlock.cache import LockCache
from dispatchlock.clock import Clock, SystemClock
from dispatchlock.config import LockConfig
from dispatchlock.exceptions import (
    BookingAlreadyAssignedError,
    BookingNotFoundError,
    LockHeldError,
    LockStoreError,
    TransactionConflictError,
)
from dispatchlock.observability import (
    ATTR_BOOKING_ID,
    ATTR_ERROR_TYPE,
    ATTR_HOLDER_ID,
    ATTR_LEASE_MS,
    ATTR_LOCK_AGE_MS,
    ATTR_LOCK_OUTCOME,
    ATTR_SWEPT_COUNT,
    Tracer,
    create_tracer,
)
from dispatchlock.stores.interface import LockStore
from dispatchlock.types import BookingId, HolderId, LockRecord

logger = logging.getLogger(__name__)

# Acquire outcomes, also used as span attribute values
OUTCOME_CREATED = "created"
OUTCOME_REFRESHED = "refreshed"
OUTCOME_EXPIRED_OVERRIDE = "expired_override"
OUTCOME_STALE_OVERRIDE = "stale_override"
OUTCOME_HELD = "held"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_ASSIGNED = "assigned"


def _require_id(name: str, value: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string, got {value!r}")


class BookingLockManager:
    """
    Distributed lease lock guarding the pending -> assigned transition of a booking.

    Operations:
        acquire: Take or refresh the lock for a driver (raises on failure)
        release: Owner-checked delete (never raises for store errors)
        is_locked / get_owner: Best-effort, cache-then-store reads
        force_release: Unconditional delete for operators
        sweep_expired: Garbage-collect records past their lease

    Args:
        store: Transactional lock store
        config: Lease, grace and timeout settings (defaults to LockConfig())
        clock: Time source (defaults to SystemClock())
        cache: Local lock cache (defaults to a LockCache sized from config)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing.
            Ignored if tracer is explicitly provided.

    Example:
        >>> manager = BookingLockManager(
        ...     store,
        ...     LockConfig(lease_ms=30_000, stale_grace_ms=5_000),
        ... )
        >>> record = await manager.acquire("B1", "D1")
        >>> record.holder_id
        'D1'
    """

    def __init__(
        self,
        store: LockStore,
        config: LockConfig | None = None,
        *,
        clock: Clock | None = None,
        cache: LockCache | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._config = config or LockConfig()
        self._clock = clock or SystemClock()
        self._cache = cache or LockCache(self._config.cache_max_entries)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @property
    def config(self) -> LockConfig:
        return self._config

    @property
    def cache(self) -> LockCache:
        return self._cache

    @property
    def store(self) -> LockStore:
        return self._store

    def _live(self, record: LockRecord | None, now_ms: int) -> LockRecord | None:
        """Return the record if it is inside the lease window, else None."""
        if record is None or record.is_expired(now_ms, self._config.lease_ms):
            return None
        return record

    # ------------------------------------------------------------------
    # acquire
    # ------------------------------------------------------------------

    async def acquire(self, booking_id: BookingId, holder_id: HolderId) -> LockRecord:
        """
        Acquire (or refresh) the lock on a booking for a driver.

        Safe to call concurrently from any process any number of times.
        Success is only reported after the lock write has committed.

        Args:
            booking_id: Booking to lock
            holder_id: Driver requesting the lock

        Returns:
            The committed LockRecord

        Raises:
            ValueError: If either id is empty
            BookingNotFoundError: If the booking does not exist
            BookingAlreadyAssignedError: If the booking is not pending or
                already has a driver (checked before the lock)
            LockHeldError: If another live attempt holds the lock, or the
                transaction conflicted or timed out
            LockStoreError: If the store failed for another reason
        """
        _require_id("booking_id", booking_id)
        _require_id("holder_id", holder_id)

        with self._tracer.span(
            "dispatchlock.lock.acquire",
            {
                ATTR_BOOKING_ID: booking_id,
                ATTR_HOLDER_ID: holder_id,
                ATTR_LEASE_MS: self._config.lease_ms,
            },
        ) as span:
            try:
                record, outcome = await asyncio.wait_for(
                    self._acquire_in_transaction(booking_id, holder_id),
                    timeout=self._config.transaction_timeout_seconds,
                )
            except BookingNotFoundError:
                self._cache.discard(booking_id)
                self._set_outcome(span, OUTCOME_NOT_FOUND)
                raise
            except BookingAlreadyAssignedError as e:
                self._cache.discard(booking_id)
                self._set_outcome(span, OUTCOME_ASSIGNED)
                logger.debug(
                    "Booking %s not available for %s: status=%s driver=%s",
                    booking_id,
                    holder_id,
                    e.status,
                    e.driver_id,
                )
                raise
            except LockHeldError as e:
                self._set_outcome(span, OUTCOME_HELD)
                if span is not None and e.lock_age_ms is not None:
                    span.set_attribute(ATTR_LOCK_AGE_MS, e.lock_age_ms)
                raise
            except TransactionConflictError as e:
                self._set_outcome(span, OUTCOME_HELD)
                logger.debug(
                    "Acquire transaction for booking %s by %s lost a commit race",
                    booking_id,
                    holder_id,
                )
                raise LockHeldError(booking_id, reason="conflict") from e
            except TimeoutError as e:
                self._set_outcome(span, OUTCOME_HELD)
                logger.warning(
                    "Acquire transaction for booking %s by %s timed out after %.1fs",
                    booking_id,
                    holder_id,
                    self._config.transaction_timeout_seconds,
                )
                raise LockHeldError(booking_id, reason="timeout") from e
            except LockStoreError as e:
                if span is not None:
                    span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                logger.warning(
                    "Store error acquiring lock for booking %s by %s: %s",
                    booking_id,
                    holder_id,
                    e,
                )
                raise

            self._cache.observe(booking_id, record)
            self._set_outcome(span, outcome)
            logger.debug(
                "Lock %s for booking %s by %s (expires_at_ms=%d)",
                outcome,
                booking_id,
                holder_id,
                record.expires_at_ms,
            )
            return record

    async def _acquire_in_transaction(
        self,
        booking_id: BookingId,
        holder_id: HolderId,
    ) -> tuple[LockRecord, str]:
        async with self._store.transaction() as tx:
            booking = await tx.get_booking(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)

            # A decided booking never creates or extends a lock.
            if not booking.is_available:
                raise BookingAlreadyAssignedError(booking_id, booking.status, booking.driver_id)

            now_ms = self._clock.now_ms()
            existing = await tx.get_lock(booking_id)
            self._cache.observe(booking_id, self._live(existing, now_ms))

            if existing is None:
                outcome = OUTCOME_CREATED
            elif existing.is_expired(now_ms, self._config.lease_ms):
                logger.debug(
                    "Previous lock for booking %s by %s expired, acquiring for %s",
                    booking_id,
                    existing.holder_id,
                    holder_id,
                )
                outcome = OUTCOME_EXPIRED_OVERRIDE
            elif existing.holder_id == holder_id:
                outcome = OUTCOME_REFRESHED
            else:
                lock_age_ms = existing.age_ms(now_ms)
                if lock_age_ms > self._config.stale_grace_ms and booking.is_available:
                    logger.warning(
                        "Stale lock detected for booking %s: held by %s for %dms, "
                        "booking still pending; overriding for %s",
                        booking_id,
                        existing.holder_id,
                        lock_age_ms,
                        holder_id,
                    )
                    outcome = OUTCOME_STALE_OVERRIDE
                else:
                    logger.debug(
                        "Lock for booking %s held by %s (%dms old), rejecting %s",
                        booking_id,
                        existing.holder_id,
                        lock_age_ms,
                        holder_id,
                    )
                    raise LockHeldError(
                        booking_id,
                        holder_id=existing.holder_id,
                        lock_age_ms=lock_age_ms,
                    )

            record = LockRecord.issue(booking_id, holder_id, now_ms, self._config.lease_ms)
            await tx.put_lock(record)

        return record, outcome

    @staticmethod
    def _set_outcome(span: object, outcome: str) -> None:
        if span is not None:
            span.set_attribute(ATTR_LOCK_OUTCOME, outcome)  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # release
    # ------------------------------------------------------------------

    async def release(self, booking_id: BookingId, holder_id: HolderId) -> bool:
        """
        Release a lock if, and only if, ``holder_id`` owns it.

        Releasing a lock held by someone else (or no lock at all) is a
        logged no-op. Store failures are logged and swallowed: an
        unreleased lock frees itself when its lease runs out.

        Args:
            booking_id: Booking to unlock
            holder_id: Driver releasing the lock

        Returns:
            True if this call deleted the caller's lock record

        Raises:
            ValueError: If either id is empty
        """
        _require_id("booking_id", booking_id)
        _require_id("holder_id", holder_id)

        with self._tracer.span(
            "dispatchlock.lock.release",
            {ATTR_BOOKING_ID: booking_id, ATTR_HOLDER_ID: holder_id},
        ) as span:
            try:
                released = await asyncio.wait_for(
                    self._release_in_transaction(booking_id, holder_id),
                    timeout=self._config.transaction_timeout_seconds,
                )
            except (LockStoreError, TimeoutError) as e:
                self._cache.discard(booking_id, holder_id)
                if span is not None:
                    span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                logger.warning(
                    "Failed to release lock for booking %s by %s, lease will expire: %r",
                    booking_id,
                    holder_id,
                    e,
                )
                return False

            if released:
                self._cache.discard(booking_id, holder_id)
                logger.debug("Lock released for booking %s by %s", booking_id, holder_id)
            return released

    async def _release_in_transaction(self, booking_id: BookingId, holder_id: HolderId) -> bool:
        async with self._store.transaction() as tx:
            existing = await tx.get_lock(booking_id)
            self._cache.observe(booking_id, self._live(existing, self._clock.now_ms()))

            if existing is None:
                return False

            if existing.holder_id != holder_id:
                logger.warning(
                    "Ignoring release of booking %s by %s: lock is owned by %s",
                    booking_id,
                    holder_id,
                    existing.holder_id,
                )
                return False

            await tx.delete_lock(booking_id)
        return True

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def _read_live(self, booking_id: BookingId) -> LockRecord | None:
        """Read the lock from the store and refresh the cache with what was seen."""
        record = await asyncio.wait_for(
            self._store.read_lock(booking_id),
            timeout=self._config.transaction_timeout_seconds,
        )
        live = self._live(record, self._clock.now_ms())
        self._cache.observe(booking_id, live)
        return live

    async def is_locked(self, booking_id: BookingId) -> bool:
        """
        Check whether a live lock exists for a booking.

        Answers from the cache when it holds an unexpired entry, otherwise
        reads the store. Never creates, refreshes or deletes a lock record.
        Fails open: a store error returns False.
        """
        with self._tracer.span("dispatchlock.lock.is_locked", {ATTR_BOOKING_ID: booking_id}):
            cached = self._cache.get_live(booking_id, self._clock.now_ms(), self._config.lease_ms)
            if cached is not None:
                return True

            try:
                live = await self._read_live(booking_id)
            except (LockStoreError, TimeoutError) as e:
                logger.warning("Error checking lock status for booking %s: %r", booking_id, e)
                return False
            return live is not None

    async def get_owner(self, booking_id: BookingId) -> HolderId | None:
        """
        Return the holder of the live lock on a booking, or None.

        Same cache-then-store behavior as is_locked. Store errors are
        logged and return None.
        """
        with self._tracer.span("dispatchlock.lock.get_owner", {ATTR_BOOKING_ID: booking_id}):
            cached = self._cache.get_live(booking_id, self._clock.now_ms(), self._config.lease_ms)
            if cached is not None:
                return cached.holder_id

            try:
                live = await self._read_live(booking_id)
            except (LockStoreError, TimeoutError) as e:
                logger.warning("Error getting lock owner for booking %s: %r", booking_id, e)
                return None
            return live.holder_id if live else None

    # ------------------------------------------------------------------
    # administration
    # ------------------------------------------------------------------

    async def force_release(self, booking_id: BookingId) -> bool:
        """
        Delete a booking's lock regardless of holder or lease state.

        Administrative escape hatch; not part of the accept path.

        Returns:
            True if a record existed

        Raises:
            ValueError: If booking_id is empty
            LockStoreError: If the store failed or timed out
        """
        _require_id("booking_id", booking_id)

        with self._tracer.span("dispatchlock.lock.force_release", {ATTR_BOOKING_ID: booking_id}):
            try:
                deleted = await asyncio.wait_for(
                    self._store.delete_lock(booking_id),
                    timeout=self._config.transaction_timeout_seconds,
                )
            except TimeoutError as e:
                raise LockStoreError(f"Force release of booking {booking_id} timed out") from e
            finally:
                self._cache.discard(booking_id)

            logger.info("Force released lock for booking %s (existed=%s)", booking_id, deleted)
            return deleted

    async def sweep_expired(self) -> int:
        """
        Delete every lock record older than the lease window.

        Pure garbage collection: acquire already ignores expired records.
        Also prunes expired entries from the local cache. Failures are
        logged and retried on the next sweep.

        Returns:
            Number of store records deleted (0 on failure)
        """
        with self._tracer.span("dispatchlock.lock.sweep", {ATTR_LEASE_MS: self._config.lease_ms}) as span:
            now_ms = self._clock.now_ms()
            pruned = self._cache.prune_expired(now_ms, self._config.lease_ms)

            try:
                deleted = await asyncio.wait_for(
                    self._store.delete_expired_locks(now_ms - self._config.lease_ms),
                    timeout=self._config.transaction_timeout_seconds,
                )
            except (LockStoreError, TimeoutError) as e:
                logger.warning("Error sweeping expired booking locks: %r", e)
                return 0

            if span is not None:
                span.set_attribute(ATTR_SWEPT_COUNT, deleted)
            if deleted or pruned:
                logger.info(
                    "Swept %d expired booking locks (%d cache entries pruned)",
                    deleted,
                    pruned,
                )
            return deleted

    def __repr__(self) -> str:
        return (
            f"BookingLockManager(lease_ms={self._config.lease_ms}, "
            f"stale_grace_ms={self._config.stale_grace_ms}, cache={self._cache!r})"
        )


__all__ = [
    "BookingLockManager",
    "OUTCOME_CREATED",
    "OUTCOME_REFRESHED",
    "OUTCOME_EXPIRED_OVERRIDE",
    "OUTCOME_STALE_OVERRIDE",
    "OUTCOME_HELD",
    "OUTCOME_NOT_FOUND",
    "OUTCOME_ASSIGNED",
]
