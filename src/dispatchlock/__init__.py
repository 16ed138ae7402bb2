"""
dispatchlock - Booking assignment lock for delivery dispatch.

This library provides:
- BookingLockManager: transactional lease lock guaranteeing at most one
  driver is assigned per booking across server processes
- Lock stores with In-Memory, SQLite and PostgreSQL backends
- Local read-through lock cache and periodic expiry sweeper
- BookingAcceptanceWorkflow: acquire, assign, release
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("dispatchlock")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from dispatchlock.cache import CachedLock, LockCache
from dispatchlock.clock import Clock, ManualClock, SystemClock
from dispatchlock.config import DEFAULT_LEASE_MS, DEFAULT_STALE_GRACE_MS, LockConfig
from dispatchlock.exceptions import (
    BookingAlreadyAssignedError,
    BookingNotFoundError,
    DispatchLockError,
    LockHeldError,
    LockStoreError,
    TransactionConflictError,
)
from dispatchlock.manager import BookingLockManager
from dispatchlock.stores.in_memory import InMemoryLockStore
from dispatchlock.stores.interface import LockStore, LockTransaction
from dispatchlock.stores.postgresql import PostgreSQLLockStore
from dispatchlock.stores.sqlite import SQLiteLockStore
from dispatchlock.sweeper import LockSweeper
from dispatchlock.types import (
    BookingDocument,
    BookingId,
    BookingStatus,
    EpochMillis,
    HolderId,
    LockRecord,
)
from dispatchlock.workflow import (
    AcceptanceOutcome,
    AcceptanceResult,
    BookingAcceptanceWorkflow,
)

__all__ = [
    # Version
    "__version__",
    # Types
    "BookingId",
    "HolderId",
    "EpochMillis",
    "BookingStatus",
    "BookingDocument",
    "LockRecord",
    # Configuration
    "LockConfig",
    "DEFAULT_LEASE_MS",
    "DEFAULT_STALE_GRACE_MS",
    # Clocks
    "Clock",
    "SystemClock",
    "ManualClock",
    # Lock manager
    "BookingLockManager",
    "LockCache",
    "CachedLock",
    "LockSweeper",
    # Stores
    "LockStore",
    "LockTransaction",
    "InMemoryLockStore",
    "SQLiteLockStore",
    "PostgreSQLLockStore",
    # Caller workflow
    "BookingAcceptanceWorkflow",
    "AcceptanceOutcome",
    "AcceptanceResult",
    # Exceptions
    "DispatchLockError",
    "BookingNotFoundError",
    "BookingAlreadyAssignedError",
    "LockHeldError",
    "LockStoreError",
    "TransactionConflictError",
]

