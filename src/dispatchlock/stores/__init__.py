"""Lock store implementations for the dispatchlock library."""

from dispatchlock.stores.in_memory import InMemoryLockStore
from dispatchlock.stores.interface import LockStore, LockTransaction
from dispatchlock.stores.postgresql import PostgreSQLLockStore
from dispatchlock.stores.sqlite import SQLiteLockStore

__all__ = [
    # Abstract base classes
    "LockStore",
    # Protocols
    "LockTransaction",
    # Concrete implementations
    "InMemoryLockStore",
    "SQLiteLockStore",
    "PostgreSQLLockStore",
]
