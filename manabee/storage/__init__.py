"""
Storage - one Store interface with interchangeable SQL and memory backends.
"""

from manabee.config import Settings
from manabee.db.session import Database
from manabee.storage.base import Store
from manabee.storage.memory import MemoryStore
from manabee.storage.sql import SqlStore


def build_store(settings: Settings, database: Database | None) -> Store:
    """Select the store implementation configured for this process."""
    if settings.storage_backend == "memory":
        return MemoryStore()
    if database is None:
        raise ValueError("SQL storage requires a Database")
    return SqlStore(database)


__all__ = ["MemoryStore", "SqlStore", "Store", "build_store"]
