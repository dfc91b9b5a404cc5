"""
Governance persistence: an in-memory store and an aiosqlite-backed store
sharing the GovernanceStore interface.
"""

from .base import GovernanceStore
from .memory import MemoryStore
from .sqlite import SQLiteStore

__all__ = ["GovernanceStore", "MemoryStore", "SQLiteStore", "open_store"]


async def open_store(database_config) -> GovernanceStore:
    """Open the store described by a DatabaseConfig section."""
    if database_config.type == "sqlite":
        return await SQLiteStore.create(
            database_config.sqlite.path,
            wal_mode=database_config.sqlite.wal_mode,
        )
    return MemoryStore()
