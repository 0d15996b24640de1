"""Request ledger storage: SQL table, embedded JSONB array, or in-memory."""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession

from src.storage.embedded import embedded_storage
from src.storage.memory import memory_storage
from src.storage.repository import CounterStore, LetterStore, RequestRepository, Storage
from src.storage.sql import sql_storage

__all__ = [
    "CounterStore",
    "LetterStore",
    "RequestRepository",
    "Storage",
    "build_storage",
    "embedded_storage",
    "memory_storage",
    "shared_memory_storage",
    "sql_storage",
]


@lru_cache(maxsize=1)
def shared_memory_storage() -> Storage:
    """Process-wide in-memory storage for local runs without PostgreSQL."""
    storage, _ = memory_storage()
    return storage


def build_storage(backend: str, db: AsyncSession | None = None) -> Storage:
    """Storage for ``backend`` ("sql" | "embedded" | "memory")."""
    if backend == "memory":
        return shared_memory_storage()
    if db is None:
        msg = f"Storage backend '{backend}' needs a database session"
        raise ValueError(msg)
    if backend == "sql":
        return sql_storage(db)
    if backend == "embedded":
        return embedded_storage(db)
    msg = f"Unknown storage backend: {backend}. Must be one of ['embedded', 'memory', 'sql']"
    raise ValueError(msg)
