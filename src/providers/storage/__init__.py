"""SQLite storage adapters for jobs, content objects and chunks.

All three stores share one :class:`SQLiteDatabase`, which owns the schema
and hands out short-lived WAL-mode connections.
"""

from src.providers.storage.database import SQLiteDatabase
from src.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from src.providers.storage.sqlite_job_store import SQLiteJobStore
from src.providers.storage.sqlite_object_store import SQLiteObjectStore

__all__ = ["SQLiteChunkStore", "SQLiteDatabase", "SQLiteJobStore", "SQLiteObjectStore"]
