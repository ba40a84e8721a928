"""SQLite database handle and schema for the ingestion stores.

One :class:`SQLiteDatabase` is created at startup and passed to every
store.  Each store operation opens its own short-lived ``aiosqlite``
connection through :meth:`SQLiteDatabase.connect`; there are no
long-running transactions, so WAL mode plus a busy timeout is enough for
the dispatcher, the chunking coordinator and the CLI to share the file.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite
import structlog

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/ingestion.db")
_DEFAULT_BUSY_TIMEOUT_MS = 5000

_CREATE_JOBS_SQL = """\
CREATE TABLE IF NOT EXISTS ingestion_jobs (
    id                  TEXT    PRIMARY KEY,
    job_type            TEXT    NOT NULL,
    source_identifier   TEXT    NOT NULL,
    original_file_name  TEXT,
    status              TEXT    NOT NULL DEFAULT 'queued',
    priority            INTEGER NOT NULL DEFAULT 0,
    attempts            INTEGER NOT NULL DEFAULT 0,
    last_attempt_at     INTEGER,
    next_attempt_at     INTEGER,
    progress            TEXT,
    error_info          TEXT,
    failed_stage        TEXT,
    chunking_status     TEXT,
    chunking_error_info TEXT,
    job_specific_data   TEXT,
    related_object_id   TEXT,
    created_at          INTEGER NOT NULL,
    updated_at          INTEGER NOT NULL,
    completed_at        INTEGER
);
"""

_CREATE_OBJECTS_SQL = """\
CREATE TABLE IF NOT EXISTS objects (
    id                  TEXT    PRIMARY KEY,
    object_type         TEXT    NOT NULL,
    source_uri          TEXT    NOT NULL UNIQUE,
    title               TEXT,
    status              TEXT    NOT NULL DEFAULT 'new',
    cleaned_text        TEXT,
    parsed_content_json TEXT,
    error_info          TEXT,
    parsed_at           INTEGER,
    file_hash           TEXT,
    original_file_name  TEXT,
    file_size_bytes     INTEGER,
    internal_file_path  TEXT,
    summary             TEXT,
    tags_json           TEXT,
    propositions_json   TEXT,
    created_at          INTEGER NOT NULL,
    updated_at          INTEGER NOT NULL
);
"""

_CREATE_CHUNKS_SQL = """\
CREATE TABLE IF NOT EXISTS chunks (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    object_id         TEXT    NOT NULL REFERENCES objects(id) ON DELETE CASCADE,
    chunk_idx         INTEGER NOT NULL,
    content           TEXT    NOT NULL,
    summary           TEXT,
    tags_json         TEXT,
    propositions_json TEXT,
    token_count       INTEGER,
    created_at        INTEGER NOT NULL,
    UNIQUE(object_id, chunk_idx)
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_jobs_dispatch "
    "ON ingestion_jobs(status, priority DESC, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_next_attempt ON ingestion_jobs(next_attempt_at);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_related_object ON ingestion_jobs(related_object_id);",
    "CREATE INDEX IF NOT EXISTS idx_objects_status ON objects(status, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_objects_file_hash ON objects(file_hash);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_object ON chunks(object_id, chunk_idx);",
]


class SQLiteDatabase:
    """Connection factory and schema owner for the ingestion database."""

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        busy_timeout_ms: int = _DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self._db_path = Path(db_path)
        self._busy_timeout_ms = busy_timeout_ms

    @property
    def path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist and enable WAL."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            # journal_mode is persistent in the file; set once here.
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_JOBS_SQL)
            await db.execute(_CREATE_OBJECTS_SQL)
            await db.execute(_CREATE_CHUNKS_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("ingestion_db_initialized", path=str(self._db_path))

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a short-lived connection with row access by column name."""
        async with aiosqlite.connect(
            str(self._db_path),
            timeout=self._busy_timeout_ms / 1000,
        ) as db:
            db.row_factory = aiosqlite.Row
            await db.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)};")
            await db.execute("PRAGMA foreign_keys = ON;")
            yield db
