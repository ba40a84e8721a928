"""SQLite-backed chunk store.

Chunk rows mirror the vector-store documents of an object.  A bulk write
replaces the object's chunk set inside one transaction, so readers see
either the previous chunks or the new ones, never a mix.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import structlog

from src.interfaces.chunk_store import IChunkStore
from src.models.content import ChunkCandidate, ChunkRecord
from src.models.job import now_ms
from src.providers.storage.database import SQLiteDatabase

logger = structlog.get_logger(logger_name=__name__)

_UPSERT_SQL = """\
INSERT INTO chunks (
    object_id, chunk_idx, content, summary, tags_json, propositions_json,
    token_count, created_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(object_id, chunk_idx)
DO UPDATE SET content           = excluded.content,
              summary           = excluded.summary,
              tags_json         = excluded.tags_json,
              propositions_json = excluded.propositions_json,
              token_count       = excluded.token_count;
"""

_TRIM_SQL = "DELETE FROM chunks WHERE object_id = ? AND chunk_idx >= ?;"

_SELECT_BY_OBJECT_SQL = "SELECT * FROM chunks WHERE object_id = ? ORDER BY chunk_idx ASC;"


class SQLiteChunkStore(IChunkStore):
    """SQLite-backed chunk persistence."""

    def __init__(
        self,
        database: SQLiteDatabase,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._db = database
        self._clock = clock

    async def add_chunks_bulk(
        self,
        object_id: str,
        chunks: list[ChunkCandidate],
    ) -> list[ChunkRecord]:
        now = self._clock()
        rows = [
            (
                object_id,
                chunk.chunk_idx,
                chunk.content,
                chunk.summary,
                json.dumps(chunk.tags) if chunk.tags else None,
                json.dumps(chunk.propositions) if chunk.propositions else None,
                chunk.token_count,
                now,
            )
            for chunk in chunks
        ]
        async with self._db.connect() as db:
            await db.executemany(_UPSERT_SQL, rows)
            await db.execute(_TRIM_SQL, (object_id, len(chunks)))
            await db.commit()
            cursor = await db.execute(_SELECT_BY_OBJECT_SQL, (object_id,))
            persisted = await cursor.fetchall()

        logger.info("chunks_persisted", object_id=object_id, count=len(rows))
        return [ChunkRecord(**dict(r)) for r in persisted]

    async def list_by_object_id(self, object_id: str) -> list[ChunkRecord]:
        async with self._db.connect() as db:
            cursor = await db.execute(_SELECT_BY_OBJECT_SQL, (object_id,))
            rows = await cursor.fetchall()
        return [ChunkRecord(**dict(r)) for r in rows]

    async def delete_by_object_id(self, object_id: str) -> int:
        async with self._db.connect() as db:
            cursor = await db.execute("DELETE FROM chunks WHERE object_id = ?", (object_id,))
            await db.commit()
            removed = cursor.rowcount
        logger.debug("chunks_deleted", object_id=object_id, removed=removed)
        return removed
