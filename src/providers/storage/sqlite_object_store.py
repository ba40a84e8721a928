"""SQLite-backed content-object store.

Persists :class:`~src.models.content.ContentObject` rows to the
``objects`` table.  The embedding claim is one conditional ``UPDATE``
(``WHERE id = ? AND status = 'parsed'``); the row count tells the caller
whether it won.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

from src.interfaces.object_store import IObjectStore
from src.models.content import ContentObject, ObjectStatus, ObjectType
from src.models.job import now_ms
from src.providers.storage.database import SQLiteDatabase
from src.utils.error_classifier import truncate_error_text
from src.utils.errors import JobStoreError

logger = structlog.get_logger(logger_name=__name__)

_COLUMNS = (
    "title",
    "status",
    "cleaned_text",
    "parsed_content_json",
    "error_info",
    "parsed_at",
    "file_hash",
    "original_file_name",
    "file_size_bytes",
    "internal_file_path",
    "summary",
    "tags_json",
    "propositions_json",
    "source_uri",
)
_UPDATABLE_COLUMNS = frozenset(_COLUMNS)

_CLAIM_SQL = """\
UPDATE objects
SET status = 'embedding', error_info = NULL, updated_at = ?
WHERE id = ? AND status = 'parsed';
"""


def _encode(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class SQLiteObjectStore(IObjectStore):
    """SQLite-backed content-object persistence."""

    def __init__(
        self,
        database: SQLiteDatabase,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._db = database
        self._clock = clock

    async def create(
        self,
        object_type: ObjectType,
        source_uri: str,
        title: str | None = None,
        status: ObjectStatus = ObjectStatus.NEW,
        **fields: Any,
    ) -> ContentObject:
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            msg = f"Unknown object fields: {sorted(unknown)}"
            raise ValueError(msg)

        object_id = str(uuid.uuid4())
        now = self._clock()
        values: dict[str, Any] = {
            "id": object_id,
            "object_type": ObjectType(object_type).value,
            "source_uri": source_uri,
            "title": title,
            "status": ObjectStatus(status).value,
            **{k: _encode(v) for k, v in fields.items()},
            "created_at": now,
            "updated_at": now,
        }
        if values.get("error_info"):
            values["error_info"] = truncate_error_text(values["error_info"])

        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        async with self._db.connect() as db:
            await db.execute(
                f"INSERT INTO objects ({columns}) VALUES ({placeholders})",
                list(values.values()),
            )
            await db.commit()

        logger.info("object_created", object_id=object_id, source_uri=source_uri)
        created = await self.get_by_id(object_id)
        if created is None:
            raise JobStoreError(message=f"Object {object_id} not readable after insert")
        return created

    async def get_by_id(self, object_id: str) -> ContentObject | None:
        return await self._fetch_one("SELECT * FROM objects WHERE id = ?", (object_id,))

    async def get_by_source_uri(self, source_uri: str) -> ContentObject | None:
        return await self._fetch_one("SELECT * FROM objects WHERE source_uri = ?", (source_uri,))

    async def find_by_file_hash(self, file_hash: str) -> ContentObject | None:
        return await self._fetch_one(
            "SELECT * FROM objects WHERE file_hash = ? ORDER BY created_at DESC LIMIT 1",
            (file_hash,),
        )

    async def update(self, object_id: str, **fields: Any) -> bool:
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            msg = f"Unknown object fields: {sorted(unknown)}"
            raise ValueError(msg)
        if not fields:
            return False
        if isinstance(fields.get("error_info"), str):
            fields["error_info"] = truncate_error_text(fields["error_info"])

        assignments = ", ".join(f"{column} = ?" for column in fields)
        params = [_encode(v) for v in fields.values()]
        params.extend([self._clock(), object_id])
        return (
            await self._execute(
                f"UPDATE objects SET {assignments}, updated_at = ? WHERE id = ?", params
            )
            > 0
        )

    async def update_status(
        self,
        object_id: str,
        status: ObjectStatus,
        error_info: str | None = None,
    ) -> bool:
        changed = await self._execute(
            "UPDATE objects SET status = ?, error_info = ?, updated_at = ? WHERE id = ?",
            (ObjectStatus(status).value, truncate_error_text(error_info), self._clock(), object_id),
        )
        logger.debug(
            "object_status_updated", object_id=object_id, status=ObjectStatus(status).value
        )
        return changed > 0

    async def claim_for_embedding(self, object_id: str) -> bool:
        claimed = await self._execute(_CLAIM_SQL, (self._clock(), object_id)) == 1
        logger.debug("object_claim_attempted", object_id=object_id, claimed=claimed)
        return claimed

    async def find_by_status(
        self,
        statuses: list[ObjectStatus],
        limit: int | None = None,
    ) -> list[ContentObject]:
        if not statuses:
            return []
        placeholders = ", ".join("?" for _ in statuses)
        sql = f"SELECT * FROM objects WHERE status IN ({placeholders}) ORDER BY created_at ASC"
        params: list[Any] = [ObjectStatus(s).value for s in statuses]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        async with self._db.connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [ContentObject(**dict(r)) for r in rows]

    async def reset_status(
        self,
        from_status: ObjectStatus,
        to_status: ObjectStatus,
        object_ids: list[str] | None = None,
    ) -> list[str]:
        where = "status = ?"
        params: list[Any] = [ObjectStatus(from_status).value]
        if object_ids is not None:
            if not object_ids:
                return []
            where += f" AND id IN ({', '.join('?' for _ in object_ids)})"
            params.extend(object_ids)

        async with self._db.connect() as db:
            # Write lock up front so the selected ids are exactly the ones updated.
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(f"SELECT id FROM objects WHERE {where}", params)
            ids = [row["id"] for row in await cursor.fetchall()]
            if ids:
                await db.execute(
                    f"UPDATE objects SET status = ?, error_info = NULL, updated_at = ? "
                    f"WHERE {where}",
                    [ObjectStatus(to_status).value, self._clock(), *params],
                )
                await db.commit()

        if ids:
            logger.info(
                "object_status_reset",
                from_status=ObjectStatus(from_status).value,
                to_status=ObjectStatus(to_status).value,
                count=len(ids),
            )
        return ids

    async def delete(self, object_id: str) -> bool:
        removed = await self._execute("DELETE FROM objects WHERE id = ?", (object_id,))
        if removed:
            logger.info("object_deleted", object_id=object_id)
        return removed > 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch_one(self, sql: str, params: Any) -> ContentObject | None:
        async with self._db.connect() as db:
            cursor = await db.execute(sql, params)
            row = await cursor.fetchone()
        return ContentObject(**dict(row)) if row else None

    async def _execute(self, sql: str, params: Any) -> int:
        async with self._db.connect() as db:
            cursor = await db.execute(sql, params)
            await db.commit()
            return cursor.rowcount
