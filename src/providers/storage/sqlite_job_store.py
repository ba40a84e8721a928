"""SQLite-backed ingestion job store.

Persists :class:`~src.models.job.IngestionJob` rows to the
``ingestion_jobs`` table.  Uses ``aiosqlite`` for async I/O with one
short-lived connection per operation (see
:class:`~src.providers.storage.database.SQLiteDatabase`).

State transitions that must not race (attempt counting, cancellation,
re-queueing) are single conditional ``UPDATE`` statements, so the row is
never read and written back in two steps.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from enum import Enum
from typing import Any

import aiosqlite
import structlog

from src.interfaces.job_store import IJobStore
from src.models.job import (
    ChunkingStatus,
    IngestionJob,
    JobProgress,
    JobStatus,
    JobType,
    ProgressStage,
    now_ms,
    parse_job_data,
)
from src.providers.storage.database import SQLiteDatabase
from src.utils.error_classifier import truncate_error_text
from src.utils.errors import JobStoreError

logger = structlog.get_logger(logger_name=__name__)

_DAY_MS = 24 * 60 * 60 * 1000

_UPDATABLE_COLUMNS = frozenset(
    {
        "status",
        "priority",
        "progress",
        "error_info",
        "failed_stage",
        "chunking_status",
        "chunking_error_info",
        "job_specific_data",
        "related_object_id",
        "next_attempt_at",
        "completed_at",
        "original_file_name",
    }
)

_TERMINAL = tuple(s.value for s in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED))

_INSERT_SQL = """\
INSERT INTO ingestion_jobs (
    id, job_type, source_identifier, original_file_name, status, priority,
    attempts, job_specific_data, created_at, updated_at
) VALUES (?, ?, ?, ?, 'queued', ?, 0, ?, ?, ?);
"""

_SELECT_BY_ID_SQL = "SELECT * FROM ingestion_jobs WHERE id = ?;"

_SELECT_NEXT_SQL = """\
SELECT * FROM ingestion_jobs
WHERE (status = 'queued'
       OR (status = 'retry_pending' AND next_attempt_at <= ?))
{type_filter}
ORDER BY priority DESC, created_at ASC
LIMIT ?;
"""

_MARK_STARTED_SQL = """\
UPDATE ingestion_jobs
SET status = 'processing_source',
    attempts = attempts + 1,
    last_attempt_at = ?,
    next_attempt_at = NULL,
    progress = ?,
    updated_at = ?
WHERE id = ?;
"""

_MARK_COMPLETED_SQL = """\
UPDATE ingestion_jobs
SET status = 'completed',
    related_object_id = COALESCE(?, related_object_id),
    error_info = NULL,
    failed_stage = NULL,
    progress = ?,
    completed_at = ?,
    updated_at = ?
WHERE id = ?;
"""

_MARK_RETRYABLE_SQL = """\
UPDATE ingestion_jobs
SET status = 'retry_pending',
    error_info = ?,
    failed_stage = ?,
    next_attempt_at = ?,
    updated_at = ?
WHERE id = ?;
"""

_MARK_FAILED_SQL = """\
UPDATE ingestion_jobs
SET status = 'failed',
    error_info = ?,
    failed_stage = ?,
    progress = ?,
    completed_at = ?,
    updated_at = ?
WHERE id = ?;
"""

_MARK_CANCELLED_SQL = f"""\
UPDATE ingestion_jobs
SET status = 'cancelled',
    completed_at = ?,
    updated_at = ?
WHERE id = ? AND status NOT IN {_TERMINAL!r};
"""

_REQUEUE_SQL = """\
UPDATE ingestion_jobs
SET status = 'queued',
    error_info = NULL,
    failed_stage = NULL,
    next_attempt_at = NULL,
    completed_at = NULL,
    updated_at = ?
WHERE id = ? AND status IN ('failed', 'retry_pending');
"""

_AWAITING_CHUNKING_SQL = """\
SELECT * FROM ingestion_jobs
WHERE related_object_id = ?
  AND (chunking_status = 'pending' OR chunking_status IS NULL)
  AND status = 'vectorizing'
ORDER BY created_at DESC
LIMIT 1;
"""

_LATEST_FOR_OBJECT_SQL = """\
SELECT * FROM ingestion_jobs
WHERE related_object_id = ?
ORDER BY created_at DESC
LIMIT 1;
"""

_CLEANUP_SQL = f"""\
DELETE FROM ingestion_jobs
WHERE status IN {_TERMINAL!r}
  AND completed_at IS NOT NULL
  AND completed_at < ?;
"""


def _encode(value: Any) -> Any:
    """Convert model values into SQLite-storable primitives."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, JobProgress):
        return value.model_dump_json()
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return value


def _progress_json(stage: ProgressStage, percent: float, message: str) -> str:
    return JobProgress(stage=stage, percent=percent, message=message).model_dump_json()


class SQLiteJobStore(IJobStore):
    """SQLite-backed job persistence."""

    def __init__(
        self,
        database: SQLiteDatabase,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._db = database
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation / lookup
    # ------------------------------------------------------------------

    async def create(
        self,
        job_type: JobType,
        source_identifier: str,
        priority: int = 0,
        job_specific_data: dict[str, Any] | None = None,
        original_file_name: str | None = None,
    ) -> IngestionJob:
        job_type = JobType(job_type)
        payload = parse_job_data(job_type, job_specific_data, strict=True)
        payload_json = payload.model_dump_json(exclude_none=True) if payload else None

        job_id = str(uuid.uuid4())
        now = self._clock()
        async with self._db.connect() as db:
            await db.execute(
                _INSERT_SQL,
                (
                    job_id,
                    job_type.value,
                    source_identifier,
                    original_file_name,
                    priority,
                    payload_json,
                    now,
                    now,
                ),
            )
            await db.commit()

        logger.info(
            "job_created",
            job_id=job_id,
            job_type=job_type.value,
            source=source_identifier,
            priority=priority,
        )
        job = await self.get_by_id(job_id)
        if job is None:
            raise JobStoreError(message=f"Job {job_id} not readable after insert")
        return job

    async def get_by_id(self, job_id: str) -> IngestionJob | None:
        async with self._db.connect() as db:
            cursor = await db.execute(_SELECT_BY_ID_SQL, (job_id,))
            row = await cursor.fetchone()
        return self._row_to_job(row) if row else None

    async def get_next_jobs(
        self,
        limit: int,
        job_types: list[JobType] | None = None,
    ) -> list[IngestionJob]:
        if limit <= 0:
            return []
        if job_types is not None and not job_types:
            return []

        params: list[Any] = [self._clock()]
        type_filter = ""
        if job_types:
            placeholders = ", ".join("?" for _ in job_types)
            type_filter = f"AND job_type IN ({placeholders})"
            params.extend(JobType(t).value for t in job_types)
        params.append(limit)

        async with self._db.connect() as db:
            cursor = await db.execute(_SELECT_NEXT_SQL.format(type_filter=type_filter), params)
            rows = await cursor.fetchall()
        return [self._row_to_job(r) for r in rows]

    async def find_job_awaiting_chunking(self, object_id: str) -> IngestionJob | None:
        async with self._db.connect() as db:
            cursor = await db.execute(_AWAITING_CHUNKING_SQL, (object_id,))
            row = await cursor.fetchone()
        return self._row_to_job(row) if row else None

    async def find_latest_for_object(self, object_id: str) -> IngestionJob | None:
        async with self._db.connect() as db:
            cursor = await db.execute(_LATEST_FOR_OBJECT_SQL, (object_id,))
            row = await cursor.fetchone()
        return self._row_to_job(row) if row else None

    async def get_by_status(
        self, status: JobStatus, limit: int | None = None
    ) -> list[IngestionJob]:
        sql = "SELECT * FROM ingestion_jobs WHERE status = ? ORDER BY created_at ASC"
        params: list[Any] = [JobStatus(status).value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        async with self._db.connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._row_to_job(r) for r in rows]

    async def get_stats(self) -> dict[str, int]:
        async with self._db.connect() as db:
            cursor = await db.execute(
                "SELECT status, COUNT(*) AS total FROM ingestion_jobs GROUP BY status"
            )
            rows = await cursor.fetchall()
        stats = {status.value: 0 for status in JobStatus}
        for row in rows:
            stats[row["status"]] = row["total"]
        return stats

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    async def mark_as_started(self, job_id: str) -> None:
        now = self._clock()
        progress = _progress_json(ProgressStage.INITIALIZING, 0.0, "Starting")
        await self._execute(_MARK_STARTED_SQL, (now, progress, now, job_id))
        logger.debug("job_marked_started", job_id=job_id)

    async def mark_as_completed(self, job_id: str, related_object_id: str | None = None) -> None:
        now = self._clock()
        progress = _progress_json(ProgressStage.FINALIZING, 100.0, "Completed")
        await self._execute(
            _MARK_COMPLETED_SQL, (related_object_id, progress, now, now, job_id)
        )
        logger.debug("job_marked_completed", job_id=job_id, object_id=related_object_id)

    async def mark_as_retryable(
        self,
        job_id: str,
        error_info: str,
        failed_stage: str,
        delay_ms: int,
    ) -> None:
        now = self._clock()
        await self._execute(
            _MARK_RETRYABLE_SQL,
            (truncate_error_text(error_info), failed_stage, now + max(delay_ms, 0), now, job_id),
        )

    async def mark_as_failed(self, job_id: str, error_info: str, failed_stage: str) -> None:
        now = self._clock()
        progress = _progress_json(ProgressStage.ERROR, 0.0, "Failed")
        await self._execute(
            _MARK_FAILED_SQL,
            (truncate_error_text(error_info), failed_stage, progress, now, now, job_id),
        )

    async def mark_as_cancelled(self, job_id: str) -> bool:
        now = self._clock()
        return await self._execute(_MARK_CANCELLED_SQL, (now, now, job_id)) > 0

    async def requeue(self, job_id: str) -> bool:
        return await self._execute(_REQUEUE_SQL, (self._clock(), job_id)) > 0

    async def update(self, job_id: str, **fields: Any) -> bool:
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            msg = f"Unknown job fields: {sorted(unknown)}"
            raise ValueError(msg)
        if not fields:
            return False

        for key in ("error_info", "chunking_error_info"):
            if isinstance(fields.get(key), str):
                fields[key] = truncate_error_text(fields[key])

        assignments = ", ".join(f"{column} = ?" for column in fields)
        params = [_encode(v) for v in fields.values()]
        params.extend([self._clock(), job_id])
        changed = await self._execute(
            f"UPDATE ingestion_jobs SET {assignments}, updated_at = ? WHERE id = ?",
            params,
        )
        return changed > 0

    async def cleanup_old_jobs(self, days_to_keep: int = 30) -> int:
        cutoff = self._clock() - days_to_keep * _DAY_MS
        removed = await self._execute(_CLEANUP_SQL, (cutoff,))
        logger.info("old_jobs_cleaned", removed=removed, days_to_keep=days_to_keep)
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute(self, sql: str, params: Any) -> int:
        """Run one write statement and return the affected row count."""
        async with self._db.connect() as db:
            cursor = await db.execute(sql, params)
            await db.commit()
            return cursor.rowcount

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> IngestionJob:
        data = dict(row)

        progress = None
        if data.get("progress"):
            try:
                progress = JobProgress.model_validate_json(data["progress"])
            except ValueError:
                logger.warning("job_progress_decode_failed", job_id=data["id"])

        payload = None
        if data.get("job_specific_data"):
            try:
                payload = json.loads(data["job_specific_data"])
            except json.JSONDecodeError:
                logger.warning("job_data_decode_failed", job_id=data["id"])
        if payload is not None and not isinstance(payload, dict):
            payload = None

        chunking_status = data.get("chunking_status")
        return IngestionJob(
            **{
                **data,
                "progress": progress,
                "job_specific_data": payload,
                "chunking_status": ChunkingStatus(chunking_status) if chunking_status else None,
            }
        )
