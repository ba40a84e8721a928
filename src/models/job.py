"""Ingestion job models.

Defines Pydantic v2 models for the durable job record, its progress
snapshot, and the per-type job payloads.  Job rows are immutable snapshots:
the store returns a fresh :class:`IngestionJob` on every read, and state
changes go through the store rather than through the model.

Timestamps are integer epoch milliseconds throughout the job table so that
``next_attempt_at <= now`` comparisons stay in SQL.
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = structlog.get_logger(logger_name=__name__)


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class JobType(str, Enum):  # noqa: UP042
    """Kinds of source a job can ingest.  One worker is registered per type."""

    URL = "url"
    PDF = "pdf"


class JobStatus(str, Enum):  # noqa: UP042
    """Lifecycle states of an ingestion job.

    ``queued`` and ``retry_pending`` are eligible for dispatch, the middle
    states are written by workers as they progress, and ``vectorizing`` is
    the hand-off point to the chunking coordinator.
    """

    QUEUED = "queued"
    PROCESSING_SOURCE = "processing_source"
    PARSING_CONTENT = "parsing_content"
    AI_PROCESSING = "ai_processing"
    PERSISTING_DATA = "persisting_data"
    VECTORIZING = "vectorizing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY_PENDING = "retry_pending"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class ChunkingStatus(str, Enum):  # noqa: UP042
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressStage(str, Enum):  # noqa: UP042
    """Coarse stage labels carried in a job's progress snapshot."""

    INITIALIZING = "initializing"
    FETCHING = "fetching"
    PROCESSING = "processing"
    PARSING = "parsing"
    CLEANING = "cleaning"
    SUMMARIZING = "summarizing"
    PERSISTING = "persisting"
    VECTORIZING = "vectorizing"
    FINALIZING = "finalizing"
    ERROR = "error"


class JobEvent(str, Enum):  # noqa: UP042
    """Lifecycle notifications published on the job event bus."""

    CREATED = "job:created"
    STARTED = "job:started"
    COMPLETED = "job:completed"
    WORKER_COMPLETED = "worker:completed"
    RETRY = "job:retry"
    FAILED = "job:failed"
    CANCELLED = "job:cancelled"


# ---------------------------------------------------------------------------
# Progress + job record
# ---------------------------------------------------------------------------
class JobProgress(BaseModel):
    """Snapshot of how far a worker has got with a job."""

    model_config = ConfigDict(frozen=True)

    stage: ProgressStage = Field(description="Coarse stage label.")
    percent: float = Field(default=0.0, ge=0.0, le=100.0, description="Completion 0-100.")
    message: str = Field(default="", description="Human-readable status line.")


class IngestionJob(BaseModel):
    """One row of the ``ingestion_jobs`` table."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="UUID of the job.")
    job_type: JobType
    source_identifier: str = Field(description="URL or absolute file path of the source.")
    original_file_name: str | None = None
    status: JobStatus = JobStatus.QUEUED
    priority: int = Field(default=0, description="Higher values are dispatched first.")
    attempts: int = Field(default=0, ge=0, description="Number of times the job was started.")
    last_attempt_at: int | None = None
    next_attempt_at: int | None = None
    progress: JobProgress | None = None
    error_info: str | None = None
    failed_stage: str | None = None
    chunking_status: ChunkingStatus | None = None
    chunking_error_info: str | None = None
    job_specific_data: dict[str, Any] | None = None
    related_object_id: str | None = None
    created_at: int
    updated_at: int
    completed_at: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def typed_data(self) -> UrlJobData | PdfJobData | None:
        """Decode ``job_specific_data`` into the payload model for this job type."""
        return parse_job_data(self.job_type, self.job_specific_data, strict=False)


# ---------------------------------------------------------------------------
# Job-specific payloads (tagged by job_type)
# ---------------------------------------------------------------------------
class UrlJobData(BaseModel):
    """Payload accepted for ``url`` jobs."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str | None = None
    title: str | None = None
    related_object_id: str | None = None
    notebook_id: str | None = None


class PdfJobData(BaseModel):
    """Payload accepted for ``pdf`` jobs."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    file_name: str | None = None
    file_size: int | None = Field(default=None, ge=0)
    notebook_id: str | None = None


JOB_DATA_MODELS: dict[JobType, type[BaseModel]] = {
    JobType.URL: UrlJobData,
    JobType.PDF: PdfJobData,
}


def parse_job_data(
    job_type: JobType | str,
    raw: dict[str, Any] | str | None,
    strict: bool = True,
) -> UrlJobData | PdfJobData | None:
    """Decode a job payload into the model registered for *job_type*.

    Parameters
    ----------
    job_type:
        The job's type; selects the payload model.
    raw:
        A dict, a JSON string (as persisted), or ``None``.
    strict:
        When ``True`` (creation boundary) malformed payloads raise
        :class:`ValueError`.  When ``False`` (reading persisted rows) they
        are logged and decoded as ``None``.
    """
    if raw is None or raw == "":
        return None

    model = JOB_DATA_MODELS[JobType(job_type)]
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        return model.model_validate(data)  # type: ignore[return-value]
    except (ValidationError, json.JSONDecodeError, TypeError) as exc:
        if strict:
            raise ValueError(f"Invalid job_specific_data for {job_type}: {exc}") from exc
        logger.warning("job_data_decode_failed", job_type=str(job_type), error=str(exc))
        return None
