"""Abstract base class for durable ingestion-job storage.

The job store is the single source of truth for job state.  Every
operation touches one row (or one bounded query) and is safe to repeat
with the same id, so a crash between two calls never leaves a job in a
state the dispatcher cannot pick up again.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.models.job import IngestionJob, JobStatus, JobType


# Concrete implementation: SQLiteJobStore (src/providers/storage/)
class IJobStore(ABC):
    """Contract for job persistence used by the dispatcher, workers and
    the chunking coordinator."""

    @abstractmethod
    async def create(
        self,
        job_type: JobType,
        source_identifier: str,
        priority: int = 0,
        job_specific_data: dict[str, Any] | None = None,
        original_file_name: str | None = None,
    ) -> IngestionJob:
        """Insert a new job with ``status=queued`` and ``attempts=0``.

        Parameters
        ----------
        job_type:
            Selects the worker that will process the job.
        source_identifier:
            URL or absolute file path of the source.
        priority:
            Higher values are dispatched first.
        job_specific_data:
            Type-specific payload; validated against the payload model for
            *job_type* before insertion.

        Raises
        ------
        ValueError
            If *job_specific_data* does not match the payload model.
        """

    @abstractmethod
    async def get_by_id(self, job_id: str) -> IngestionJob | None:
        """Return the job or ``None`` when it does not exist."""

    @abstractmethod
    async def get_next_jobs(
        self,
        limit: int,
        job_types: list[JobType] | None = None,
    ) -> list[IngestionJob]:
        """Return up to *limit* jobs eligible for dispatch.

        Eligible means ``queued``, or ``retry_pending`` whose
        ``next_attempt_at`` has passed.  Ordered by ``priority`` descending,
        then ``created_at`` ascending.
        """

    @abstractmethod
    async def mark_as_started(self, job_id: str) -> None:
        """Set ``processing_source``, increment ``attempts`` by exactly one
        and stamp ``last_attempt_at``."""

    @abstractmethod
    async def mark_as_completed(self, job_id: str, related_object_id: str | None = None) -> None:
        """Terminal success; stamps ``completed_at``."""

    @abstractmethod
    async def mark_as_retryable(
        self,
        job_id: str,
        error_info: str,
        failed_stage: str,
        delay_ms: int,
    ) -> None:
        """Set ``retry_pending`` with ``next_attempt_at = now + delay_ms``."""

    @abstractmethod
    async def mark_as_failed(self, job_id: str, error_info: str, failed_stage: str) -> None:
        """Terminal failure; stamps ``completed_at``."""

    @abstractmethod
    async def mark_as_cancelled(self, job_id: str) -> bool:
        """Cancel a non-terminal job.  Returns ``False`` if it was already terminal."""

    @abstractmethod
    async def requeue(self, job_id: str) -> bool:
        """Return a ``failed`` or ``retry_pending`` job to ``queued``.

        Error fields are cleared; ``attempts`` is kept.  Returns ``False``
        when the job is in any other state.
        """

    @abstractmethod
    async def update(self, job_id: str, **fields: Any) -> bool:
        """Patch arbitrary job columns.  Returns whether a row changed.

        Raises
        ------
        ValueError
            If a field name is not a job column.
        """

    @abstractmethod
    async def find_job_awaiting_chunking(self, object_id: str) -> IngestionJob | None:
        """Return the ``vectorizing`` job for *object_id* whose
        ``chunking_status`` is ``pending`` or unset."""

    @abstractmethod
    async def find_latest_for_object(self, object_id: str) -> IngestionJob | None:
        """Return the most recently created job that produced *object_id*."""

    @abstractmethod
    async def get_by_status(
        self, status: JobStatus, limit: int | None = None
    ) -> list[IngestionJob]:
        """Return jobs in *status*, oldest first."""

    @abstractmethod
    async def get_stats(self) -> dict[str, int]:
        """Return a ``{status: count}`` mapping covering every status."""

    @abstractmethod
    async def cleanup_old_jobs(self, days_to_keep: int = 30) -> int:
        """Delete terminal jobs whose ``completed_at`` is older than the
        retention window.  Returns the number of rows removed."""
