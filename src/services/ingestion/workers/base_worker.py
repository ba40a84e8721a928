"""Shared plumbing for ingestion workers.

A worker turns one job into a ``parsed`` content object and hands the
job to the chunking coordinator.  It reports progress by writing the job
row directly; the dispatcher only looks at what the worker raised.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from src.interfaces.job_store import IJobStore
from src.interfaces.object_store import IObjectStore
from src.models.job import ChunkingStatus, IngestionJob, JobProgress, JobStatus, ProgressStage
from src.utils.errors import WorkerError

logger = structlog.get_logger(logger_name=__name__)


class BaseIngestionWorker(ABC):
    """Base class for the per-job-type workers.

    Subclasses implement :meth:`execute`; an instance is registered with
    the dispatcher as the processor for its job type (instances are
    callable).
    """

    worker_name: str = "worker"

    def __init__(self, job_store: IJobStore, object_store: IObjectStore) -> None:
        self._jobs = job_store
        self._objects = object_store

    async def __call__(self, job: IngestionJob) -> None:
        await self.execute(job)

    @abstractmethod
    async def execute(self, job: IngestionJob) -> None:
        """Process *job*.  Raise to report failure; return to report success."""

    # ------------------------------------------------------------------
    # Progress helpers
    # ------------------------------------------------------------------

    async def update_progress(
        self,
        job_id: str,
        stage: ProgressStage,
        percent: float,
        message: str = "",
    ) -> None:
        """Best-effort progress write; failures are logged, never raised."""
        percent = min(max(percent, 0.0), 100.0)
        try:
            await self._jobs.update(
                job_id, progress=JobProgress(stage=stage, percent=percent, message=message)
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("progress_update_failed", job_id=job_id, error=str(exc))

    async def transition(
        self,
        job_id: str,
        status: JobStatus,
        stage: ProgressStage,
        percent: float,
        message: str = "",
    ) -> None:
        """Move the job to *status* and record progress in the same write."""
        percent = min(max(percent, 0.0), 100.0)
        await self._jobs.update(
            job_id,
            status=status,
            progress=JobProgress(stage=stage, percent=percent, message=message),
        )
        logger.debug("job_stage_entered", job_id=job_id, status=status.value, percent=percent)

    async def hand_off_to_chunking(self, job_id: str, object_id: str) -> None:
        """Park the job in ``vectorizing`` until the coordinator finishes it."""
        await self._jobs.update(
            job_id,
            status=JobStatus.VECTORIZING,
            chunking_status=ChunkingStatus.PENDING,
            related_object_id=object_id,
            progress=JobProgress(
                stage=ProgressStage.VECTORIZING,
                percent=90.0,
                message="Waiting for chunking",
            ),
        )
        logger.info("job_handed_off", job_id=job_id, object_id=object_id, worker=self.worker_name)

    @asynccontextmanager
    async def stage(
        self,
        job: IngestionJob,
        status: JobStatus,
        progress_stage: ProgressStage,
        percent: float,
        message: str = "",
    ) -> AsyncIterator[None]:
        """Run a block as one named stage of the job.

        Exceptions escaping the block are re-raised as :class:`WorkerError`
        carrying the stage name, chained to the original so the error
        classifier still sees the root cause.
        """
        await self.transition(job.id, status, progress_stage, percent, message)
        try:
            yield
        except WorkerError:
            raise
        except Exception as exc:
            raise WorkerError(
                message=f"{status.value} failed: {exc}",
                provider_name=self.worker_name,
                job_id=job.id,
                stage=status.value,
            ) from exc
