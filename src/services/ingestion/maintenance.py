"""Operator and startup maintenance for the ingestion tables."""

from __future__ import annotations

import structlog

from src.interfaces.job_store import IJobStore
from src.interfaces.object_store import IObjectStore
from src.models.content import ObjectStatus
from src.models.job import ChunkingStatus, JobProgress, JobStatus, ProgressStage

logger = structlog.get_logger(logger_name=__name__)


class IngestionMaintenance:
    """Recovery actions that are never taken automatically by the loops."""

    def __init__(self, object_store: IObjectStore, job_store: IJobStore) -> None:
        self._objects = object_store
        self._jobs = job_store

    async def reset_failed_embeddings(self, object_ids: list[str] | None = None) -> int:
        """Send ``embedding_failed`` objects back to ``parsed``.

        The job that produced each object is re-armed (``vectorizing`` with
        ``chunking_status=pending``) so the coordinator settles it again.

        Parameters
        ----------
        object_ids:
            Restrict the reset to these objects; all failed objects when
            ``None``.

        Returns
        -------
        int
            Number of objects reset.
        """
        reset_ids = await self._objects.reset_status(
            ObjectStatus.EMBEDDING_FAILED, ObjectStatus.PARSED, object_ids
        )
        for object_id in reset_ids:
            job = await self._jobs.find_latest_for_object(object_id)
            if job is None:
                continue
            await self._jobs.update(
                job.id,
                status=JobStatus.VECTORIZING,
                chunking_status=ChunkingStatus.PENDING,
                chunking_error_info=None,
                error_info=None,
                failed_stage=None,
                completed_at=None,
                progress=JobProgress(
                    stage=ProgressStage.VECTORIZING, percent=90.0, message="Waiting for chunking"
                ),
            )
        logger.info("failed_embeddings_reset", count=len(reset_ids))
        return len(reset_ids)

    async def recover_stale_embeddings(self) -> int:
        """Return objects left in ``embedding`` by a crashed process to ``parsed``.

        Only safe at startup, before the coordinator loop runs.
        """
        recovered = await self._objects.reset_status(ObjectStatus.EMBEDDING, ObjectStatus.PARSED)
        if recovered:
            logger.warning("stale_embeddings_recovered", count=len(recovered), object_ids=recovered)
        return len(recovered)

    async def purge_old_jobs(self, days_to_keep: int = 30) -> int:
        return await self._jobs.cleanup_old_jobs(days_to_keep)
