"""Ingestion job dispatcher.

Polls the job store for eligible work, hands each job to the processor
registered for its type, and turns processor failures into either a
scheduled retry or a terminal failure.

# ─── HOW DISPATCH WORKS ───────────────────────────────────────────────
#
#   tick ──→ free = concurrency - active
#        ──→ job_store.get_next_jobs(free, registered types)
#        ──→ for each job: spawn task ──→ mark_as_started (attempts += 1)
#                                     ──→ processor(job)
#                                     ──→ success: job:completed / worker:completed
#                                     ──→ error:   classify_error(exc)
#                                          transient and attempts <= max_retries
#                                              → retry_pending (+ backoff)
#                                          otherwise → failed
#
#   Because attempts counts the dispatch that just failed, a job is
#   started at most max_retries + 1 times.
#
#   Jobs whose type has no registered processor are never selected, so
#   they stay queued until one is registered.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.interfaces.job_store import IJobStore
from src.models.job import IngestionJob, JobEvent, JobStatus, JobType
from src.pipeline.job_events import JobEventBus
from src.pipeline.poll_loop import PollLoop
from src.utils.error_classifier import classify_error, compute_retry_delay, format_error_info
from src.utils.logging import job_log_context

logger = structlog.get_logger(logger_name=__name__)

JobProcessor = Callable[[IngestionJob], Awaitable[None]]

# Statuses that say nothing about where a worker failed.
_NON_STAGE_STATUSES = frozenset(
    {
        JobStatus.QUEUED,
        JobStatus.RETRY_PENDING,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }
)


class QueueConfig(BaseModel):
    """Dispatcher tunables."""

    model_config = ConfigDict(frozen=True)

    concurrency: int = Field(default=12, ge=1, description="Maximum jobs processed at once.")
    poll_interval_ms: int = Field(default=5000, ge=1)
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt.")
    retry_delay_ms: int = Field(default=5000, ge=0, description="Backoff base.")
    exponential_backoff: bool = True
    jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> QueueConfig:
        """Build from the ``queue`` section of :func:`src.config.load_config`."""
        section = config.get("queue", {}) or {}
        return cls(**{k: v for k, v in section.items() if k in cls.model_fields})


class IngestionQueueService:
    """Durable job dispatcher with bounded concurrency and classified retries.

    Parameters
    ----------
    job_store:
        Source of truth for job state.
    config:
        Concurrency, polling and retry settings.
    events:
        Lifecycle event bus; a private one is created when omitted.
    rng:
        Random source for retry jitter (tests pass a seeded one).
    """

    def __init__(
        self,
        job_store: IJobStore,
        config: QueueConfig | None = None,
        events: JobEventBus | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._store = job_store
        self._config = config or QueueConfig()
        self._events = events or JobEventBus()
        self._rng = rng
        self._processors: dict[JobType, JobProcessor] = {}
        self._active: dict[str, asyncio.Task] = {}
        self._loop = PollLoop("job_queue", self.tick, self._config.poll_interval_ms)

    @property
    def config(self) -> QueueConfig:
        return self._config

    @property
    def events(self) -> JobEventBus:
        return self._events

    @property
    def is_running(self) -> bool:
        return self._loop.is_running

    # ------------------------------------------------------------------
    # Registration / lifecycle
    # ------------------------------------------------------------------

    def register_processor(self, job_type: JobType, processor: JobProcessor) -> None:
        """Register the processor for *job_type*; a later call replaces it."""
        job_type = JobType(job_type)
        if job_type in self._processors:
            logger.warning("processor_replaced", job_type=job_type.value)
        self._processors[job_type] = processor
        logger.info("processor_registered", job_type=job_type.value)

    def get_processor(self, job_type: JobType) -> JobProcessor | None:
        return self._processors.get(JobType(job_type))

    def start(self) -> None:
        self._loop.start()

    async def stop(self) -> None:
        """Stop polling.  Jobs already dispatched keep running."""
        await self._loop.stop()
        logger.info("job_queue_stopped", active_jobs=len(self._active))

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every dispatched job to finish (or *timeout* seconds)."""
        pending = list(self._active.values())
        if not pending:
            return
        await asyncio.wait(pending, timeout=timeout)

    # ------------------------------------------------------------------
    # Operator API
    # ------------------------------------------------------------------

    async def add_job(
        self,
        job_type: JobType,
        source_identifier: str,
        priority: int = 0,
        job_specific_data: dict[str, Any] | None = None,
        original_file_name: str | None = None,
    ) -> IngestionJob:
        """Persist a new job and nudge the loop so it is picked up promptly."""
        job = await self._store.create(
            job_type=job_type,
            source_identifier=source_identifier,
            priority=priority,
            job_specific_data=job_specific_data,
            original_file_name=original_file_name,
        )
        await self._events.publish(JobEvent.CREATED, job.id, job_type=job.job_type.value)
        if self.is_running:
            self._loop.wake()
        return job

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel a job that is not currently being processed."""
        if job_id in self._active:
            logger.warning("cancel_refused_job_active", job_id=job_id)
            return False
        cancelled = await self._store.mark_as_cancelled(job_id)
        if cancelled:
            logger.info("job_cancelled", job_id=job_id)
            await self._events.publish(JobEvent.CANCELLED, job_id)
        return cancelled

    async def retry_job(self, job_id: str) -> bool:
        """Return a ``failed`` or ``retry_pending`` job to the queue now."""
        requeued = await self._store.requeue(job_id)
        if requeued:
            logger.info("job_requeued", job_id=job_id)
            if self.is_running:
                self._loop.wake()
        return requeued

    async def get_stats(self) -> dict[str, int]:
        return await self._store.get_stats()

    def get_active_job_count(self) -> int:
        return len(self._active)

    async def cleanup_old_jobs(self, days_to_keep: int = 30) -> int:
        return await self._store.cleanup_old_jobs(days_to_keep)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def poll_once(self) -> bool:
        """Run one tick through the loop's non-reentrant guard."""
        return await self._loop.run_once()

    async def tick(self) -> int:
        """Dispatch as many eligible jobs as there are free slots.

        Returns
        -------
        int
            Number of jobs dispatched.
        """
        free = self._config.concurrency - len(self._active)
        if free <= 0 or not self._processors:
            return 0

        jobs = await self._store.get_next_jobs(free, list(self._processors))
        dispatched = 0
        for job in jobs:
            if job.id in self._active:
                continue
            processor = self._processors.get(job.job_type)
            if processor is None:
                continue
            task = asyncio.create_task(
                self._run_job(job, processor), name=f"ingestion-job:{job.id}"
            )
            self._active[job.id] = task
            dispatched += 1

        if dispatched:
            logger.debug("jobs_dispatched", count=dispatched, active=len(self._active))
        return dispatched

    async def _run_job(self, job: IngestionJob, processor: JobProcessor) -> None:
        with job_log_context(job_id=job.id, job_type=job.job_type.value):
            try:
                await self._store.mark_as_started(job.id)
                started = await self._store.get_by_id(job.id) or job
                logger.info("job_started", attempt=started.attempts, source=job.source_identifier)
                await self._events.publish(JobEvent.STARTED, job.id, attempts=started.attempts)

                try:
                    await processor(started)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    await self._handle_failure(started, exc)
                else:
                    await self._handle_success(started)
            except asyncio.CancelledError:
                logger.warning("job_task_cancelled")
                raise
            except Exception as exc:
                # Bookkeeping failed (store unavailable); the row keeps its
                # last persisted state and a later tick picks it up again.
                logger.error("job_bookkeeping_failed", error=str(exc), exc_info=True)
            finally:
                self._active.pop(job.id, None)
                if self.is_running:
                    self._loop.wake()

    async def _handle_success(self, job: IngestionJob) -> None:
        current = await self._store.get_by_id(job.id)
        if current is not None and current.status == JobStatus.VECTORIZING:
            logger.info("job_handed_to_chunking", object_id=current.related_object_id)
            await self._events.publish(
                JobEvent.WORKER_COMPLETED, job.id, object_id=current.related_object_id
            )
            return

        if current is None or current.status != JobStatus.COMPLETED:
            # The processor returned without recording an outcome.
            await self._store.mark_as_completed(job.id)
            current = await self._store.get_by_id(job.id)

        object_id = current.related_object_id if current else None
        logger.info("job_completed", object_id=object_id)
        await self._events.publish(JobEvent.COMPLETED, job.id, object_id=object_id)

    async def _handle_failure(self, job: IngestionJob, exc: Exception) -> None:
        classification = classify_error(exc)
        current = await self._store.get_by_id(job.id) or job
        failed_stage = self._failed_stage(current, exc)
        attempts = current.attempts

        error_info = format_error_info(
            exc,
            context={
                "job_id": job.id,
                "job_type": job.job_type.value,
                "source": job.source_identifier,
                "attempt": attempts,
                "stage": failed_stage,
            },
            category=classification.category,
        )

        if classification.is_transient and attempts <= self._config.max_retries:
            delay_ms = compute_retry_delay(
                attempts,
                base_delay_ms=self._config.retry_delay_ms,
                exponential=self._config.exponential_backoff,
                jitter_ratio=self._config.jitter_ratio,
                override_ms=classification.retry_delay_ms,
                rng=self._rng,
            )
            await self._store.mark_as_retryable(job.id, error_info, failed_stage, delay_ms)
            logger.warning(
                "job_retry_scheduled",
                attempt=attempts,
                max_retries=self._config.max_retries,
                delay_ms=delay_ms,
                stage=failed_stage,
                category=classification.category.value,
                error=str(exc),
            )
            await self._events.publish(
                JobEvent.RETRY, job.id, attempts=attempts, delay_ms=delay_ms, error=str(exc)
            )
            return

        await self._store.mark_as_failed(job.id, error_info, failed_stage)
        logger.error(
            "job_failed",
            attempt=attempts,
            stage=failed_stage,
            transient=classification.is_transient,
            matched_pattern=classification.matched_pattern,
            category=classification.category.value,
            error=str(exc),
        )
        await self._events.publish(
            JobEvent.FAILED,
            job.id,
            attempts=attempts,
            permanent=not classification.is_transient,
            error=str(exc),
        )

    @staticmethod
    def _failed_stage(current: IngestionJob, exc: Exception) -> str:
        if current.status not in _NON_STAGE_STATUSES:
            return current.status.value
        stage = getattr(exc, "stage", None)
        if isinstance(stage, str) and stage:
            return stage
        return JobStatus.PROCESSING_SOURCE.value
