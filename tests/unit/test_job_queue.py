"""Unit tests for IngestionQueueService -- dispatch, retries, operator actions."""

from __future__ import annotations

import asyncio
import errno
import random

import pytest

from src.models.job import ChunkingStatus, IngestionJob, JobEvent, JobStatus, JobType
from src.pipeline.job_events import JobEventBus, JobEventMessage
from src.providers.storage.sqlite_job_store import SQLiteJobStore
from src.services.ingestion.job_queue import IngestionQueueService, QueueConfig
from src.utils.errors import ContentFetchError, ContentParseError


def _queue(job_store: SQLiteJobStore, **overrides) -> IngestionQueueService:
    config = QueueConfig(**{"jitter_ratio": 0.0, **overrides})
    return IngestionQueueService(job_store, config=config, rng=random.Random(7))


def _recorder(queue: IngestionQueueService) -> list[JobEventMessage]:
    seen: list[JobEventMessage] = []
    queue.events.subscribe(seen.append)
    return seen


async def _run(queue: IngestionQueueService) -> int:
    dispatched = await queue.tick()
    await queue.drain(timeout=5)
    return dispatched


# ─── Config ───────────────────────────────────────────────────────


class TestQueueConfig:
    def test_defaults(self) -> None:
        config = QueueConfig()
        assert config.concurrency == 12
        assert config.max_retries == 3
        assert config.retry_delay_ms == 5000

    def test_from_config_ignores_unknown_keys(self) -> None:
        config = QueueConfig.from_config({"queue": {"concurrency": 2, "colour": "blue"}})
        assert config.concurrency == 2

    def test_from_config_missing_section(self) -> None:
        assert QueueConfig.from_config({}) == QueueConfig()


# ─── Dispatch ─────────────────────────────────────────────────────


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success_marks_completed(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)
        seen = _recorder(queue)
        processed: list[IngestionJob] = []

        async def processor(job: IngestionJob) -> None:
            processed.append(job)

        queue.register_processor(JobType.URL, processor)
        job = await queue.add_job(JobType.URL, "https://example.com/a")
        assert await _run(queue) == 1

        assert processed[0].attempts == 1
        row = await job_store.get_by_id(job.id)
        assert row.status == JobStatus.COMPLETED
        assert [m.event for m in seen] == [JobEvent.CREATED, JobEvent.STARTED, JobEvent.COMPLETED]
        assert queue.get_active_job_count() == 0

    @pytest.mark.asyncio
    async def test_vectorizing_job_publishes_worker_completed(
        self, job_store: SQLiteJobStore
    ) -> None:
        queue = _queue(job_store)
        seen = _recorder(queue)

        async def processor(job: IngestionJob) -> None:
            await job_store.update(
                job.id,
                status=JobStatus.VECTORIZING,
                chunking_status=ChunkingStatus.PENDING,
                related_object_id="obj-1",
            )

        queue.register_processor(JobType.URL, processor)
        job = await queue.add_job(JobType.URL, "https://example.com/v")
        await _run(queue)

        assert (await job_store.get_by_id(job.id)).status == JobStatus.VECTORIZING
        assert seen[-1].event == JobEvent.WORKER_COMPLETED
        assert seen[-1].data["object_id"] == "obj-1"

    @pytest.mark.asyncio
    async def test_concurrency_limits_dispatch(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store, concurrency=2)
        release = asyncio.Event()

        async def processor(job: IngestionJob) -> None:
            await release.wait()

        queue.register_processor(JobType.URL, processor)
        for i in range(3):
            await queue.add_job(JobType.URL, f"https://example.com/{i}")

        assert await queue.tick() == 2
        assert queue.get_active_job_count() == 2
        assert await queue.tick() == 0

        release.set()
        await queue.drain(timeout=5)
        assert await _run(queue) == 1

    @pytest.mark.asyncio
    async def test_unregistered_type_stays_queued(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)

        async def processor(job: IngestionJob) -> None:
            return None

        queue.register_processor(JobType.URL, processor)
        pdf = await queue.add_job(JobType.PDF, "/tmp/doc.pdf")
        assert await _run(queue) == 0
        assert (await job_store.get_by_id(pdf.id)).status == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_no_processors_dispatches_nothing(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)
        await queue.add_job(JobType.URL, "https://example.com/idle")
        assert await queue.tick() == 0

    @pytest.mark.asyncio
    async def test_register_processor_last_wins(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)
        calls: list[str] = []

        async def first(job: IngestionJob) -> None:
            calls.append("first")

        async def second(job: IngestionJob) -> None:
            calls.append("second")

        queue.register_processor(JobType.URL, first)
        queue.register_processor(JobType.URL, second)
        await queue.add_job(JobType.URL, "https://example.com/r")
        await _run(queue)
        assert calls == ["second"]


# ─── Failure handling ─────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_transient_error_schedules_retry(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store, retry_delay_ms=5000)
        seen = _recorder(queue)

        async def processor(job: IngestionJob) -> None:
            raise ConnectionResetError(errno.ECONNRESET, "Connection reset by peer")

        queue.register_processor(JobType.URL, processor)
        job = await queue.add_job(JobType.URL, "https://example.com/t")
        await _run(queue)

        row = await job_store.get_by_id(job.id)
        assert row.status == JobStatus.RETRY_PENDING
        assert row.attempts == 1
        assert row.next_attempt_at - row.updated_at == 5000
        assert row.failed_stage == "processing_source"
        assert "ECONNRESET" in row.error_info or "Connection reset" in row.error_info
        assert seen[-1].event == JobEvent.RETRY
        assert seen[-1].data["delay_ms"] == 5000

    @pytest.mark.asyncio
    async def test_permanent_error_fails_immediately(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)
        seen = _recorder(queue)

        async def processor(job: IngestionJob) -> None:
            raise ContentFetchError(message="HTTP 404 for page", status_code=404)

        queue.register_processor(JobType.URL, processor)
        job = await queue.add_job(JobType.URL, "https://example.com/missing")
        await _run(queue)

        row = await job_store.get_by_id(job.id)
        assert row.status == JobStatus.FAILED
        assert row.attempts == 1
        assert row.completed_at is not None
        assert seen[-1].event == JobEvent.FAILED
        assert seen[-1].data["permanent"] is True

    @pytest.mark.asyncio
    async def test_retries_stop_after_max_retries(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store, max_retries=2, retry_delay_ms=0)
        starts: list[int] = []

        async def processor(job: IngestionJob) -> None:
            starts.append(job.attempts)
            raise TimeoutError("read timeout")

        queue.register_processor(JobType.URL, processor)
        job = await queue.add_job(JobType.URL, "https://example.com/flaky")
        for _ in range(5):
            await _run(queue)

        row = await job_store.get_by_id(job.id)
        assert starts == [1, 2, 3]
        assert row.status == JobStatus.FAILED
        assert row.attempts == 3

    @pytest.mark.asyncio
    async def test_failed_stage_is_status_at_failure(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)

        async def processor(job: IngestionJob) -> None:
            await job_store.update(job.id, status=JobStatus.PARSING_CONTENT)
            raise ContentParseError(message="Invalid file content: empty page")

        queue.register_processor(JobType.URL, processor)
        job = await queue.add_job(JobType.URL, "https://example.com/empty")
        await _run(queue)

        row = await job_store.get_by_id(job.id)
        assert row.status == JobStatus.FAILED
        assert row.failed_stage == "parsing_content"

    @pytest.mark.asyncio
    async def test_retry_after_overrides_backoff(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store, retry_delay_ms=5000)

        async def processor(job: IngestionJob) -> None:
            raise ContentFetchError(message="HTTP 429", status_code=429, retry_after_ms=20_000)

        queue.register_processor(JobType.URL, processor)
        job = await queue.add_job(JobType.URL, "https://example.com/limited")
        await _run(queue)

        row = await job_store.get_by_id(job.id)
        assert row.next_attempt_at - row.updated_at == 20_000


# ─── Operator actions ─────────────────────────────────────────────


class TestOperatorActions:
    @pytest.mark.asyncio
    async def test_cancel_queued_job(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)
        seen = _recorder(queue)
        job = await queue.add_job(JobType.URL, "https://example.com/c")

        assert await queue.cancel_job(job.id) is True
        assert await queue.cancel_job(job.id) is False
        assert seen[-1].event == JobEvent.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_refuses_active_job(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)
        release = asyncio.Event()

        async def processor(job: IngestionJob) -> None:
            await release.wait()

        queue.register_processor(JobType.URL, processor)
        job = await queue.add_job(JobType.URL, "https://example.com/busy")
        await queue.tick()

        assert await queue.cancel_job(job.id) is False
        release.set()
        await queue.drain(timeout=5)

    @pytest.mark.asyncio
    async def test_retry_job_requeues_failed(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)
        job = await queue.add_job(JobType.URL, "https://example.com/f")
        await job_store.mark_as_failed(job.id, "{}", "processing_source")

        assert await queue.retry_job(job.id) is True
        assert (await job_store.get_by_id(job.id)).status == JobStatus.QUEUED
        assert await queue.retry_job(job.id) is False

    @pytest.mark.asyncio
    async def test_stats_and_cleanup_delegate(self, job_store: SQLiteJobStore) -> None:
        queue = _queue(job_store)
        await queue.add_job(JobType.URL, "https://example.com/s")
        stats = await queue.get_stats()
        assert stats["queued"] == 1
        assert await queue.cleanup_old_jobs(30) == 0


# ─── Background loop ──────────────────────────────────────────────


class TestLoop:
    @pytest.mark.asyncio
    async def test_started_queue_picks_up_new_jobs(self, job_store: SQLiteJobStore) -> None:
        events = JobEventBus()
        queue = IngestionQueueService(
            job_store, config=QueueConfig(poll_interval_ms=60_000), events=events
        )
        done = asyncio.Event()

        async def processor(job: IngestionJob) -> None:
            done.set()

        queue.register_processor(JobType.URL, processor)
        queue.start()
        try:
            await queue.add_job(JobType.URL, "https://example.com/live")
            await asyncio.wait_for(done.wait(), timeout=2)
            await queue.drain(timeout=2)
        finally:
            await queue.stop()
        assert not queue.is_running
        assert queue.events is events
