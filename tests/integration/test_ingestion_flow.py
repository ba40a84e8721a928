"""Integration tests for the full URL ingestion flow.

Drives the dispatcher and the chunking coordinator by hand (``tick``)
against real SQLite stores, with an in-memory fetcher, a scripted LLM and
a recording vector store standing in for the network.
"""

from __future__ import annotations

import asyncio
import errno
import json
import random
from typing import Any

import pytest

from src.models.content import ObjectStatus
from src.models.job import ChunkingStatus, JobStatus, JobType
from src.pipeline.job_events import JobEventBus
from src.providers.storage.sqlite_job_store import SQLiteJobStore
from src.services.ingestion.chunking_agent import ChunkingAgent
from src.services.ingestion.chunking_service import ChunkingOutcome, ChunkingService
from src.services.ingestion.job_queue import IngestionQueueService, QueueConfig
from src.services.ingestion.summarizer import ObjectSummarizer
from src.services.ingestion.workers.url_worker import UrlIngestionWorker
from src.utils.errors import ContentFetchError
from tests.conftest import SAMPLE_TEXT, chunk_reply, summary_reply

URL = "https://example.com/articles/queue-design"

_OVERSIZED = "OVERSIZED"


class _Clock:
    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _scripted_llm(mock_llm_provider, chunks: list[str]):
    """Answer summary prompts and chunking prompts with canned JSON."""

    async def _complete(system_prompt: str, user_prompt: str, **kwargs: Any) -> str:
        if "retrieval chunks" in system_prompt:
            return chunk_reply(chunks)
        return summary_reply("Queue Design", "How the ingestion queue works.")

    mock_llm_provider.complete.side_effect = _complete
    return mock_llm_provider


def _token_counter(text: str) -> int:
    return 10**6 if _OVERSIZED in text else len(text.split())


class _Pipeline:
    """Dispatcher, URL worker and chunking coordinator sharing one database."""

    def __init__(
        self,
        job_store: SQLiteJobStore,
        object_store,
        chunk_store,
        vector_store,
        fetcher,
        llm,
        jitter_ratio: float = 0.0,
    ) -> None:
        self.events = JobEventBus()
        self.jobs = job_store
        self.queue = IngestionQueueService(
            job_store,
            config=QueueConfig(jitter_ratio=jitter_ratio),
            events=self.events,
            rng=random.Random(11),
        )
        summarizer = ObjectSummarizer(llm, retry_delay_s=0)
        self.queue.register_processor(
            JobType.URL, UrlIngestionWorker(job_store, object_store, fetcher, summarizer)
        )
        agent = ChunkingAgent(llm, token_counter=_token_counter, retry_delay_s=0)
        self.chunking = ChunkingService(
            object_store, job_store, chunk_store, vector_store, agent, events=self.events
        )

    async def dispatch(self) -> int:
        dispatched = await self.queue.tick()
        await self.queue.drain(timeout=5)
        return dispatched


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def clocked_job_store(database, clock) -> SQLiteJobStore:
    return SQLiteJobStore(database, clock=clock)


def _pipeline(
    clocked_job_store,
    object_store,
    chunk_store,
    mock_vector_store,
    fake_fetcher,
    mock_llm_provider,
    chunks: list[str],
    **kwargs: Any,
) -> _Pipeline:
    return _Pipeline(
        clocked_job_store,
        object_store,
        chunk_store,
        mock_vector_store,
        fake_fetcher,
        _scripted_llm(mock_llm_provider, chunks),
        **kwargs,
    )


_CHUNKS = [
    "The dispatcher polls for eligible jobs.",
    "Transient failures are retried with backoff.",
    "Chunks are embedded into the vector store.",
]


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_url_job_ends_embedded_and_completed(
    clocked_job_store, object_store, chunk_store, mock_vector_store, fake_fetcher, mock_llm_provider
) -> None:
    fake_fetcher.pages[URL] = "Queue Design\n" + SAMPLE_TEXT
    pipeline = _pipeline(
        clocked_job_store,
        object_store,
        chunk_store,
        mock_vector_store,
        fake_fetcher,
        mock_llm_provider,
        _CHUNKS,
    )

    job = await pipeline.queue.add_job(JobType.URL, URL)
    assert await pipeline.dispatch() == 1

    handed_off = await clocked_job_store.get_by_id(job.id)
    assert handed_off.status == JobStatus.VECTORIZING
    assert handed_off.chunking_status == ChunkingStatus.PENDING
    obj = await object_store.get_by_id(handed_off.related_object_id)
    assert obj.status == ObjectStatus.PARSED
    assert obj.title == "Queue Design"

    assert await pipeline.chunking.tick() == ChunkingOutcome.EMBEDDED
    assert await pipeline.chunking.tick() == ChunkingOutcome.IDLE

    done = await clocked_job_store.get_by_id(job.id)
    assert done.status == JobStatus.COMPLETED
    assert done.chunking_status == ChunkingStatus.COMPLETED
    assert done.completed_at is not None
    assert (await object_store.get_by_id(obj.id)).status == ObjectStatus.EMBEDDED

    records = await chunk_store.list_by_object_id(obj.id)
    assert [r.chunk_idx for r in records] == [0, 1, 2]
    assert sorted(mock_vector_store.stored) == [f"{obj.id}_{i}" for i in range(3)]
    assert mock_vector_store.stored[f"{obj.id}_1"].metadata["source_uri"] == URL


# ---------------------------------------------------------------------------
# Retries and permanent failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_connection_reset_schedules_retry_with_backoff(
    clocked_job_store,
    clock,
    object_store,
    chunk_store,
    mock_vector_store,
    fake_fetcher,
    mock_llm_provider,
) -> None:
    fake_fetcher.errors[URL] = ConnectionResetError(errno.ECONNRESET, "read ECONNRESET")
    pipeline = _pipeline(
        clocked_job_store,
        object_store,
        chunk_store,
        mock_vector_store,
        fake_fetcher,
        mock_llm_provider,
        _CHUNKS,
        jitter_ratio=0.1,
    )

    job = await pipeline.queue.add_job(JobType.URL, URL)
    await pipeline.dispatch()

    row = await clocked_job_store.get_by_id(job.id)
    assert row.status == JobStatus.RETRY_PENDING
    assert row.attempts == 1
    assert row.failed_stage == "processing_source"
    delay = row.next_attempt_at - clock.now
    assert 4500 <= delay <= 5500
    assert json.loads(row.error_info)["context"]["attempt"] == 1

    # Not eligible until the delay has elapsed.
    assert await pipeline.dispatch() == 0
    clock.now += delay
    del fake_fetcher.errors[URL]
    fake_fetcher.pages[URL] = "Queue Design\n" + SAMPLE_TEXT
    assert await pipeline.dispatch() == 1

    row = await clocked_job_store.get_by_id(job.id)
    assert row.status == JobStatus.VECTORIZING
    assert row.attempts == 2


@pytest.mark.asyncio
async def test_404_fails_without_retry(
    clocked_job_store, object_store, chunk_store, mock_vector_store, fake_fetcher, mock_llm_provider
) -> None:
    fake_fetcher.errors[URL] = ContentFetchError(
        message="HTTP 404 fetching page", status_code=404, url=URL
    )
    pipeline = _pipeline(
        clocked_job_store,
        object_store,
        chunk_store,
        mock_vector_store,
        fake_fetcher,
        mock_llm_provider,
        _CHUNKS,
    )

    job = await pipeline.queue.add_job(JobType.URL, URL)
    await pipeline.dispatch()

    row = await clocked_job_store.get_by_id(job.id)
    assert row.status == JobStatus.FAILED
    assert row.attempts == 1
    assert row.next_attempt_at is None
    assert row.completed_at is not None
    assert await pipeline.dispatch() == 0
    assert fake_fetcher.fetch_calls == [URL]


# ---------------------------------------------------------------------------
# Chunking edge cases
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_oversized_chunk_dropped_and_indices_contiguous(
    clocked_job_store, object_store, chunk_store, mock_vector_store, fake_fetcher, mock_llm_provider
) -> None:
    chunks = [
        "First chunk of ordinary prose.",
        "Second chunk of ordinary prose.",
        f"{_OVERSIZED} chunk that blows the token budget.",
        "Fourth chunk of ordinary prose.",
        "Fifth chunk of ordinary prose.",
    ]
    fake_fetcher.pages[URL] = "Queue Design\n" + SAMPLE_TEXT
    pipeline = _pipeline(
        clocked_job_store,
        object_store,
        chunk_store,
        mock_vector_store,
        fake_fetcher,
        mock_llm_provider,
        chunks,
    )

    job = await pipeline.queue.add_job(JobType.URL, URL)
    await pipeline.dispatch()
    assert await pipeline.chunking.tick() == ChunkingOutcome.EMBEDDED

    object_id = (await clocked_job_store.get_by_id(job.id)).related_object_id
    records = await chunk_store.list_by_object_id(object_id)
    assert [r.chunk_idx for r in records] == [0, 1, 2, 3]
    assert all(_OVERSIZED not in r.content for r in records)
    assert records[2].content == "Fourth chunk of ordinary prose."
    assert len(mock_vector_store.stored) == 4


@pytest.mark.asyncio
async def test_concurrent_chunking_services_embed_once(
    clocked_job_store, object_store, chunk_store, mock_vector_store, fake_fetcher, mock_llm_provider
) -> None:
    fake_fetcher.pages[URL] = "Queue Design\n" + SAMPLE_TEXT
    first = _pipeline(
        clocked_job_store,
        object_store,
        chunk_store,
        mock_vector_store,
        fake_fetcher,
        mock_llm_provider,
        _CHUNKS,
    )
    second = _pipeline(
        clocked_job_store,
        object_store,
        chunk_store,
        mock_vector_store,
        fake_fetcher,
        mock_llm_provider,
        _CHUNKS,
    )

    job = await first.queue.add_job(JobType.URL, URL)
    await first.dispatch()

    outcomes = await asyncio.gather(first.chunking.tick(), second.chunking.tick())

    assert outcomes.count(ChunkingOutcome.EMBEDDED) == 1
    assert set(outcomes) <= {
        ChunkingOutcome.EMBEDDED,
        ChunkingOutcome.CLAIM_LOST,
        ChunkingOutcome.IDLE,
    }
    assert mock_vector_store.add_documents.await_count == 1
    assert (await clocked_job_store.get_by_id(job.id)).status == JobStatus.COMPLETED
