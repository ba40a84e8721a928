"""Unit tests for IngestionMaintenance recovery actions."""

from __future__ import annotations

import pytest

from src.models.content import ObjectStatus, ObjectType
from src.models.job import ChunkingStatus, JobStatus, JobType
from src.services.ingestion.maintenance import IngestionMaintenance


@pytest.fixture
def maintenance(object_store, job_store) -> IngestionMaintenance:
    return IngestionMaintenance(object_store, job_store)


async def _failed_embedding(object_store, job_store, uri: str):
    obj = await object_store.create(
        ObjectType.WEBPAGE, uri, status=ObjectStatus.EMBEDDING_FAILED, error_info="chroma down"
    )
    job = await job_store.create(JobType.URL, uri)
    await job_store.update(
        job.id,
        status=JobStatus.FAILED,
        failed_stage="vectorizing",
        chunking_status=ChunkingStatus.FAILED,
        chunking_error_info="chroma down",
        related_object_id=obj.id,
        completed_at=123,
    )
    return obj, job


@pytest.mark.asyncio
async def test_reset_failed_embeddings_rearms_jobs(maintenance, object_store, job_store) -> None:
    obj, job = await _failed_embedding(object_store, job_store, "https://example.com/a")

    assert await maintenance.reset_failed_embeddings() == 1

    assert (await object_store.get_by_id(obj.id)).status == ObjectStatus.PARSED
    row = await job_store.get_by_id(job.id)
    assert row.status == JobStatus.VECTORIZING
    assert row.chunking_status == ChunkingStatus.PENDING
    assert row.chunking_error_info is None
    assert row.failed_stage is None
    assert row.completed_at is None
    assert (await job_store.find_job_awaiting_chunking(obj.id)).id == job.id


@pytest.mark.asyncio
async def test_reset_scoped_to_object_ids(maintenance, object_store, job_store) -> None:
    a, _ = await _failed_embedding(object_store, job_store, "https://example.com/a")
    b, _ = await _failed_embedding(object_store, job_store, "https://example.com/b")

    assert await maintenance.reset_failed_embeddings([b.id]) == 1
    assert (await object_store.get_by_id(a.id)).status == ObjectStatus.EMBEDDING_FAILED
    assert (await object_store.get_by_id(b.id)).status == ObjectStatus.PARSED


@pytest.mark.asyncio
async def test_reset_object_without_job(maintenance, object_store) -> None:
    await object_store.create(
        ObjectType.WEBPAGE, "https://example.com/orphan", status=ObjectStatus.EMBEDDING_FAILED
    )
    assert await maintenance.reset_failed_embeddings() == 1


@pytest.mark.asyncio
async def test_recover_stale_embeddings(maintenance, object_store) -> None:
    stuck = await object_store.create(
        ObjectType.WEBPAGE, "https://example.com/stuck", status=ObjectStatus.EMBEDDING
    )
    done = await object_store.create(
        ObjectType.WEBPAGE, "https://example.com/done", status=ObjectStatus.EMBEDDED
    )

    assert await maintenance.recover_stale_embeddings() == 1
    assert (await object_store.get_by_id(stuck.id)).status == ObjectStatus.PARSED
    assert (await object_store.get_by_id(done.id)).status == ObjectStatus.EMBEDDED
    assert await maintenance.recover_stale_embeddings() == 0


@pytest.mark.asyncio
async def test_purge_old_jobs_delegates(maintenance) -> None:
    assert await maintenance.purge_old_jobs(7) == 0
