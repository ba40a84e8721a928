"""Chunking and embedding coordinator.

Runs its own poll loop, separate from the job dispatcher.  Each tick
takes at most one ``parsed`` object through
claim -> chunk -> persist chunks -> upsert vectors, and settles both the
object and the job that produced it.

# ─── OBJECT / JOB STATE DURING ONE TICK ───────────────────────────────
#
#   object: parsed ──claim──→ embedding ──→ embedded
#                                        └─→ embedding_failed (no auto retry)
#
#   job:    vectorizing / chunking_status=pending
#             ──→ chunking_status=in_progress
#             ──→ completed / chunking_status=completed
#             └─→ failed    / chunking_status=failed + chunking_error_info
#
#   The claim is one conditional UPDATE.  Two coordinators (in one
#   process or several) racing for the same object: exactly one sees a
#   changed row, the other logs chunking_claim_lost and does nothing.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.interfaces.chunk_store import IChunkStore
from src.interfaces.job_store import IJobStore
from src.interfaces.object_store import IObjectStore
from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.content import ChunkRecord, ContentObject, ObjectStatus, VectorDocument
from src.models.job import (
    ChunkingStatus,
    IngestionJob,
    JobEvent,
    JobProgress,
    JobStatus,
    ProgressStage,
    now_ms,
)
from src.pipeline.job_events import JobEventBus
from src.pipeline.poll_loop import PollLoop
from src.services.ingestion.chunking_agent import ChunkingAgent
from src.utils.error_classifier import truncate_error_text
from src.utils.errors import ChunkingError
from src.utils.logging import job_log_context

logger = structlog.get_logger(logger_name=__name__)


class ChunkingOutcome(str, Enum):  # noqa: UP042
    """What a single coordinator tick did."""

    IDLE = "idle"
    CLAIM_LOST = "claim_lost"
    EMBEDDED = "embedded"
    FAILED = "failed"


class ChunkingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    poll_interval_ms: int = Field(default=30000, ge=1)
    max_chunk_tokens: int = Field(default=8000, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ChunkingConfig:
        """Build from the ``chunking`` section of :func:`src.config.load_config`."""
        section = config.get("chunking", {}) or {}
        return cls(**{k: v for k, v in section.items() if k in cls.model_fields})


class ChunkingService:
    """Moves ``parsed`` objects to ``embedded`` one at a time.

    Parameters
    ----------
    object_store, job_store, chunk_store:
        Persistence.
    vector_store:
        Receives one document per chunk, keyed ``"{object_id}_{chunk_idx}"``.
    agent:
        Produces the chunks.
    events:
        Bus on which the job's terminal event is published.
    config:
        Poll interval (the other fields configure the agent in
        :func:`src.main.build_runtime`).
    """

    def __init__(
        self,
        object_store: IObjectStore,
        job_store: IJobStore,
        chunk_store: IChunkStore,
        vector_store: IVectorStoreProvider,
        agent: ChunkingAgent,
        events: JobEventBus | None = None,
        config: ChunkingConfig | None = None,
    ) -> None:
        self._objects = object_store
        self._jobs = job_store
        self._chunks = chunk_store
        self._vectors = vector_store
        self._agent = agent
        self._events = events or JobEventBus()
        self._config = config or ChunkingConfig()
        self._loop = PollLoop("chunking", self.tick, self._config.poll_interval_ms)

    @property
    def is_running(self) -> bool:
        return self._loop.is_running

    def start(self) -> None:
        self._loop.start()

    async def stop(self) -> None:
        await self._loop.stop()

    def wake(self) -> None:
        self._loop.wake()

    async def poll_once(self) -> bool:
        """Run one tick through the loop's non-reentrant guard."""
        return await self._loop.run_once()

    async def tick(self) -> ChunkingOutcome:
        candidates = await self._objects.find_by_status([ObjectStatus.PARSED], limit=1)
        if not candidates:
            return ChunkingOutcome.IDLE

        candidate = candidates[0]
        obj = await self._claim(candidate.id)
        if obj is None:
            return ChunkingOutcome.CLAIM_LOST

        # From here on the object is ours: every exit settles it.
        job: IngestionJob | None = None
        with job_log_context(object_id=obj.id):
            try:
                job = await self._jobs.find_job_awaiting_chunking(obj.id)
                with job_log_context(job_id=job.id if job else None):
                    return await self._process(obj, job)
            except Exception as exc:
                await self._settle_failure(obj, job, exc)
                return ChunkingOutcome.FAILED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _claim(self, object_id: str) -> ContentObject | None:
        if not await self._objects.claim_for_embedding(object_id):
            logger.info("chunking_claim_lost", object_id=object_id)
            return None
        obj = await self._objects.get_by_id(object_id)
        if obj is None or obj.status != ObjectStatus.EMBEDDING:
            logger.warning(
                "chunking_claim_lost",
                object_id=object_id,
                status=obj.status.value if obj else None,
            )
            return None
        logger.info("object_claimed_for_embedding", object_id=object_id)
        return obj

    async def _process(self, obj: ContentObject, job: IngestionJob | None) -> ChunkingOutcome:
        if job is not None:
            await self._jobs.update(
                job.id,
                chunking_status=ChunkingStatus.IN_PROGRESS,
                progress=JobProgress(
                    stage=ProgressStage.VECTORIZING, percent=92.0, message="Chunking"
                ),
            )
        else:
            logger.info("chunking_without_job", object_id=obj.id)

        if not obj.cleaned_text:
            raise ChunkingError(message="Object has no cleaned_text", object_id=obj.id)
        candidates = await self._agent.chunk_text(obj.cleaned_text, obj.id)

        stale = await self._chunks.list_by_object_id(obj.id)
        if stale:
            removed = await self._vectors.delete_by_object_id(obj.id)
            logger.info("stale_vectors_removed", object_id=obj.id, removed=removed)

        records = await self._chunks.add_chunks_bulk(obj.id, candidates)
        await self._vectors.add_documents([self._to_document(obj, r) for r in records])

        await self._objects.update_status(obj.id, ObjectStatus.EMBEDDED)
        if job is not None:
            await self._jobs.update(
                job.id,
                status=JobStatus.COMPLETED,
                chunking_status=ChunkingStatus.COMPLETED,
                chunking_error_info=None,
                completed_at=now_ms(),
                progress=JobProgress(stage=ProgressStage.FINALIZING, percent=100.0, message="Done"),
            )
            await self._events.publish(
                JobEvent.COMPLETED, job.id, object_id=obj.id, chunks=len(records)
            )
        logger.info("object_embedded", object_id=obj.id, chunks=len(records))
        return ChunkingOutcome.EMBEDDED

    async def _settle_failure(
        self,
        obj: ContentObject,
        job: IngestionJob | None,
        exc: Exception,
    ) -> None:
        """Mark *obj* ``embedding_failed`` and, best effort, fail its job.

        The object write is the one that must land; a job row that cannot
        be updated is logged and left for the operator.
        """
        error_text = truncate_error_text(str(exc)) or type(exc).__name__
        logger.error(
            "object_embedding_failed",
            object_id=obj.id,
            error_type=type(exc).__name__,
            error=error_text,
        )
        await self._objects.update_status(obj.id, ObjectStatus.EMBEDDING_FAILED, error_text)
        if job is None:
            return
        try:
            await self._jobs.update(
                job.id,
                status=JobStatus.FAILED,
                failed_stage=JobStatus.VECTORIZING.value,
                chunking_status=ChunkingStatus.FAILED,
                chunking_error_info=error_text,
                completed_at=now_ms(),
                progress=JobProgress(
                    stage=ProgressStage.ERROR, percent=100.0, message=error_text[:200]
                ),
            )
        except Exception as write_exc:  # noqa: BLE001
            logger.error(
                "chunking_job_update_failed",
                job_id=job.id,
                object_id=obj.id,
                error=str(write_exc),
            )
        await self._events.publish(
            JobEvent.FAILED, job.id, object_id=obj.id, error=error_text, stage="vectorizing"
        )

    @staticmethod
    def _to_document(obj: ContentObject, record: ChunkRecord) -> VectorDocument:
        tags = json.loads(record.tags_json) if record.tags_json else []
        propositions = json.loads(record.propositions_json) if record.propositions_json else []
        return VectorDocument(
            id=VectorDocument.make_id(obj.id, record.chunk_idx),
            content=record.content,
            metadata={
                "object_id": obj.id,
                "chunk_idx": record.chunk_idx,
                "sql_chunk_id": record.id,
                "summary": record.summary or "",
                "tags": ",".join(tags),
                "propositions": " | ".join(propositions),
                "source_uri": obj.source_uri,
                "title": obj.title or "",
            },
        )
