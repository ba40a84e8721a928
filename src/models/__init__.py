"""Domain models - re-exports the public model classes.

    - job.py      - Ingestion job record, statuses, progress, typed payloads
    - content.py  - Content objects, chunks, vector documents, summaries
"""

from __future__ import annotations

from src.models.content import (
    ChunkCandidate,
    ChunkRecord,
    ContentObject,
    ObjectStatus,
    ObjectSummary,
    ObjectType,
    ParsedContent,
    Proposition,
    PropositionType,
    VectorDocument,
)
from src.models.job import (
    ChunkingStatus,
    IngestionJob,
    JobEvent,
    JobProgress,
    JobStatus,
    JobType,
    PdfJobData,
    ProgressStage,
    UrlJobData,
    now_ms,
    parse_job_data,
)

__all__ = [
    "ChunkCandidate",
    "ChunkRecord",
    "ChunkingStatus",
    "ContentObject",
    "IngestionJob",
    "JobEvent",
    "JobProgress",
    "JobStatus",
    "JobType",
    "ObjectStatus",
    "ObjectSummary",
    "ObjectType",
    "ParsedContent",
    "PdfJobData",
    "ProgressStage",
    "Proposition",
    "PropositionType",
    "UrlJobData",
    "VectorDocument",
    "now_ms",
    "parse_job_data",
]
