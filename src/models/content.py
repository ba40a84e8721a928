"""Content object, chunk and vector document models.

A *content object* is the durable record of one ingested source (a web
page or a PDF).  Workers create it and drive it to ``parsed``; the
chunking coordinator takes it from ``parsed`` to ``embedded`` or
``embedding_failed``.  *Chunks* are the LLM-produced segments of an
object's text, persisted in SQL and mirrored into the vector store as
:class:`VectorDocument` entries keyed ``"{object_id}_{chunk_idx}"``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ObjectType(str, Enum):  # noqa: UP042
    WEBPAGE = "webpage"
    PDF_DOCUMENT = "pdf_document"


class ObjectStatus(str, Enum):  # noqa: UP042
    """Lifecycle states of a content object.

    ``parsed`` is the only state the chunking coordinator claims from, and
    ``embedding_failed`` only returns to ``parsed`` through an explicit
    reset (see :mod:`src.services.ingestion.maintenance`).
    """

    NEW = "new"
    FETCHED = "fetched"
    PARSED = "parsed"
    CHUNKING = "chunking"
    CHUNKED = "chunked"
    CHUNKING_FAILED = "chunking_failed"
    EMBEDDING = "embedding"
    EMBEDDED = "embedded"
    EMBEDDING_FAILED = "embedding_failed"
    ERROR = "error"


# Statuses a worker treats as "previous attempt failed, safe to redo".
FAILED_OBJECT_STATUSES = frozenset(
    {ObjectStatus.EMBEDDING_FAILED, ObjectStatus.ERROR, ObjectStatus.CHUNKING_FAILED}
)


class ContentObject(BaseModel):
    """One row of the ``objects`` table."""

    model_config = ConfigDict(frozen=True)

    id: str
    object_type: ObjectType
    source_uri: str
    title: str | None = None
    status: ObjectStatus = ObjectStatus.NEW
    cleaned_text: str | None = None
    parsed_content_json: str | None = None
    error_info: str | None = None
    parsed_at: int | None = None
    file_hash: str | None = None
    original_file_name: str | None = None
    file_size_bytes: int | None = None
    internal_file_path: str | None = None
    summary: str | None = None
    tags_json: str | None = None
    propositions_json: str | None = None
    created_at: int
    updated_at: int


class ParsedContent(BaseModel):
    """Readable text extracted from a fetched source."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    text: str = Field(description="Main body text, markup removed.")
    byline: str | None = None
    length: int = Field(default=0, ge=0, description="Character length of ``text``.")
    source_url: str | None = None


class ChunkCandidate(BaseModel):
    """A chunk as returned by the chunking agent, before persistence.

    ``chunk_idx`` is already contiguous (0..N-1) when the agent returns.
    """

    model_config = ConfigDict(frozen=True)

    chunk_idx: int = Field(ge=0)
    content: str
    summary: str | None = None
    tags: list[str] = Field(default_factory=list)
    propositions: list[str] = Field(default_factory=list)
    token_count: int | None = None


class ChunkRecord(BaseModel):
    """One row of the ``chunks`` table."""

    model_config = ConfigDict(frozen=True)

    id: int
    object_id: str
    chunk_idx: int
    content: str
    summary: str | None = None
    tags_json: str | None = None
    propositions_json: str | None = None
    token_count: int | None = None
    created_at: int


class VectorDocument(BaseModel):
    """A vector-store entry.  Upserting the same ``id`` overwrites it."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @staticmethod
    def make_id(object_id: str, chunk_idx: int) -> str:
        return f"{object_id}_{chunk_idx}"


class PropositionType(str, Enum):  # noqa: UP042
    MAIN = "main"
    SUPPORTING = "supporting"
    ACTION = "action"
    FACT = "fact"


class Proposition(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: PropositionType
    content: str


class ObjectSummary(BaseModel):
    """Document-level summary produced during the ``ai_processing`` stage."""

    model_config = ConfigDict(frozen=True)

    title: str
    summary: str
    tags: list[str] = Field(default_factory=list)
    propositions: list[Proposition] = Field(default_factory=list)

    def grouped_propositions(self) -> dict[str, list[str]]:
        """Group propositions for persistence as ``{main, supporting, facts, actions}``."""
        grouped: dict[str, list[str]] = {"main": [], "supporting": [], "facts": [], "actions": []}
        key_for = {
            PropositionType.MAIN: "main",
            PropositionType.SUPPORTING: "supporting",
            PropositionType.FACT: "facts",
            PropositionType.ACTION: "actions",
        }
        for prop in self.propositions:
            grouped[key_for[prop.type]].append(prop.content)
        return grouped
