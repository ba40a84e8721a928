"""Shared pytest fixtures for the ingestion test suite."""

from __future__ import annotations

import json
import os
import tempfile
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from src.interfaces.content_provider import IContentFetcher
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.content import ParsedContent, VectorDocument
from src.providers.storage.database import SQLiteDatabase
from src.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from src.providers.storage.sqlite_job_store import SQLiteJobStore
from src.providers.storage.sqlite_object_store import SQLiteObjectStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _uncached_loggers() -> None:
    """Resolve the output stream on every log call.

    Cached PrintLoggers keep whatever ``sys.stdout`` was current on first
    use, which is a closed capture buffer once a ``capsys`` test ends.
    """
    structlog.configure(cache_logger_on_first_use=False)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture
async def database():
    """A freshly initialised SQLite database in a temp file."""
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    db = SQLiteDatabase(db_path=tmp.name)
    await db.initialize()
    yield db
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(tmp.name + suffix):
            os.unlink(tmp.name + suffix)


@pytest.fixture
def job_store(database: SQLiteDatabase) -> SQLiteJobStore:
    return SQLiteJobStore(database)


@pytest.fixture
def object_store(database: SQLiteDatabase) -> SQLiteObjectStore:
    return SQLiteObjectStore(database)


@pytest.fixture
def chunk_store(database: SQLiteDatabase) -> SQLiteChunkStore:
    return SQLiteChunkStore(database)


# ---------------------------------------------------------------------------
# Mock providers
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_llm_provider() -> MagicMock:
    """Mock ILLMProvider; set ``complete.return_value`` / ``side_effect`` per test."""
    mock = MagicMock(spec=ILLMProvider)
    mock.complete = AsyncMock(return_value="{}")
    mock.get_provider_name.return_value = "mock-llm"
    mock.is_available.return_value = True
    return mock


@pytest.fixture
def mock_vector_store() -> MagicMock:
    """Mock IVectorStoreProvider that records upserted documents."""
    mock = MagicMock(spec=IVectorStoreProvider)
    stored: dict[str, VectorDocument] = {}

    async def _add(documents: list[VectorDocument]) -> list[str]:
        for doc in documents:
            stored[doc.id] = doc
        return [d.id for d in documents]

    async def _delete(object_id: str) -> int:
        doomed = [k for k, d in stored.items() if d.metadata.get("object_id") == object_id]
        for key in doomed:
            del stored[key]
        return len(doomed)

    mock.add_documents = AsyncMock(side_effect=_add)
    mock.delete_by_object_id = AsyncMock(side_effect=_delete)
    mock.count = AsyncMock(side_effect=lambda: len(stored))
    mock.get_provider_name.return_value = "mock-vectors"
    mock.stored = stored
    return mock


class FakeContentFetcher(IContentFetcher):
    """In-memory fetcher: ``pages`` maps URL to HTML, ``errors`` to exceptions."""

    def __init__(self) -> None:
        self.pages: dict[str, str] = {}
        self.errors: dict[str, Exception] = {}
        self.fetch_calls: list[str] = []

    async def fetch_html(self, url: str) -> str:
        self.fetch_calls.append(url)
        if url in self.errors:
            raise self.errors[url]
        return self.pages[url]

    def parse(self, html: str, url: str) -> ParsedContent | None:
        if not html.strip():
            return None
        title, _, body = html.partition("\n")
        return ParsedContent(title=title, text=body, length=len(body), source_url=url)

    def get_provider_name(self) -> str:
        return "fake_fetcher"


@pytest.fixture
def fake_fetcher() -> FakeContentFetcher:
    return FakeContentFetcher()


# ---------------------------------------------------------------------------
# LLM reply builders
# ---------------------------------------------------------------------------


def chunk_reply(contents: list[str], **extra: Any) -> str:
    """JSON reply of the shape the chunking agent expects."""
    return json.dumps(
        {
            "chunks": [
                {
                    "chunkIdx": idx,
                    "content": content,
                    "summary": f"Summary {idx}",
                    "tags": ["tag-a", "tag-b"],
                    "propositions": [f"Fact {idx}"],
                    **extra,
                }
                for idx, content in enumerate(contents)
            ]
        }
    )


def summary_reply(title: str = "A Title", summary: str = "A summary of the document.") -> str:
    return json.dumps(
        {
            "title": title,
            "summary": summary,
            "tags": ["alpha", "beta"],
            "propositions": [
                {"type": "main", "content": "Main point."},
                {"type": "fact", "content": "A fact."},
            ],
        }
    )


SAMPLE_TEXT = (
    "The first paragraph explains what the system does and why it exists.\n\n"
    "The second paragraph covers how jobs move through the queue and are retried.\n\n"
    "The third paragraph describes chunking and embedding of parsed content."
)
