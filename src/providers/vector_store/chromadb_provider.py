"""Chunk vectors in a local, persistent ChromaDB collection.

Document ids are ``"{object_id}_{chunk_idx}"`` and every write is an
upsert, so re-chunking an object overwrites its vectors instead of
duplicating them.  ChromaDB's client is synchronous; calls are pushed to
a worker thread so a large upsert never stalls the dispatcher loop.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

# ChromaDB ships a PostHog telemetry hook whose client version often
# disagrees with the installed posthog package.  Switch it off through the
# env var, the SDK flag and the client settings below.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.content import VectorDocument
from src.utils.errors import RAGError

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER = "chromadb"
_COLLECTION_METADATA = {"hnsw:space": "cosine"}

MetadataValue = str | int | float | bool


class _PrecomputedEmbeddings(chromadb.EmbeddingFunction[list[str]]):
    """Placeholder so ChromaDB never downloads its default ONNX model."""

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError("chunk vectors are always supplied by the embedding provider")

    def name(self) -> str:
        return "precomputed"


class ChromaDBProvider(IVectorStoreProvider):
    """:class:`IVectorStoreProvider` over ``chromadb.PersistentClient``.

    Parameters
    ----------
    embedding_provider:
        Produces the vectors; its dimension is checked against any vectors
        already stored in the collection.
    persist_directory:
        On-disk location of the ChromaDB database.
    collection_name:
        Collection holding chunk documents.
    batch_size:
        Documents per ``upsert`` call.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "ingested_chunks",
        batch_size: int = 500,
    ) -> None:
        self._embedder = embedding_provider
        self._batch_size = max(1, batch_size)
        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collection = self._open_collection(collection_name)
        self._check_dimension()

    def _open_collection(self, name: str) -> Any:
        try:
            return self._client.get_or_create_collection(
                name=name,
                metadata=_COLLECTION_METADATA,
                embedding_function=_PrecomputedEmbeddings(),
            )
        except ValueError:
            # Collections persisted with ChromaDB's default function refuse a
            # different one on reopen.
            return self._client.get_or_create_collection(name=name, metadata=_COLLECTION_METADATA)

    def _check_dimension(self) -> None:
        """Raise :class:`RAGError` when stored vectors have another width."""
        if self._collection.count() == 0:
            return
        sample = self._collection.peek(limit=1).get("embeddings")
        if sample is None or len(sample) == 0:
            return

        stored = len(sample[0])
        expected = self._embedder.get_dimension()
        if stored == expected:
            return
        logger.error(
            "embedding_dimension_mismatch",
            stored_dim=stored,
            expected_dim=expected,
            embedder=self._embedder.get_provider_name(),
        )
        raise RAGError(
            message=(
                f"Embedding dimension mismatch: collection holds {stored}-dim vectors, "
                f"{self._embedder.get_provider_name()} produces {expected}-dim vectors"
            ),
            provider_name=_PROVIDER,
        )

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def add_documents(self, documents: list[VectorDocument]) -> list[str]:
        if not documents:
            return []

        vectors = await self._embedder.embed([doc.content for doc in documents])
        if len(vectors) != len(documents):
            raise RAGError(
                message=(
                    f"Embedding count mismatch: {len(vectors)} vectors "
                    f"for {len(documents)} documents"
                ),
                provider_name=_PROVIDER,
            )

        for start in range(0, len(documents), self._batch_size):
            end = start + self._batch_size
            await self._call(
                "upsert",
                self._collection.upsert,
                ids=[doc.id for doc in documents[start:end]],
                embeddings=vectors[start:end],
                documents=[doc.content for doc in documents[start:end]],
                metadatas=[self._clean_metadata(doc.metadata) for doc in documents[start:end]],
            )

        logger.info("vectors_upserted", count=len(documents))
        return [doc.id for doc in documents]

    async def delete_by_object_id(self, object_id: str) -> int:
        found = await self._call("get", self._collection.get, where={"object_id": object_id})
        ids = found.get("ids") or []
        if ids:
            await self._call("delete", self._collection.delete, ids=ids)
        logger.info("vectors_deleted", object_id=object_id, count=len(ids))
        return len(ids)

    async def count(self) -> int:
        return await self._call("count", self._collection.count)

    def get_provider_name(self) -> str:
        return _PROVIDER

    def is_available(self) -> bool:
        try:
            self._collection.count()
        except Exception as exc:  # noqa: BLE001
            logger.warning("chromadb_unavailable", error=str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _call(operation: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB {operation} failed: {exc}", provider_name=_PROVIDER
            ) from exc

    @staticmethod
    def _clean_metadata(meta: dict[str, Any]) -> dict[str, MetadataValue]:
        """Flatten *meta* to the primitive values ChromaDB accepts.

        ``None`` is dropped, sequences are comma-joined and anything else
        is stringified.
        """
        return {key: _primitive(value) for key, value in meta.items() if value is not None}


def _primitive(value: Any) -> MetadataValue:
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple, set)):
        return ",".join(str(item) for item in value)
    return str(value)
