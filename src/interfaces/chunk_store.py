"""Abstract base class for chunk storage."""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.content import ChunkCandidate, ChunkRecord


# Concrete implementation: SQLiteChunkStore (src/providers/storage/)
class IChunkStore(ABC):
    """Contract for the SQL side of chunk persistence.

    ``(object_id, chunk_idx)`` is unique; writing an index that already
    exists replaces the row.
    """

    @abstractmethod
    async def add_chunks_bulk(
        self,
        object_id: str,
        chunks: list[ChunkCandidate],
    ) -> list[ChunkRecord]:
        """Write all *chunks* for *object_id* in one transaction.

        Rows for indices beyond the new set are removed, so after the call
        the object has exactly ``len(chunks)`` chunks.

        Returns
        -------
        list[ChunkRecord]
            The persisted rows in ``chunk_idx`` order, with SQL ids.
        """

    @abstractmethod
    async def list_by_object_id(self, object_id: str) -> list[ChunkRecord]:
        """Return the object's chunks in ``chunk_idx`` order."""

    @abstractmethod
    async def delete_by_object_id(self, object_id: str) -> int:
        """Delete every chunk of *object_id*.  Returns the number removed."""
