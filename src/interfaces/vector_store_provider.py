"""Abstract base class for vector-store service providers.

Defines the contract for storing embedded chunk documents.  Implementations
may wrap ChromaDB (local), Qdrant, LanceDB or any other vector database;
the chunking coordinator only ever sees this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.content import VectorDocument


# Concrete implementation: ChromaDBProvider (src/providers/vector_store/)
class IVectorStoreProvider(ABC):
    """Contract for vector-store services used by the chunking coordinator.

    All methods are async to support network-backed stores without
    blocking the event loop.
    """

    @abstractmethod
    async def add_documents(self, documents: list[VectorDocument]) -> list[str]:
        """Embed and upsert *documents*.

        Writing a document whose ``id`` already exists overwrites it, so
        re-running chunking for an object never produces duplicates.

        Parameters
        ----------
        documents:
            Documents to store.  Metadata values must be primitives
            (str, int, float, bool).

        Returns
        -------
        list[str]
            The ids written, in input order.

        Raises
        ------
        src.utils.errors.RAGError
            If embedding or the store operation fails.
        """

    @abstractmethod
    async def delete_by_object_id(self, object_id: str) -> int:
        """Delete every document belonging to *object_id*.

        Returns
        -------
        int
            Number of documents removed.
        """

    @abstractmethod
    async def count(self) -> int:
        """Return the total number of stored documents."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""
