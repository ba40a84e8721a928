"""Abstract base class for content-object storage."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.models.content import ContentObject, ObjectStatus, ObjectType


# Concrete implementation: SQLiteObjectStore (src/providers/storage/)
class IObjectStore(ABC):
    """Contract for content-object persistence.

    :meth:`claim_for_embedding` is the only way an object leaves
    ``parsed``; it must be atomic so that two coordinators (or two
    processes) can never both claim the same object.
    """

    @abstractmethod
    async def create(
        self,
        object_type: ObjectType,
        source_uri: str,
        title: str | None = None,
        status: ObjectStatus = ObjectStatus.NEW,
        **fields: Any,
    ) -> ContentObject:
        """Insert a new object.  ``source_uri`` must be unique."""

    @abstractmethod
    async def get_by_id(self, object_id: str) -> ContentObject | None:
        """Return the object or ``None``."""

    @abstractmethod
    async def get_by_source_uri(self, source_uri: str) -> ContentObject | None:
        """Return the object ingested from *source_uri*, if any."""

    @abstractmethod
    async def find_by_file_hash(self, file_hash: str) -> ContentObject | None:
        """Return the object whose raw bytes hashed to *file_hash*, if any."""

    @abstractmethod
    async def update(self, object_id: str, **fields: Any) -> bool:
        """Patch arbitrary object columns.  Returns whether a row changed."""

    @abstractmethod
    async def update_status(
        self,
        object_id: str,
        status: ObjectStatus,
        error_info: str | None = None,
    ) -> bool:
        """Set *status* (and ``error_info``, cleared when ``None``)."""

    @abstractmethod
    async def claim_for_embedding(self, object_id: str) -> bool:
        """Atomically move the object from ``parsed`` to ``embedding``.

        Returns
        -------
        bool
            ``True`` only for the caller whose conditional update changed
            the row.
        """

    @abstractmethod
    async def find_by_status(
        self,
        statuses: list[ObjectStatus],
        limit: int | None = None,
    ) -> list[ContentObject]:
        """Return objects in any of *statuses*, oldest first."""

    @abstractmethod
    async def reset_status(
        self,
        from_status: ObjectStatus,
        to_status: ObjectStatus,
        object_ids: list[str] | None = None,
    ) -> list[str]:
        """Move objects from one status to another.

        Restricted to *object_ids* when given.  Returns the ids that moved.
        """

    @abstractmethod
    async def delete(self, object_id: str) -> bool:
        """Delete the object (and, via cascade, its chunks)."""
