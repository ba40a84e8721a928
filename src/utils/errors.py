"""Custom exception hierarchy for the ingestion system.

All application exceptions inherit from :class:`IngestionError`, which
carries an optional ``provider_name`` so error handlers can identify which
component or external service (e.g. "openai", "chromadb", "sqlite") caused
the failure.

The hierarchy is organized by pipeline stage:

    IngestionError  (base -- catch-all for any ingestion error)
    +-- ConfigurationError   (startup / missing config)
    +-- JobStoreError        (job/object/chunk persistence failure)
    +-- ContentFetchError    (network fetch of a source, carries status_code)
    +-- ContentParseError    (text extraction / cleaning produced nothing usable)
    +-- WorkerError          (a worker stage failed, carries job_id + stage)
    +-- LLMError             (any LLM API call failure)
    +-- ChunkingError        (chunking agent or coordinator failure, carries object_id)
    +-- RAGError             (embedding or vector-store failure)

The dispatcher never branches on these classes directly.  Retry decisions
are made by :func:`src.utils.error_classifier.classify_error`, which reads
the message text, ``status_code`` and the ``__cause__`` chain.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base exception for all ingestion errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which component triggered the error.
    ``__str__`` prefixes the provider name in brackets for structured log
    output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected ingestion error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Startup / persistence
# ---------------------------------------------------------------------------

class ConfigurationError(IngestionError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class JobStoreError(IngestionError):
    """Raised when a job, object or chunk row cannot be read or written."""

    def __init__(
        self,
        message: str = "Job store operation failed",
        provider_name: str | None = "sqlite",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Source acquisition
# ---------------------------------------------------------------------------

class ContentFetchError(IngestionError):
    """Raised when a source cannot be fetched.

    ``status_code`` holds the HTTP status when the failure came from a
    response (404, 503, ...) and is ``None`` for transport errors.
    ``url`` is kept out of the message: path segments such as
    ``/errors/404`` must not read as a status to the classifier.
    """

    def __init__(
        self,
        message: str = "Content fetch failed",
        provider_name: str | None = None,
        status_code: int | None = None,
        retry_after_ms: int | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self.status_code = status_code
        self.retry_after_ms = retry_after_ms
        self.url = url


class ContentParseError(IngestionError):
    """Raised when fetched content yields no usable text."""

    def __init__(
        self,
        message: str = "Content could not be parsed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class WorkerError(IngestionError):
    """Raised by a worker when one of its stages fails.

    The original exception is chained via ``raise ... from exc`` so the
    classifier still sees it.  ``stage`` is the job status the worker was
    in when the failure occurred.
    """

    def __init__(
        self,
        message: str = "Worker stage failed",
        provider_name: str | None = None,
        job_id: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self.job_id = job_id
        self.stage = stage


# ---------------------------------------------------------------------------
# AI / vector errors
# ---------------------------------------------------------------------------

class LLMError(IngestionError):
    """Raised when an LLM API call fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ChunkingError(IngestionError):
    """Raised when an object's text cannot be turned into valid chunks."""

    def __init__(
        self,
        message: str = "Chunking failed",
        provider_name: str | None = None,
        object_id: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self.object_id = object_id


class RAGError(IngestionError):
    """Raised when an embedding or vector-store operation fails."""

    def __init__(
        self,
        message: str = "RAG pipeline operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
