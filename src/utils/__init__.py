"""Utility modules for the ingestion system.

- **errors** -- Exception hierarchy rooted at IngestionError; each stage
  raises its own subclass with ``raise ... from exc`` so the original cause
  stays on the chain.
- **error_classifier** -- Transient/permanent classification of arbitrary
  exceptions, retry-delay computation and bounded error-info rendering.
- **logging** -- structlog setup with console output in development and
  JSON in production, plus per-job context binding.
"""

from src.utils.error_classifier import (
    ErrorCategory,
    ErrorClassification,
    classify_error,
    compute_retry_delay,
    format_error_info,
)
from src.utils.errors import (
    ChunkingError,
    ConfigurationError,
    ContentFetchError,
    ContentParseError,
    IngestionError,
    JobStoreError,
    LLMError,
    RAGError,
    WorkerError,
)
from src.utils.logging import configure_logging, get_logger, job_log_context

__all__ = [
    "ChunkingError",
    "ConfigurationError",
    "ContentFetchError",
    "ContentParseError",
    "ErrorCategory",
    "ErrorClassification",
    "IngestionError",
    "JobStoreError",
    "LLMError",
    "RAGError",
    "WorkerError",
    "classify_error",
    "compute_retry_delay",
    "configure_logging",
    "format_error_info",
    "get_logger",
    "job_log_context",
]
