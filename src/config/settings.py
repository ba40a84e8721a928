"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Values are read from two sources (in priority order):
#
#   1. **Environment variables**: e.g. QUEUE_CONCURRENCY=4
#   2. **.env file**: key=value lines in the project root .env file
#
# Field ``queue_concurrency`` maps to env var ``QUEUE_CONCURRENCY``.
# Defaults below are used when neither source sets a value.
#
# Durations are milliseconds unless the name says otherwise, matching the
# epoch-millisecond timestamps stored in the job table.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ingestion runtime settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Storage ===
    db_path: str = "data/ingestion.db"
    pdf_storage_dir: str = "data/pdfs"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "ingested_chunks"

    # === LLM / embeddings ===
    # Empty key = "not configured"; the runtime refuses to start workers
    # that need the LLM without one.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, local gateway, ...)
    openai_text_model: str = ""  # Defaults to gpt-4o-mini when empty
    openai_embedding_model: str = ""  # Defaults to text-embedding-3-small when empty
    openai_timeout_seconds: float = 60.0

    # === Job queue ===
    queue_concurrency: int = Field(default=12, ge=1)
    queue_poll_interval_ms: int = Field(default=5000, ge=10)
    queue_max_retries: int = Field(default=3, ge=0)
    queue_retry_delay_ms: int = Field(default=5000, ge=0)
    queue_exponential_backoff: bool = True
    queue_retry_jitter: float = Field(default=0.1, ge=0.0, le=1.0)

    # === Chunking / embedding ===
    chunking_poll_interval_ms: int = Field(default=30000, ge=10)
    chunking_max_chunk_tokens: int = Field(default=8000, ge=1)
    chunking_retry_delay_ms: int = Field(default=1000, ge=0)

    # === Workers ===
    max_pdf_size_mb: int = Field(default=50, ge=1)
    fetch_timeout_seconds: float = 30.0
    summary_max_chars: int = Field(default=50000, ge=1000)

    # === Maintenance ===
    job_retention_days: int = Field(default=30, ge=1)

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def has_llm(self) -> bool:
        """Return ``True`` when an OpenAI-compatible API key is configured."""
        return bool(self.openai_api_key)
