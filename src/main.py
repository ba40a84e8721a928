"""Ingestion runtime entry point.

Wires together storage, providers, workers, the job dispatcher and the
chunking coordinator via constructor injection.  Loads configuration
from ``.env`` and ``config/config.yaml`` and configures structured
logging.

Administrative CLI commands (adding jobs, stats, retries) only need the
storage side; :func:`build_runtime` with ``processing=False`` skips the
LLM, embedding and ChromaDB clients entirely.
"""

from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass
from typing import Any

import structlog

from src.config.loader import load_config
from src.config.settings import Settings
from src.models.job import JobType
from src.pipeline.job_events import JobEventBus
from src.providers.storage.database import SQLiteDatabase
from src.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from src.providers.storage.sqlite_job_store import SQLiteJobStore
from src.providers.storage.sqlite_object_store import SQLiteObjectStore
from src.services.ingestion.chunking_service import ChunkingConfig, ChunkingService
from src.services.ingestion.job_queue import IngestionQueueService, QueueConfig
from src.services.ingestion.maintenance import IngestionMaintenance
from src.utils.errors import ConfigurationError
from src.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


@dataclass
class IngestionRuntime:
    """Every long-lived component of one ingestion process."""

    settings: Settings
    config: dict[str, Any]
    database: SQLiteDatabase
    job_store: SQLiteJobStore
    object_store: SQLiteObjectStore
    chunk_store: SQLiteChunkStore
    events: JobEventBus
    queue: IngestionQueueService
    maintenance: IngestionMaintenance
    chunking: ChunkingService | None = None
    fetcher: Any = None

    async def initialize(self) -> None:
        """Create tables.  Safe to call repeatedly."""
        await self.database.initialize()

    async def start(self) -> None:
        """Initialize storage, recover crashed claims, start both loops."""
        if self.chunking is None:
            raise ConfigurationError(message="Runtime was built without processing components")
        if not self.settings.has_llm():
            raise ConfigurationError(
                message="OPENAI_API_KEY is required to run the ingestion workers",
                provider_name="openai",
            )
        await self.initialize()
        await self.maintenance.recover_stale_embeddings()
        self.queue.start()
        self.chunking.start()
        _logger.info(
            "ingestion_runtime_started",
            environment=self.settings.app_env,
            concurrency=self.queue.config.concurrency,
        )

    async def stop(self, drain_timeout: float | None = 30.0) -> None:
        """Stop both loops, wait for in-flight jobs, release clients."""
        await self.queue.stop()
        if self.chunking is not None:
            await self.chunking.stop()
        await self.queue.drain(timeout=drain_timeout)
        if self.fetcher is not None:
            await self.fetcher.aclose()
        _logger.info("ingestion_runtime_stopped", active_jobs=self.queue.get_active_job_count())


# ---------------------------------------------------------------------------
# Component builders
# ---------------------------------------------------------------------------


def _build_processing(
    runtime: IngestionRuntime,
    app_settings: Settings,
    config: dict[str, Any],
) -> None:
    """Attach providers, workers and the chunking coordinator to *runtime*."""
    # Deferred imports: the OpenAI, ChromaDB, trafilatura and PyMuPDF
    # clients are only loaded by processes that actually ingest.
    from src.providers.content.pdf_text_extractor import PdfTextExtractor
    from src.providers.content.web_page_fetcher import WebPageFetcher
    from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
    from src.providers.llm.openai_provider import OpenAILLMProvider
    from src.providers.vector_store.chromadb_provider import ChromaDBProvider
    from src.services.ingestion.chunking_agent import ChunkingAgent
    from src.services.ingestion.summarizer import ObjectSummarizer
    from src.services.ingestion.workers.pdf_worker import PdfIngestionWorker
    from src.services.ingestion.workers.url_worker import UrlIngestionWorker

    storage = config.get("storage", {})
    workers = config.get("workers", {})
    chunking_config = ChunkingConfig.from_config(config)
    retry_delay_s = chunking_config.retry_delay_ms / 1000

    llm = OpenAILLMProvider(settings=app_settings)
    summarizer = ObjectSummarizer(
        llm, max_chars=app_settings.summary_max_chars, retry_delay_s=retry_delay_s
    )
    agent = ChunkingAgent(
        llm, max_chunk_tokens=chunking_config.max_chunk_tokens, retry_delay_s=retry_delay_s
    )
    vector_store = ChromaDBProvider(
        embedding_provider=OpenAIEmbeddingProvider(settings=app_settings),
        persist_directory=storage.get("chromadb_persist_dir", app_settings.chromadb_persist_dir),
        collection_name=storage.get("chromadb_collection", app_settings.chromadb_collection),
    )
    fetcher = WebPageFetcher(
        timeout_seconds=workers.get("fetch_timeout_seconds", app_settings.fetch_timeout_seconds)
    )

    runtime.queue.register_processor(
        JobType.URL,
        UrlIngestionWorker(runtime.job_store, runtime.object_store, fetcher, summarizer),
    )
    runtime.queue.register_processor(
        JobType.PDF,
        PdfIngestionWorker(
            runtime.job_store,
            runtime.object_store,
            PdfTextExtractor(),
            summarizer,
            storage_dir=storage.get("pdf_storage_dir", app_settings.pdf_storage_dir),
            max_file_size_mb=workers.get("max_pdf_size_mb", app_settings.max_pdf_size_mb),
        ),
    )
    runtime.chunking = ChunkingService(
        runtime.object_store,
        runtime.job_store,
        runtime.chunk_store,
        vector_store,
        agent,
        events=runtime.events,
        config=chunking_config,
    )
    runtime.fetcher = fetcher


def build_runtime(
    custom_settings: Settings | None = None,
    config: dict[str, Any] | None = None,
    processing: bool = True,
) -> IngestionRuntime:
    """Construct the ingestion runtime.

    Parameters
    ----------
    custom_settings:
        Settings to use instead of reading the environment.
    config:
        Resolved config dict (see :func:`src.config.load_config`); loaded
        from ``config/config.yaml`` when omitted.
    processing:
        When ``False`` only storage, the dispatcher (without processors)
        and maintenance are built.
    """
    app_settings = custom_settings or Settings()
    config = config if config is not None else load_config(settings=app_settings)
    storage = config.get("storage", {})

    database = SQLiteDatabase(storage.get("db_path", app_settings.db_path))
    job_store = SQLiteJobStore(database)
    object_store = SQLiteObjectStore(database)
    events = JobEventBus()

    runtime = IngestionRuntime(
        settings=app_settings,
        config=config,
        database=database,
        job_store=job_store,
        object_store=object_store,
        chunk_store=SQLiteChunkStore(database),
        events=events,
        queue=IngestionQueueService(job_store, QueueConfig.from_config(config), events=events),
        maintenance=IngestionMaintenance(object_store, job_store),
    )
    if processing:
        _build_processing(runtime, app_settings, config)
    return runtime


# ---------------------------------------------------------------------------
# Long-running process
# ---------------------------------------------------------------------------


async def run_forever(runtime: IngestionRuntime) -> None:
    """Start the runtime and block until SIGINT / SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still
            # raises KeyboardInterrupt out of asyncio.run().
            pass

    await runtime.start()
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()


def main() -> None:
    app_settings = Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )
    asyncio.run(run_forever(build_runtime(app_settings)))


if __name__ == "__main__":
    main()
