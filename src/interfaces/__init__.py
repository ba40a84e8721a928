"""Public interface definitions for storage and external service providers.

Every store and external service in the ingestion pipeline is accessed
through the abstract base classes defined in this package.  Concrete
adapters implement these interfaces and are injected at startup by
``src/main.py``; unit tests inject mocks instead.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in src/providers/)
    ─────────────────────────────────────────────────────────────────────
    IJobStore                  →  SQLiteJobStore
    IObjectStore               →  SQLiteObjectStore
    IChunkStore                →  SQLiteChunkStore
    IVectorStoreProvider       →  ChromaDBProvider
    IEmbeddingProvider         →  OpenAIEmbeddingProvider
    ILLMProvider               →  OpenAILLMProvider
    IContentFetcher            →  WebPageFetcher
    IPdfTextExtractor          →  PdfTextExtractor
"""

from src.interfaces.chunk_store import IChunkStore
from src.interfaces.content_provider import IContentFetcher, IPdfTextExtractor
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.job_store import IJobStore
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.object_store import IObjectStore
from src.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "IChunkStore",
    "IContentFetcher",
    "IEmbeddingProvider",
    "IJobStore",
    "ILLMProvider",
    "IObjectStore",
    "IPdfTextExtractor",
    "IVectorStoreProvider",
]
