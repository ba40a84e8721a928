"""Vector store provider implementations.

ChromaDB is the sole vector store implementation.  It persists chunk
embeddings on disk at CHROMADB_PERSIST_DIR (default: ./data/chromadb).

To swap ChromaDB for another vector database, implement
IVectorStoreProvider and wire it in src/main.py.
"""

from src.providers.vector_store.chromadb_provider import ChromaDBProvider

__all__ = ["ChromaDBProvider"]
