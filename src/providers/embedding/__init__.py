"""Embedding provider implementations.

Embeddings convert chunk text into numeric vectors stored in ChromaDB.

    - OpenAIEmbeddingProvider: text-embedding-3-small (1536 dims) by default,
      or any OpenAI-compatible embeddings endpoint.
"""

from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
