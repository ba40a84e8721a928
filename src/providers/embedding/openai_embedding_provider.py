"""Chunk embeddings through the OpenAI embeddings endpoint.

The chunking coordinator embeds every chunk of one object in a single
``add_documents`` call, so :meth:`OpenAIEmbeddingProvider.embed` has to
return exactly one vector per input, in input order, however many
requests it takes.  Any ``base_url`` that speaks the OpenAI protocol
works (TogetherAI, Fireworks, a local gateway).
"""

from __future__ import annotations

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.utils.errors import RAGError

logger = structlog.get_logger(logger_name=__name__)

# Hard per-request input limit of the embeddings endpoint.
_API_MAX_INPUTS = 2048
_DEFAULT_MODEL = "text-embedding-3-small"
_FALLBACK_DIMENSION = 768

_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """:class:`IEmbeddingProvider` over ``openai.AsyncOpenAI``.

    Parameters
    ----------
    settings:
        Supplies the key, optional ``base_url``, model and timeout.
    batch_size:
        Inputs per request; capped at the endpoint's own limit.
    """

    def __init__(self, settings: Settings, batch_size: int = 512) -> None:
        self._api_key = settings.openai_api_key
        self._batch_size = max(1, min(batch_size, _API_MAX_INPUTS))
        self._model = settings.openai_embedding_model or _DEFAULT_MODEL
        self._dimension = _MODEL_DIMENSIONS.get(self._model, _FALLBACK_DIMENSION)
        self._label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

        options: dict = {
            "api_key": self._api_key or "missing",
            "timeout": openai.Timeout(settings.openai_timeout_seconds, connect=5.0),
        }
        if settings.openai_base_url:
            options["base_url"] = settings.openai_base_url
        self._client = openai.AsyncOpenAI(**options)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self._batch_size):
            batch = texts[offset : offset + self._batch_size]
            vectors.extend(await self._embed_batch(batch, offset))
        return vectors

    async def _embed_batch(self, batch: list[str], offset: int) -> list[list[float]]:
        try:
            response = await self._client.embeddings.create(input=batch, model=self._model)
        except openai.APIError as exc:
            raise RAGError(
                message=f"{self._label} API error at input {offset}: {exc}",
                provider_name=self._label,
            ) from exc

        if len(response.data) != len(batch):
            raise RAGError(
                message=(
                    f"{self._label} returned {len(response.data)} vectors "
                    f"for {len(batch)} inputs"
                ),
                provider_name=self._label,
            )

        # Items carry their input position; the response order is not guaranteed.
        ordered = sorted(response.data, key=lambda item: item.index)
        logger.debug(
            "embedding_batch_done",
            model=self._model,
            offset=offset,
            inputs=len(batch),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return [item.embedding for item in ordered]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._label

    def is_available(self) -> bool:
        return bool(self._api_key)
