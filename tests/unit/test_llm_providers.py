"""Unit tests for the OpenAI-compatible LLM and embedding adapters."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from src.config.settings import Settings
from src.utils.errors import LLMError, RAGError


# ======================================================================
# Shared helpers
# ======================================================================

def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_text_model": "",
        "openai_embedding_model": "",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _completion(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    response.usage = MagicMock(total_tokens=100)
    return response


# ======================================================================
# OpenAI LLM Provider
# ======================================================================


class TestOpenAILLMProvider:
    def test_provider_name_reflects_base_url(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        assert OpenAILLMProvider(_settings()).get_provider_name() == "openai"
        custom = OpenAILLMProvider(_settings(openai_base_url="http://localhost:8000/v1"))
        assert custom.get_provider_name() == "openai-compatible"

    def test_is_available(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        assert OpenAILLMProvider(_settings()).is_available() is True
        assert OpenAILLMProvider(_settings(openai_api_key="")).is_available() is False

    @pytest.mark.asyncio
    async def test_complete_success(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=_completion("LLM text"))

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(_settings(openai_text_model="my-model"))
            result = await provider.complete("system prompt", "user prompt")

        assert result == "LLM text"
        kwargs = mock_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "my-model"
        assert kwargs["messages"][0] == {"role": "system", "content": "system prompt"}
        assert "response_format" not in kwargs

    @pytest.mark.asyncio
    async def test_json_mode_sets_response_format(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=_completion("{}"))

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            await provider.complete("s", "u", json_mode=True)

        kwargs = mock_client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.APIError(message="Rate limit exceeded", request=MagicMock(), body=None)
        )

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            with pytest.raises(LLMError, match="Rate limit exceeded") as info:
                await provider.complete("system", "user")

        assert isinstance(info.value.__cause__, openai.APIError)

    @pytest.mark.asyncio
    async def test_timeout_wrapped(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.APITimeoutError(request=httpx.Request("POST", "https://api"))
        )

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            with pytest.raises(LLMError, match="timeout"):
                await provider.complete("system", "user")

    @pytest.mark.asyncio
    async def test_empty_content_raises(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=_completion(None))

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            with pytest.raises(LLMError, match="empty response"):
                await provider.complete("system", "user")


# ======================================================================
# OpenAI Embedding Provider
# ======================================================================


def _embedding_response(vectors: list[list[float]], reverse: bool = False) -> MagicMock:
    items = [MagicMock(index=i, embedding=v) for i, v in enumerate(vectors)]
    if reverse:
        items.reverse()
    response = MagicMock()
    response.data = items
    response.usage = MagicMock(total_tokens=10)
    return response


class TestOpenAIEmbeddingProvider:
    def test_dimension_from_model(self) -> None:
        from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        assert OpenAIEmbeddingProvider(_settings()).get_dimension() == 1536
        large = OpenAIEmbeddingProvider(_settings(openai_embedding_model="text-embedding-3-large"))
        assert large.get_dimension() == 3072
        unknown = OpenAIEmbeddingProvider(_settings(openai_embedding_model="custom-model"))
        assert unknown.get_dimension() == 768

    @pytest.mark.asyncio
    async def test_embed_preserves_input_order(self) -> None:
        from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            return_value=_embedding_response([[1.0], [2.0], [3.0]], reverse=True)
        )

        with patch(
            "src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings())
            vectors = await provider.embed(["a", "b", "c"])

        assert vectors == [[1.0], [2.0], [3.0]]

    @pytest.mark.asyncio
    async def test_embed_empty_skips_api(self) -> None:
        from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        mock_client = AsyncMock()
        with patch(
            "src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings())
            assert await provider.embed([]) == []
        mock_client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_embed_error_wrapped(self) -> None:
        from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            side_effect=openai.APIError(message="bad key", request=MagicMock(), body=None)
        )
        with patch(
            "src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(RAGError, match="bad key"):
                await provider.embed(["text"])

    @pytest.mark.asyncio
    async def test_embed_splits_into_batches(self) -> None:
        from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            side_effect=[
                _embedding_response([[1.0], [2.0]]),
                _embedding_response([[3.0]]),
            ]
        )
        with patch(
            "src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings(), batch_size=2)
            vectors = await provider.embed(["a", "b", "c"])

        assert vectors == [[1.0], [2.0], [3.0]]
        assert [c.kwargs["input"] for c in mock_client.embeddings.create.call_args_list] == [
            ["a", "b"],
            ["c"],
        ]

    @pytest.mark.asyncio
    async def test_embed_count_mismatch_raises(self) -> None:
        from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_embedding_response([[1.0]]))
        with patch(
            "src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(RAGError, match="1 vectors for 2 inputs"):
                await provider.embed(["a", "b"])
