"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When a custom ``openai_base_url`` is configured (e.g. TogetherAI, Groq,
a local vLLM server), the client points at that URL instead of the
default OpenAI endpoint.

Many third-party model hosts expose OpenAI-compatible REST APIs, so this
single adapter covers both the summarizer and the chunking agent
regardless of who serves the model.
"""

from __future__ import annotations

# The official OpenAI Python SDK (async version).
import openai
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
# LLMError wraps SDK exceptions so callers never import openai.  The SDK
# exception stays on __cause__, where the error classifier reads its
# status code.
from src.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API.

    Uses ``gpt-4o-mini`` by default; override with ``OPENAI_TEXT_MODEL``.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        self._timeout_s = settings.openai_timeout_seconds

        # base_url is only passed when a custom endpoint is configured.
        client_kwargs: dict = {
            "api_key": self._api_key or "missing",
            "timeout": openai.Timeout(self._timeout_s, connect=5.0),
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._text_model = settings.openai_text_model or "gpt-4o-mini"
        self._provider_label = "openai-compatible" if settings.openai_base_url else "openai"

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 4000,
        json_mode: bool = False,
    ) -> str:
        """Generate a completion via the chat API.

        With ``json_mode`` the request sets
        ``response_format={"type": "json_object"}`` so the model is
        constrained to emit a JSON object.  The caller still validates it.
        """
        request: dict = {
            "model": self._text_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**request)
        except openai.APITimeoutError as exc:
            raise LLMError(
                message=f"{self._provider_label} timeout after {self._timeout_s:g}s",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content = response.choices[0].message.content
        if content is None:
            raise LLMError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        # Token usage is logged for cost tracking.
        logger.info(
            "openai_completion",
            model=self._text_model,
            provider=self._provider_label,
            json_mode=json_mode,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return self._provider_label
