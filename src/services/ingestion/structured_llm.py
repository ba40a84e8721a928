"""Request-validate-retry helper for LLM calls that must return JSON.

Both the object summarizer and the chunking agent ask the model for a
JSON document and validate it with a pydantic model.  They share one
attempt limit (two calls by default) with two distinct recovery paths:

* **API failure** (the provider raised): wait ``retry_delay_s`` and send
  the same prompt again.
* **Invalid reply** (not JSON, or schema mismatch): wait, then resend with
  the system prompt swapped for :data:`FIX_JSON_SYSTEM_PROMPT`.

When the attempts are spent the last error is re-raised through the
caller-supplied ``error_factory`` so each caller raises its own
exception type.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError

from src.interfaces.llm_provider import ILLMProvider

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

FIX_JSON_SYSTEM_PROMPT = (
    "Your previous reply was invalid JSON or did not match the required schema. "
    "Reply ONLY with valid JSON that matches the schema described in the user message. "
    "Do not include explanations, apologies or markdown fences."
)

_FENCE = re.compile(r"^\s*```(?:json)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


class InvalidLLMResponse(ValueError):
    """The model replied, but not with JSON matching the expected schema."""


def parse_json_response(response: str) -> Any:
    """Parse a model reply as JSON, tolerating a surrounding markdown fence.

    Raises
    ------
    InvalidLLMResponse
        If the reply is empty or not valid JSON.
    """
    cleaned = (response or "").strip()
    fence_match = _FENCE.match(cleaned)
    if fence_match:
        cleaned = fence_match.group(1).strip()
    if not cleaned:
        raise InvalidLLMResponse("Empty response")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise InvalidLLMResponse(f"Response is not valid JSON: {exc}") from exc


class StructuredLLMCaller:
    """Runs the two-path retry protocol described in the module docstring.

    Parameters
    ----------
    llm:
        The completion backend.
    retry_delay_s:
        Wait between attempts.
    max_attempts:
        Total calls allowed across both failure paths.
    sleep:
        Injected for tests; defaults to :func:`asyncio.sleep`.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        retry_delay_s: float = 1.0,
        max_attempts: int = 2,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._llm = llm
        self._retry_delay_s = retry_delay_s
        self._max_attempts = max(max_attempts, 1)
        self._sleep = sleep

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        validate: Callable[[Any], _T],
        error_factory: Callable[[str], Exception],
        operation: str,
        temperature: float = 0.2,
        max_tokens: int = 4000,
        **log_context: Any,
    ) -> _T:
        """Call the model until *validate* accepts the parsed reply.

        *validate* receives the parsed JSON and returns the typed result;
        it signals a schema mismatch by raising :class:`ValidationError`
        or :class:`InvalidLLMResponse`.
        """
        current_system = system_prompt
        last_error: Exception | None = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                raw = await self._llm.complete(
                    system_prompt=current_system,
                    user_prompt=user_prompt,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    json_mode=True,
                )
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "llm_call_failed",
                    operation=operation,
                    attempt=attempt,
                    error=str(exc),
                    **log_context,
                )
                if attempt < self._max_attempts:
                    await self._sleep(self._retry_delay_s)
                continue

            try:
                result = validate(parse_json_response(raw))
            except (InvalidLLMResponse, ValidationError) as exc:
                last_error = exc
                logger.warning(
                    "llm_response_invalid",
                    operation=operation,
                    attempt=attempt,
                    error=str(exc)[:500],
                    response_preview=(raw or "")[:200],
                    **log_context,
                )
                if attempt < self._max_attempts:
                    current_system = FIX_JSON_SYSTEM_PROMPT
                    await self._sleep(self._retry_delay_s)
                continue

            logger.debug("llm_call_succeeded", operation=operation, attempt=attempt, **log_context)
            return result

        message = f"{operation} failed after {self._max_attempts} attempts: {last_error}"
        raise error_factory(message) from last_error
