"""Document-level summary generation for ingested objects."""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.interfaces.llm_provider import ILLMProvider
from src.models.content import ObjectSummary, Proposition
from src.services.ingestion.structured_llm import StructuredLLMCaller
from src.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MAX_CHARS = 50000

_SYSTEM_PROMPT = (
    "You are a document analyst. You MUST reply with a single JSON object and nothing else."
)

_USER_PROMPT_TEMPLATE = """\
Analyse the document below (source title: "{title}") and reply with JSON:

{{
  "title": "a concise, informative title",
  "summary": "200-400 words; for invoices or receipts one line with number, vendor, date, amount",
  "tags": ["5-7 keywords"],
  "propositions": [
    {{"type": "main|supporting|fact|action", "content": "one standalone statement"}}
  ]
}}

Give 3-4 propositions. Use "action" only for recommendations the document states.

DOCUMENT_START
{document}
DOCUMENT_END
"""


class _SummaryReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    propositions: list[Proposition] = Field(default_factory=list)


class ObjectSummarizer:
    """Produces an :class:`ObjectSummary` for a whole document.

    Only the first ``max_chars`` characters are sent to the model.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        max_chars: int = _DEFAULT_MAX_CHARS,
        retry_delay_s: float = 1.0,
        caller: StructuredLLMCaller | None = None,
    ) -> None:
        self._max_chars = max_chars
        self._caller = caller or StructuredLLMCaller(llm, retry_delay_s=retry_delay_s)

    async def summarize(self, text: str, title: str, object_id: str | None = None) -> ObjectSummary:
        """Raises :class:`LLMError` when both attempts fail."""

        def _validate(data: object) -> ObjectSummary:
            reply = _SummaryReply.model_validate(data)
            return ObjectSummary(**reply.model_dump())

        return await self._caller.call(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=_USER_PROMPT_TEMPLATE.format(
                title=title or "untitled", document=text[: self._max_chars]
            ),
            validate=_validate,
            error_factory=lambda message: LLMError(message=message, provider_name="summarizer"),
            operation="summarize_object",
            temperature=0.2,
            max_tokens=2000,
            object_id=object_id,
        )

    async def summarize_or_fallback(
        self,
        text: str,
        title: str,
        object_id: str | None = None,
    ) -> ObjectSummary:
        """Like :meth:`summarize`, but a failure yields a title-based summary."""
        try:
            return await self.summarize(text, title, object_id=object_id)
        except LLMError as exc:
            logger.warning("summary_fallback_used", object_id=object_id, error=str(exc))
            return ObjectSummary(
                title=title or "Untitled",
                summary=f"Summary of: {title or 'untitled document'}",
            )
