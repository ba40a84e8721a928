"""LLM-driven semantic chunking of cleaned document text.

The agent asks the model to split a document into self-contained chunks
that never break a sentence, each with an optional one-line summary, tags
and atomic propositions.  The reply is validated, oversized chunks are
dropped, and the survivors are re-indexed so ``chunk_idx`` runs 0..N-1
with no gaps, in the order the model numbered them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.interfaces.llm_provider import ILLMProvider
from src.models.content import ChunkCandidate
from src.services.ingestion.structured_llm import StructuredLLMCaller
from src.services.ingestion.token_counter import TokenCounter
from src.utils.errors import ChunkingError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MAX_CHUNK_TOKENS = 8000

_SYSTEM_PROMPT = (
    "You split documents into retrieval chunks. "
    "You MUST reply with a single JSON object and nothing else."
)

_USER_PROMPT_TEMPLATE = """\
Split the document between DOCUMENT_START and DOCUMENT_END into semantically
coherent chunks of roughly 150-400 tokens each.

Rules:
- Keep paragraphs together where possible and NEVER split a sentence.
- Keep only human-readable prose. Drop navigation text, markup and code artifacts.
- Number chunks in reading order starting at 0.

Reply with JSON of this shape:
{{"chunks": [
  {{"chunkIdx": 0,
    "content": "verbatim chunk text, at least 20 characters",
    "summary": "one sentence, at most 25 words",
    "tags": ["3-7", "kebab-case", "tags"],
    "propositions": ["1-4 standalone factual statements from the chunk"]}}
]}}

DOCUMENT_START
{document}
DOCUMENT_END
"""


class _LLMChunk(BaseModel):
    """Schema for one chunk in the model reply."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    chunk_idx: int = Field(alias="chunkIdx", ge=0)
    content: str = Field(min_length=20)
    summary: str | None = None
    tags: list[str] = Field(default_factory=list)
    propositions: list[str] = Field(default_factory=list)


class _LLMChunkReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chunks: list[_LLMChunk] = Field(min_length=1)


def _validate_reply(data: Any) -> list[_LLMChunk]:
    # Some models return the bare array despite the wrapper instruction.
    if isinstance(data, list):
        data = {"chunks": data}
    return _LLMChunkReply.model_validate(data).chunks


class ChunkingAgent:
    """Turns an object's cleaned text into validated :class:`ChunkCandidate` items.

    Parameters
    ----------
    llm:
        Completion backend.
    token_counter:
        ``str -> int`` used for the oversize filter; defaults to a
        :class:`TokenCounter`.
    max_chunk_tokens:
        Chunks longer than this are discarded.
    retry_delay_s:
        Wait between the two LLM attempts.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        token_counter: Callable[[str], int] | None = None,
        max_chunk_tokens: int = DEFAULT_MAX_CHUNK_TOKENS,
        retry_delay_s: float = 1.0,
        caller: StructuredLLMCaller | None = None,
    ) -> None:
        self._count_tokens = token_counter or TokenCounter()
        self._max_chunk_tokens = max_chunk_tokens
        self._caller = caller or StructuredLLMCaller(llm, retry_delay_s=retry_delay_s)

    async def chunk_text(self, cleaned_text: str, object_id: str) -> list[ChunkCandidate]:
        """Chunk *cleaned_text* for *object_id*.

        Raises
        ------
        ChunkingError
            If the text is empty, both LLM attempts fail, or every chunk
            the model returned was oversized.
        """
        if not cleaned_text or not cleaned_text.strip():
            raise ChunkingError(message="No text to chunk", object_id=object_id)

        def _error(message: str) -> ChunkingError:
            return ChunkingError(
                message=message, provider_name="chunking_agent", object_id=object_id
            )

        raw_chunks = await self._caller.call(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=_USER_PROMPT_TEMPLATE.format(document=cleaned_text),
            validate=_validate_reply,
            error_factory=_error,
            operation="chunk_text",
            temperature=0.3,
            max_tokens=16000,
            object_id=object_id,
        )

        candidates = self._filter_and_reindex(raw_chunks, object_id)
        if not candidates:
            raise _error(
                f"All {len(raw_chunks)} chunks exceeded {self._max_chunk_tokens} tokens"
            )

        logger.info(
            "text_chunked",
            object_id=object_id,
            chunks=len(candidates),
            discarded=len(raw_chunks) - len(candidates),
        )
        return candidates

    def _filter_and_reindex(
        self, raw_chunks: list[_LLMChunk], object_id: str
    ) -> list[ChunkCandidate]:
        kept: list[tuple[_LLMChunk, int]] = []
        for chunk in sorted(raw_chunks, key=lambda c: c.chunk_idx):
            tokens = self._count_tokens(chunk.content)
            if tokens > self._max_chunk_tokens:
                logger.warning(
                    "chunk_discarded_oversized",
                    object_id=object_id,
                    chunk_idx=chunk.chunk_idx,
                    tokens=tokens,
                    limit=self._max_chunk_tokens,
                )
                continue
            kept.append((chunk, tokens))

        return [
            ChunkCandidate(
                chunk_idx=new_idx,
                content=chunk.content,
                summary=chunk.summary,
                tags=chunk.tags,
                propositions=chunk.propositions,
                token_count=tokens,
            )
            for new_idx, (chunk, tokens) in enumerate(kept)
        ]
