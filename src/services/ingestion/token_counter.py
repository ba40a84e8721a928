"""Token counting for chunk-size limits.

Uses the HuggingFace ``tokenizers`` library (``bert-base-uncased``) when
it can be loaded, falling back to an approximate ``len(text) // 4``.  The
tokenizer is loaded on first use so constructing the chunking agent never
touches the network.
"""

from __future__ import annotations

from typing import Any

import structlog

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_TOKENIZER = "bert-base-uncased"


class TokenCounter:
    """Callable that returns the token count of a string."""

    def __init__(self, tokenizer_name: str = _DEFAULT_TOKENIZER) -> None:
        self._tokenizer_name = tokenizer_name
        self._tokenizer: Any = None
        self._loaded = False

    def __call__(self, text: str) -> int:
        return self.count(text)

    def count(self, text: str) -> int:
        """Return an accurate token count for *text* when possible."""
        tokenizer = self._get_tokenizer()
        if tokenizer is not None:
            return len(tokenizer.encode(text).ids)
        return len(text) // 4

    def _get_tokenizer(self) -> Any:
        if not self._loaded:
            self._tokenizer = self._load_tokenizer(self._tokenizer_name)
            self._loaded = True
        return self._tokenizer

    @staticmethod
    def _load_tokenizer(name: str):  # noqa: ANN205
        """Attempt to load a fast tokenizer; ``None`` if unavailable offline."""
        try:
            from tokenizers import Tokenizer  # type: ignore[import-untyped]

            return Tokenizer.from_pretrained(name)
        except Exception:  # noqa: BLE001
            logger.info(
                "tokenizers_unavailable",
                tokenizer=name,
                msg="Falling back to approximate token counting (len // 4).",
            )
            return None
