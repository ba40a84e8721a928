"""Transient vs. permanent error classification for the job dispatcher.

Workers raise whatever their collaborators raise (httpx errors, OS errors,
:class:`~src.utils.errors.IngestionError` subclasses, SQLite errors); the
dispatcher calls :func:`classify_error` on the exception to decide between
``retry_pending`` and ``failed``.

Every exception on the ``__cause__`` / ``__context__`` chain is consulted.
Structured signals decide first, in this order:

1. An HTTP ``status_code`` listed in either pattern table.
2. A symbolic errno (``ECONNRESET``, ``ENOENT``, ...) listed in either table.
3. A timeout or connection exception type  -> transient.

Only then is text matched.  One lowercase *haystack* is built from class
names, messages (with URLs removed), errno names and ``code`` attributes:

4. Any :data:`PERMANENT_ERROR_PATTERNS` hit  -> permanent, never retried.
5. Any :data:`TRANSIENT_ERROR_PATTERNS` hit  -> transient.
6. Neither                                   -> transient; the dispatcher's
   attempt ceiling bounds how often an unknown error is retried.

Purely numeric patterns (``"404"``, ``"503"``) only match a status code
exactly or a whole number in the message, so "4000 tokens" is not a 400.
"""

from __future__ import annotations

import errno as errno_module
import json
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

MAX_ERROR_INFO_LENGTH = 1024
DEFAULT_RETRY_DELAY_MS = 5000

TRANSIENT_ERROR_PATTERNS: tuple[str, ...] = (
    # network
    "ECONNREFUSED",
    "ENOTFOUND",
    "ETIMEDOUT",
    "ECONNRESET",
    "EHOSTUNREACH",
    "ENETUNREACH",
    # http
    "429",
    "502",
    "503",
    "504",
    # database
    "SQLITE_BUSY",
    "SQLITE_LOCKED",
    "is locked",
    "busy",
    # generic
    "timeout",
    "rate limit",
    "temporarily",
    "try again",
)

PERMANENT_ERROR_PATTERNS: tuple[str, ...] = (
    # permission
    "EACCES",
    "EPERM",
    "permission denied",
    "access denied",
    # storage
    "ENOSPC",
    "EDQUOT",
    "disk full",
    "no space",
    # client errors
    "400",
    "401",
    "403",
    "404",
    "410",
    # file
    "ENOENT",
    "invalid file",
    "corrupt",
    "malformed",
)


# Exception types (matched anywhere in the MRO by name) that are transient
# whatever their message says.  Names cover the builtins, httpx and openai
# without importing either library here.
TRANSIENT_EXCEPTION_TYPES: frozenset[str] = frozenset(
    {
        "TimeoutError",
        "ConnectionError",
        "TimeoutException",
        "NetworkError",
        "APITimeoutError",
        "APIConnectionError",
    }
)


class ErrorCategory(str, Enum):  # noqa: UP042
    NETWORK = "network"
    STORAGE = "storage"
    PARSING = "parsing"
    AI_PROCESSING = "ai_processing"
    PERMISSION = "permission"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


# First match wins; order matters ("access denied" is PERMISSION, not NETWORK).
_CATEGORY_KEYWORDS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.PERMISSION, ("permission", "access denied", "eacces", "eperm", "denied")),
    (ErrorCategory.NETWORK, ("network", "econn", "timeout", "fetch", "connect", "http", "dns")),
    (ErrorCategory.STORAGE, ("storage", "sqlite", "database", "disk", "enospc", "edquot")),
    (ErrorCategory.PARSING, ("parse", "invalid", "malformed", "corrupt", "json")),
    (ErrorCategory.AI_PROCESSING, ("llm", "openai", "embedding", "chunking", "chromadb")),
    (ErrorCategory.RESOURCE, ("memory", "resource", "limit", "quota")),
)


@dataclass(frozen=True)
class ErrorClassification:
    """Outcome of :func:`classify_error`.

    ``retry_delay_ms`` is only set when the error itself dictates a wait
    (a ``Retry-After`` header or an explicit ``retry_after_ms`` attribute).
    """

    is_transient: bool
    category: ErrorCategory
    matched_pattern: str | None = None
    retry_delay_ms: int | None = None

    @property
    def retryable(self) -> bool:
        return self.is_transient


def classify_error(exc: BaseException) -> ErrorClassification:
    """Classify *exc* as transient or permanent (see module docstring)."""
    text, codes = _build_haystack(exc)
    category = categorize(text)
    retry_delay_ms = _retry_after_ms(exc)

    verdict = _structured_verdict(exc)
    if verdict is not None:
        is_transient, matched = verdict
        return ErrorClassification(
            is_transient,
            category,
            matched_pattern=matched,
            retry_delay_ms=retry_delay_ms if is_transient else None,
        )

    for pattern in PERMANENT_ERROR_PATTERNS:
        if _matches(pattern, text, codes):
            return ErrorClassification(False, category, matched_pattern=pattern)

    for pattern in TRANSIENT_ERROR_PATTERNS:
        if _matches(pattern, text, codes):
            return ErrorClassification(
                True, category, matched_pattern=pattern, retry_delay_ms=retry_delay_ms
            )

    return ErrorClassification(True, category, retry_delay_ms=retry_delay_ms)


def categorize(text: str) -> ErrorCategory:
    """Map free-form error text to a coarse :class:`ErrorCategory`."""
    lowered = text.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return ErrorCategory.UNKNOWN


def compute_retry_delay(
    attempts: int,
    base_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    exponential: bool = True,
    jitter_ratio: float = 0.0,
    override_ms: int | None = None,
    rng: random.Random | None = None,
) -> int:
    """Return the wait before the next attempt, in milliseconds.

    Parameters
    ----------
    attempts:
        Attempts made so far, including the one that just failed (>= 1).
    base_delay_ms:
        Delay after the first failure.
    exponential:
        When ``True`` the delay doubles per attempt: ``base * 2**(attempts-1)``.
    jitter_ratio:
        Uniform jitter applied as ``delay * (1 ± jitter_ratio)``.
    override_ms:
        A server-dictated delay (``Retry-After``); wins over the computed one.
    """
    if override_ms is not None and override_ms > 0:
        return int(override_ms)

    exponent = max(attempts - 1, 0) if exponential else 0
    delay = base_delay_ms * (2**exponent)
    if jitter_ratio > 0:
        rng = rng or random
        delay = delay * (1 + rng.uniform(-jitter_ratio, jitter_ratio))
    return max(int(delay), 0)


def format_error_info(
    exc: BaseException,
    context: dict[str, Any] | None = None,
    category: ErrorCategory | None = None,
    max_length: int = MAX_ERROR_INFO_LENGTH,
) -> str:
    """Render *exc* as the JSON string stored in ``error_info`` columns.

    The result is always at most *max_length* characters.  When the full
    JSON would be longer, the message is shortened first so the result
    stays valid JSON; if even that does not fit, the string is cut hard.
    """
    if category is None:
        category = categorize(_build_haystack(exc)[0])

    payload: dict[str, Any] = {
        "type": type(exc).__name__,
        "message": str(exc),
        "category": category.value,
        "context": context or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    rendered = json.dumps(payload, default=str)
    if len(rendered) <= max_length:
        return rendered

    overflow = len(rendered) - max_length
    message = payload["message"]
    keep = max(len(message) - overflow - 3, 0)
    payload["message"] = message[:keep] + "..."
    rendered = json.dumps(payload, default=str)
    return rendered[:max_length]


def truncate_error_text(text: str | None, max_length: int = MAX_ERROR_INFO_LENGTH) -> str | None:
    if text is None:
        return None
    return text[:max_length]


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------

_URL = re.compile(r"\b[a-z][a-z0-9+.\-]*://\S+", re.IGNORECASE)
_NUMERIC = re.compile(r"^\d+$")


def _chain(exc: BaseException) -> list[BaseException]:
    """*exc* followed by its causes, each exception once."""
    chain: list[BaseException] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) and not isinstance(status, bool) else None


def _errno_symbol(exc: BaseException) -> str | None:
    err_no = getattr(exc, "errno", None)
    if isinstance(err_no, int) and err_no in errno_module.errorcode:
        return errno_module.errorcode[err_no]
    return None


def _listed(token: str) -> tuple[bool, str] | None:
    """Look *token* up in the pattern tables, permanent first."""
    needle = token.lower()
    for pattern in PERMANENT_ERROR_PATTERNS:
        if pattern.lower() == needle:
            return False, pattern
    for pattern in TRANSIENT_ERROR_PATTERNS:
        if pattern.lower() == needle:
            return True, pattern
    return None


def _structured_verdict(exc: BaseException) -> tuple[bool, str] | None:
    """Decide from status codes, errno and exception types alone."""
    chain = _chain(exc)

    for current in chain:
        status = _status_code(current)
        verdict = _listed(str(status)) if status is not None else None
        if verdict is not None:
            return verdict

    for current in chain:
        symbol = _errno_symbol(current)
        verdict = _listed(symbol) if symbol is not None else None
        if verdict is not None:
            return verdict

    for current in chain:
        if any(klass.__name__ in TRANSIENT_EXCEPTION_TYPES for klass in type(current).__mro__):
            return True, type(current).__name__

    return None


def _build_haystack(exc: BaseException) -> tuple[str, set[str]]:
    """Collect searchable text and exact code tokens from *exc* and its causes."""
    parts: list[str] = []
    codes: set[str] = set()

    for current in _chain(exc):
        parts.append(type(current).__name__)
        parts.append(_URL.sub(" ", str(current)))

        symbol = _errno_symbol(current)
        if symbol is not None:
            parts.append(symbol)
            codes.add(symbol.lower())

        for attr in ("code", "sqlite_errorname"):
            code = getattr(current, attr, None)
            if isinstance(code, (str, int)) and not isinstance(code, bool):
                parts.append(str(code))
                codes.add(str(code).lower())

        status = _status_code(current)
        if status is not None:
            codes.add(str(status))

    return " ".join(parts).lower(), codes


def _matches(pattern: str, text: str, codes: set[str]) -> bool:
    needle = pattern.lower()
    if needle in codes:
        return True
    if _NUMERIC.match(needle):
        return re.search(rf"(?<!\d){needle}(?!\d)", text) is not None
    return needle in text


def _retry_after_ms(exc: BaseException) -> int | None:
    """First server-dictated delay found along the cause chain."""
    for current in _chain(exc):
        delay = _own_retry_after_ms(current)
        if delay is not None:
            return delay
    return None


def _own_retry_after_ms(exc: BaseException) -> int | None:
    explicit = getattr(exc, "retry_after_ms", None)
    if isinstance(explicit, int) and explicit > 0:
        return explicit

    headers = getattr(exc, "headers", None)
    if headers is None:
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None)
    if not headers:
        return None
    raw = headers.get("retry-after") if hasattr(headers, "get") else None
    if raw is None:
        return None
    try:
        return int(float(raw) * 1000)
    except (TypeError, ValueError):
        return None
