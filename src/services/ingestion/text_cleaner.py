"""Whitespace and character cleanup for extracted text before chunking.

Text coming out of trafilatura or PyMuPDF carries non-breaking spaces,
zero-width characters, stray control bytes and ragged blank lines.  None
of that carries meaning for embeddings, and the chunking prompt works best
when paragraphs are separated by exactly one blank line.
"""

from __future__ import annotations

import re
import unicodedata

# NBSP, zero-width space/joiners, BOM
_INVISIBLE_SPACES = re.compile("[\u00a0\u200b\u200c\u200d\ufeff]")

# Lines that hold only spaces/tabs become empty lines.
_BLANK_LINE = re.compile(r"^[ \t]+$", re.MULTILINE)

# Collapse runs of horizontal whitespace on content lines.
_HORIZONTAL_SPACE = re.compile(r"[ \t]+")

# Trailing space before a newline.
_TRAILING_SPACE = re.compile(r" +\n")

# 3+ newlines -> paragraph break.
_MULTI_NEWLINE = re.compile(r"\n{3,}")

# C0/C1 control characters except tab and newline.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

# PDF extraction splits hyphenated words across lines: "inter-\nnational".
_HYPHEN_LINEBREAK = re.compile(r"(?<=[a-z])-\n(?=[a-z])")


def clean_text(text: str | None, join_hyphenated: bool = False) -> str:
    """Normalize *text* for chunking and embedding.

    Args:
        text: Raw extracted text; ``None`` and empty input yield ``""``.
        join_hyphenated: Re-join words hyphenated across line breaks
                         (useful for PDF text).

    Returns:
        NFC-normalized text with single spaces, paragraph breaks reduced to
        one blank line, and no control characters.
    """
    if not text:
        return ""

    cleaned = unicodedata.normalize("NFC", text)
    cleaned = cleaned.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = _INVISIBLE_SPACES.sub(" ", cleaned)
    if join_hyphenated:
        cleaned = _HYPHEN_LINEBREAK.sub("", cleaned)
    cleaned = _BLANK_LINE.sub("", cleaned)
    cleaned = _HORIZONTAL_SPACE.sub(" ", cleaned)
    cleaned = _TRAILING_SPACE.sub("\n", cleaned)
    cleaned = _MULTI_NEWLINE.sub("\n\n", cleaned)
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    return cleaned.strip()
