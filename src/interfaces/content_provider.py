"""Abstract base classes for source-content adapters.

Workers never talk to httpx, trafilatura or PyMuPDF directly; they go
through these two seams so tests can inject fakes and so the extraction
libraries can be swapped without touching the job protocol.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from src.models.content import ParsedContent


# Concrete implementation: WebPageFetcher (src/providers/content/)
class IContentFetcher(ABC):
    """Fetches a web page and extracts its readable content."""

    @abstractmethod
    async def fetch_html(self, url: str) -> str:
        """Download *url* and return the response body.

        Raises
        ------
        src.utils.errors.ContentFetchError
            On transport errors or non-2xx responses; ``status_code`` is set
            for the latter so the classifier can tell 404 from 503.
        """

    @abstractmethod
    def parse(self, html: str, url: str) -> ParsedContent | None:
        """Extract title and main text from *html*.

        Returns ``None`` when the page has no readable body.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this fetcher."""


# Concrete implementation: PdfTextExtractor (src/providers/content/)
class IPdfTextExtractor(ABC):
    """Extracts plain text from a PDF file on disk."""

    @abstractmethod
    async def extract_text(self, file_path: Path) -> ParsedContent:
        """Return the document's text and title.

        Raises
        ------
        src.utils.errors.ContentParseError
            If the file cannot be opened or is not a PDF.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this extractor."""
