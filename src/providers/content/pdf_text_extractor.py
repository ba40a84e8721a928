"""PDF text extraction with PyMuPDF (fitz).

Text is read page by page and joined with blank lines.  Scanned PDFs
without a text layer yield empty pages; the PDF worker rejects documents
whose total extracted text is too short.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from src.interfaces.content_provider import IPdfTextExtractor
from src.models.content import ParsedContent
from src.utils.errors import ContentParseError

logger = structlog.get_logger(logger_name=__name__)


class PdfTextExtractor(IPdfTextExtractor):
    """Extracts text from PDFs on disk.  Parsing runs in a worker thread."""

    async def extract_text(self, file_path: Path) -> ParsedContent:
        return await asyncio.to_thread(self._extract, Path(file_path))

    def get_provider_name(self) -> str:
        return "pymupdf"

    def _extract(self, file_path: Path) -> ParsedContent:
        try:
            doc = fitz.open(str(file_path))
        except Exception as exc:
            logger.error("pdf_open_failed", file_path=str(file_path), error=str(exc))
            raise ContentParseError(
                message=f"Invalid file: cannot open {file_path.name} as PDF: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        pages: list[str] = []
        try:
            if not doc.is_pdf:
                raise ContentParseError(
                    message=f"Invalid file: {file_path.name} is not a PDF document",
                    provider_name=self.get_provider_name(),
                )
            title = (doc.metadata or {}).get("title") or ""
            for page in doc:
                text = page.get_text("text").strip()
                if text:
                    pages.append(text)
            page_count = len(doc)
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", file_path=str(file_path))

        text = "\n\n".join(pages)
        logger.info(
            "pdf_text_extracted",
            file_path=str(file_path),
            pages=page_count,
            pages_with_text=len(pages),
            chars=len(text),
        )
        return ParsedContent(title=title.strip(), text=text, length=len(text))
