"""Source content adapters.

    - WebPageFetcher  : httpx download + trafilatura main-text extraction
    - PdfTextExtractor: PyMuPDF page text extraction
"""

from src.providers.content.pdf_text_extractor import PdfTextExtractor
from src.providers.content.web_page_fetcher import WebPageFetcher

__all__ = ["PdfTextExtractor", "WebPageFetcher"]
