"""Web page fetcher using httpx and trafilatura.

Fetches HTML via httpx and extracts the main readable text with
trafilatura's content extraction engine, stripping navigation, ads and
boilerplate.
"""

from __future__ import annotations

import json

import httpx
import structlog
import trafilatura

from src.interfaces.content_provider import IContentFetcher
from src.models.content import ParsedContent
from src.utils.errors import ContentFetchError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_TIMEOUT = 30.0
_DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; strata-ingest/0.1)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


def _retry_after_ms(response: httpx.Response) -> int | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(int(float(value) * 1000), 0)
    except ValueError:
        # HTTP-date form; let the dispatcher's backoff decide.
        return None


class WebPageFetcher(IContentFetcher):
    """Page download backed by httpx, extraction backed by trafilatura."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=_DEFAULT_HEADERS,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # IContentFetcher implementation
    # ------------------------------------------------------------------

    async def fetch_html(self, url: str) -> str:
        """GET *url* and return the body text."""
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("page_fetch_timeout", url=url, error_type=type(exc).__name__)
            raise ContentFetchError(
                message=f"Timeout fetching page ({type(exc).__name__})",
                provider_name=self.get_provider_name(),
                url=url,
            ) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("page_fetch_http_error", url=url, status=status)
            raise ContentFetchError(
                message=f"HTTP {status} fetching page",
                provider_name=self.get_provider_name(),
                status_code=status,
                retry_after_ms=_retry_after_ms(exc.response),
                url=url,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("page_fetch_failed", url=url, error_type=type(exc).__name__)
            raise ContentFetchError(
                message=f"HTTP error fetching page ({type(exc).__name__})",
                provider_name=self.get_provider_name(),
                url=url,
            ) from exc

        logger.debug(
            "page_fetched", url=url, status=response.status_code, bytes=len(response.content)
        )
        return response.text

    def parse(self, html: str, url: str) -> ParsedContent | None:
        """Extract main text and metadata from *html*."""
        text = trafilatura.extract(html, include_comments=False, include_tables=True)
        if not text:
            logger.warning("trafilatura_extraction_empty", url=url)
            return None

        metadata = trafilatura.extract(
            html,
            include_comments=False,
            output_format="json",
            with_metadata=True,
        )
        title = ""
        byline: str | None = None
        if metadata:
            try:
                meta_dict = json.loads(metadata)
                title = meta_dict.get("title") or ""
                byline = meta_dict.get("author") or None
            except (json.JSONDecodeError, AttributeError):
                logger.debug("metadata_parse_failed", url=url)

        logger.info("page_extracted", url=url, title=title, text_length=len(text))
        return ParsedContent(
            title=title,
            text=text,
            byline=byline,
            length=len(text),
            source_url=url,
        )

    def get_provider_name(self) -> str:
        return "web_page_fetcher"
