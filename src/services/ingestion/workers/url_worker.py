"""Worker for ``url`` jobs: fetch, extract, summarize, persist."""

from __future__ import annotations

import json
from collections.abc import Callable

import structlog

from src.interfaces.content_provider import IContentFetcher
from src.interfaces.job_store import IJobStore
from src.interfaces.object_store import IObjectStore
from src.models.content import ContentObject, ObjectStatus, ObjectType, ParsedContent
from src.models.job import IngestionJob, JobStatus, ProgressStage, UrlJobData, now_ms
from src.services.ingestion.summarizer import ObjectSummarizer
from src.services.ingestion.text_cleaner import clean_text
from src.services.ingestion.workers.base_worker import BaseIngestionWorker
from src.utils.errors import ContentParseError

logger = structlog.get_logger(logger_name=__name__)

# Objects in these states already hold (or are producing) usable output.
_DONE_STATUSES = frozenset({ObjectStatus.PARSED, ObjectStatus.EMBEDDING, ObjectStatus.EMBEDDED})


class UrlIngestionWorker(BaseIngestionWorker):
    """Ingests a web page into a ``webpage`` content object.

    Stages
    ------
    1. ``processing_source``  download the page.
    2. ``parsing_content``    extract readable text, clean it, create or
       update the object as ``fetched``.
    3. ``ai_processing``      document summary (falls back to a title-only
       summary when the model fails).
    4. ``persisting_data``    hand the job to chunking, then mark the
       object ``parsed``.

    A URL that already produced a parsed or embedded object completes the
    job immediately without fetching.
    """

    worker_name = "url_worker"

    def __init__(
        self,
        job_store: IJobStore,
        object_store: IObjectStore,
        fetcher: IContentFetcher,
        summarizer: ObjectSummarizer,
        cleaner: Callable[[str], str] = clean_text,
    ) -> None:
        super().__init__(job_store, object_store)
        self._fetcher = fetcher
        self._summarizer = summarizer
        self._clean = cleaner

    async def execute(self, job: IngestionJob) -> None:
        payload = job.typed_data()
        url = (payload.url if isinstance(payload, UrlJobData) and payload.url else None) or (
            job.source_identifier
        )
        hint_title = payload.title if isinstance(payload, UrlJobData) else None

        existing = await self._objects.get_by_source_uri(url)
        if existing is not None and existing.status in _DONE_STATUSES:
            logger.info(
                "url_already_ingested",
                job_id=job.id,
                object_id=existing.id,
                status=existing.status.value,
            )
            await self._jobs.mark_as_completed(job.id, related_object_id=existing.id)
            return

        async with self.stage(
            job, JobStatus.PROCESSING_SOURCE, ProgressStage.FETCHING, 10.0, f"Fetching {url}"
        ):
            html = await self._fetcher.fetch_html(url)

        async with self.stage(
            job, JobStatus.PARSING_CONTENT, ProgressStage.PARSING, 30.0, "Extracting content"
        ):
            parsed = self._fetcher.parse(html, url)
            cleaned = self._clean(parsed.text) if parsed is not None else ""
            if parsed is None or not cleaned:
                raise ContentParseError(
                    message=f"No readable content extracted from {url}",
                    provider_name=self._fetcher.get_provider_name(),
                )
            title = parsed.title or hint_title or url
            obj = await self._save_fetched(existing, url, title, cleaned, parsed)
            await self._jobs.update(job.id, related_object_id=obj.id)

        async with self.stage(
            job, JobStatus.AI_PROCESSING, ProgressStage.SUMMARIZING, 55.0, "Summarizing"
        ):
            summary = await self._summarizer.summarize_or_fallback(cleaned, title, object_id=obj.id)

        async with self.stage(
            job, JobStatus.PERSISTING_DATA, ProgressStage.PERSISTING, 80.0, "Saving"
        ):
            await self.hand_off_to_chunking(job.id, obj.id)
            await self._objects.update(
                obj.id,
                status=ObjectStatus.PARSED,
                title=summary.title or title,
                parsed_at=now_ms(),
                summary=summary.summary,
                tags_json=json.dumps(summary.tags),
                propositions_json=json.dumps(summary.grouped_propositions()),
                error_info=None,
            )

        logger.info("url_ingested", job_id=job.id, object_id=obj.id, chars=len(cleaned))

    async def _save_fetched(
        self,
        existing: ContentObject | None,
        url: str,
        title: str,
        cleaned: str,
        parsed: ParsedContent,
    ) -> ContentObject:
        fields = {
            "status": ObjectStatus.FETCHED,
            "title": title,
            "cleaned_text": cleaned,
            "parsed_content_json": parsed.model_dump_json(),
            "error_info": None,
        }
        if existing is not None:
            await self._objects.update(existing.id, **fields)
            return existing
        return await self._objects.create(ObjectType.WEBPAGE, url, **fields)
