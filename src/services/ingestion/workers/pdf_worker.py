"""Worker for ``pdf`` jobs.

The job's ``source_identifier`` is the path of an uploaded file.  The
worker validates it, stores a content-addressed copy under the managed
storage directory (``{sha256}.pdf``), extracts and cleans the text,
summarizes it and leaves a ``parsed`` object for the chunking
coordinator.
"""

from __future__ import annotations

import asyncio
import errno
import hashlib
import json
import os
import shutil
from pathlib import Path

import structlog

from src.interfaces.content_provider import IPdfTextExtractor
from src.interfaces.job_store import IJobStore
from src.interfaces.object_store import IObjectStore
from src.models.content import FAILED_OBJECT_STATUSES, ContentObject, ObjectStatus, ObjectType
from src.models.job import IngestionJob, JobStatus, PdfJobData, ProgressStage, now_ms
from src.services.ingestion.summarizer import ObjectSummarizer
from src.services.ingestion.text_cleaner import clean_text
from src.services.ingestion.workers.base_worker import BaseIngestionWorker
from src.utils.errors import ContentParseError

logger = structlog.get_logger(logger_name=__name__)

MIN_EXTRACTED_CHARS = 50
_HASH_BLOCK_SIZE = 1024 * 1024


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(_HASH_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


class PdfIngestionWorker(BaseIngestionWorker):
    """Ingests an uploaded PDF into a ``pdf_document`` content object.

    Parameters
    ----------
    job_store, object_store:
        Persistence.
    extractor:
        Text extraction backend (PyMuPDF in production).
    summarizer:
        Document summary generator.
    storage_dir:
        Managed directory that receives the content-addressed copy.
    max_file_size_mb:
        Larger files fail permanently.
    """

    worker_name = "pdf_worker"

    def __init__(
        self,
        job_store: IJobStore,
        object_store: IObjectStore,
        extractor: IPdfTextExtractor,
        summarizer: ObjectSummarizer,
        storage_dir: str | Path,
        max_file_size_mb: int = 50,
    ) -> None:
        super().__init__(job_store, object_store)
        self._extractor = extractor
        self._summarizer = summarizer
        self._storage_dir = Path(storage_dir)
        self._max_bytes = max_file_size_mb * 1024 * 1024

    async def execute(self, job: IngestionJob) -> None:
        source = Path(job.source_identifier)
        payload = job.typed_data()
        file_name = job.original_file_name or (
            payload.file_name if isinstance(payload, PdfJobData) else None
        ) or source.name

        async with self.stage(
            job, JobStatus.PROCESSING_SOURCE, ProgressStage.PROCESSING, 5.0, "Validating file"
        ):
            file_size = self._validate(source)
            file_hash = await asyncio.to_thread(sha256_file, source)

        existing = await self._objects.find_by_file_hash(file_hash)
        if existing is not None and existing.status not in FAILED_OBJECT_STATUSES | {
            ObjectStatus.NEW,
            ObjectStatus.FETCHED,
        }:
            logger.info(
                "pdf_already_ingested",
                job_id=job.id,
                object_id=existing.id,
                status=existing.status.value,
            )
            await self._jobs.mark_as_completed(job.id, related_object_id=existing.id)
            return

        stored_path = self._storage_dir / f"{file_hash}.pdf"
        copied_here = False
        persisted = False
        try:
            async with self.stage(
                job, JobStatus.PROCESSING_SOURCE, ProgressStage.PROCESSING, 15.0, "Storing file"
            ):
                copied_here = await asyncio.to_thread(self._store_copy, source, stored_path)

            async with self.stage(
                job, JobStatus.PARSING_CONTENT, ProgressStage.PARSING, 30.0, "Extracting text"
            ):
                parsed = await self._extractor.extract_text(stored_path)
                cleaned = clean_text(parsed.text, join_hyphenated=True)
                if len(cleaned) < MIN_EXTRACTED_CHARS:
                    raise ContentParseError(
                        message=(
                            f"Invalid file content: only {len(cleaned)} characters of text "
                            f"extracted from {file_name}"
                        ),
                        provider_name=self._extractor.get_provider_name(),
                    )
            title = parsed.title or Path(file_name).stem

            async with self.stage(
                job, JobStatus.AI_PROCESSING, ProgressStage.SUMMARIZING, 55.0, "Summarizing"
            ):
                summary = await self._summarizer.summarize_or_fallback(
                    cleaned, title, object_id=existing.id if existing else None
                )

            async with self.stage(
                job, JobStatus.PERSISTING_DATA, ProgressStage.PERSISTING, 80.0, "Saving"
            ):
                obj = await self._save(
                    existing,
                    stored_path,
                    status=ObjectStatus.FETCHED,
                    title=summary.title or title,
                    cleaned_text=cleaned,
                    file_hash=file_hash,
                    original_file_name=file_name,
                    file_size_bytes=file_size,
                    internal_file_path=str(stored_path),
                    error_info=None,
                )
                persisted = True
                await self.hand_off_to_chunking(job.id, obj.id)
                await self._objects.update(
                    obj.id,
                    status=ObjectStatus.PARSED,
                    parsed_at=now_ms(),
                    summary=summary.summary,
                    tags_json=json.dumps(summary.tags),
                    propositions_json=json.dumps(summary.grouped_propositions()),
                )
        finally:
            # A copy nothing points at yet is garbage.
            if copied_here and not persisted:
                self._remove_copy(stored_path)

        logger.info(
            "pdf_ingested",
            job_id=job.id,
            object_id=obj.id,
            file_name=file_name,
            bytes=file_size,
            chars=len(cleaned),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, source: Path) -> int:
        if not source.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(source))
        if source.suffix.lower() != ".pdf":
            raise ContentParseError(message=f"Invalid file type: {source.name} is not a .pdf")
        size = source.stat().st_size
        if size > self._max_bytes:
            raise ContentParseError(
                message=(
                    f"Invalid file size: {source.name} is {size} bytes, "
                    f"limit is {self._max_bytes} bytes"
                )
            )
        return size

    def _store_copy(self, source: Path, target: Path) -> bool:
        """Copy *source* to *target*.  Returns ``False`` if it was already there."""
        if target.exists():
            return False
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
        return True

    @staticmethod
    def _remove_copy(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
            logger.info("pdf_copy_removed", path=str(path))
        except OSError as exc:
            logger.warning("pdf_copy_remove_failed", path=str(path), error=str(exc))

    async def _save(
        self,
        existing: ContentObject | None,
        stored_path: Path,
        **fields: object,
    ) -> ContentObject:
        if existing is not None:
            await self._objects.update(existing.id, source_uri=str(stored_path), **fields)
            return existing
        return await self._objects.create(ObjectType.PDF_DOCUMENT, str(stored_path), **fields)
