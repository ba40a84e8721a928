"""Per-job-type ingestion workers."""

from src.services.ingestion.workers.base_worker import BaseIngestionWorker
from src.services.ingestion.workers.pdf_worker import PdfIngestionWorker
from src.services.ingestion.workers.url_worker import UrlIngestionWorker

__all__ = ["BaseIngestionWorker", "PdfIngestionWorker", "UrlIngestionWorker"]
