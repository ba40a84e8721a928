"""Durable ingestion pipeline.

Two independent loops share the SQLite tables:

1. **Dispatch** (job_queue.py / IngestionQueueService) -- polls
   ``ingestion_jobs`` for eligible work, runs the worker registered for
   each job type, and turns failures into scheduled retries or terminal
   failures using the error classifier.

2. **Work** (workers/) -- per-type workers fetch or read the source,
   clean the text (text_cleaner.py), summarize it (summarizer.py) and
   leave a ``parsed`` content object, handing the job over in
   ``vectorizing``.

3. **Chunk + embed** (chunking_service.py / ChunkingService) -- claims
   one ``parsed`` object per tick, has the LLM agent split it
   (chunking_agent.py), writes chunks to SQL and vectors to the vector
   store, then settles the object and its job.

maintenance.py holds the operator recovery actions.
"""

from src.services.ingestion.chunking_agent import ChunkingAgent
from src.services.ingestion.chunking_service import ChunkingConfig, ChunkingOutcome, ChunkingService
from src.services.ingestion.job_queue import IngestionQueueService, QueueConfig
from src.services.ingestion.maintenance import IngestionMaintenance
from src.services.ingestion.summarizer import ObjectSummarizer

__all__ = [
    "ChunkingAgent",
    "ChunkingConfig",
    "ChunkingOutcome",
    "ChunkingService",
    "IngestionMaintenance",
    "IngestionQueueService",
    "ObjectSummarizer",
    "QueueConfig",
]
