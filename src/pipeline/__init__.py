"""Scheduling and notification primitives shared by the ingestion loops."""

from src.pipeline.job_events import JobEventBus, JobEventMessage
from src.pipeline.poll_loop import PollLoop

__all__ = [
    "JobEventBus",
    "JobEventMessage",
    "PollLoop",
]
