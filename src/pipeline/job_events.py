"""Job lifecycle event bus with callback-based subscriber notification.

The dispatcher publishes one :class:`~src.models.job.JobEvent` per
lifecycle transition (created, started, completed, retry, failed,
cancelled, and ``worker:completed`` when a worker hands an object over to
chunking).  Subscribers (CLI progress output, metrics, tests) register a
callback and receive every event, or only the events they asked for.

# ─── Observer pattern ─────────────────────────────────────────────────
#
#   JobQueue ──publish()──→ JobEventBus ──callback()──→ subscriber A
#                                       ──callback()──→ subscriber B
#
#   - Both sync and async callbacks are supported.
#   - A subscriber that raises is logged and skipped; publishing never
#     fails because of a subscriber.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.models.job import JobEvent, now_ms
from src.utils.logging import get_logger


@dataclass(frozen=True)
class JobEventMessage:
    """One published lifecycle event."""

    event: JobEvent
    job_id: str
    timestamp: int = field(default_factory=now_ms)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(eq=False)
class _Subscription:
    callback: Callable
    events: frozenset[JobEvent] | None


class JobEventBus:
    """Broadcasts job lifecycle events to registered callbacks."""

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []
        self._logger: structlog.BoundLogger = get_logger(__name__)

    def subscribe(
        self,
        callback: Callable,
        events: list[JobEvent] | None = None,
    ) -> Callable[[], None]:
        """Register *callback* for *events* (all events when ``None``).

        Parameters
        ----------
        callback:
            A sync or async callable accepting one :class:`JobEventMessage`.
        events:
            Optional filter.

        Returns
        -------
        Callable[[], None]
            Call it to unsubscribe.
        """
        subscription = _Subscription(
            callback=callback,
            events=frozenset(events) if events is not None else None,
        )
        self._subscriptions.append(subscription)

        def _unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: JobEvent, job_id: str, **data: Any) -> JobEventMessage:
        """Deliver an event to every matching subscriber, in registration order."""
        message = JobEventMessage(event=event, job_id=job_id, data=data)
        self._logger.debug("job_event", job_event=event.value, job_id=job_id)

        for subscription in list(self._subscriptions):
            if subscription.events is not None and event not in subscription.events:
                continue
            try:
                result = subscription.callback(message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "job_event_subscriber_error",
                    job_event=event.value,
                    job_id=job_id,
                    error=str(exc),
                    callback=getattr(
                        subscription.callback, "__name__", repr(subscription.callback)
                    ),
                )
        return message
