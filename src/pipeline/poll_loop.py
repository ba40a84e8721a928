"""Non-reentrant periodic ticker for the dispatcher and chunking loops.

# ─── HOW THE POLL LOOP WORKS ──────────────────────────────────────────
#
#   start() ──→ one background task ──→ tick() every interval
#                     ▲                      │
#   wake()  ──────────┘ (skip the wait)      ▼
#   stop()  ──→ stop event ──→ loop exits after the current tick
#
#   - A tick that is requested while another tick is still running is
#     skipped, never queued.  run_once() returns False in that case.
#   - A tick that raises is logged and the loop keeps going.
#   - stop() only stops scheduling.  Work that a tick spawned (dispatched
#     jobs) is owned by the caller and keeps running.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(logger_name=__name__)


class PollLoop:
    """Runs an async *tick* callable on a fixed interval, one at a time.

    Parameters
    ----------
    name:
        Label used in log events (``"job_queue"``, ``"chunking"``).
    tick:
        Zero-argument coroutine function executed each cycle.
    interval_ms:
        Delay between the end of one tick and the start of the next.
    """

    def __init__(
        self,
        name: str,
        tick: Callable[[], Awaitable[Any]],
        interval_ms: int,
    ) -> None:
        self._name = name
        self._tick = tick
        self._interval_s = max(interval_ms, 1) / 1000
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_ticking(self) -> bool:
        return self._lock.locked()

    def start(self) -> None:
        """Start the background task.  Calling it again while running is a no-op."""
        if self.is_running:
            logger.debug("poll_loop_already_running", loop=self._name)
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"poll-loop:{self._name}")
        logger.info("poll_loop_started", loop=self._name, interval_s=self._interval_s)

    async def stop(self) -> None:
        """Stop scheduling ticks and wait for the current one to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        self._wake_event.set()
        task, self._task = self._task, None
        await task
        logger.info("poll_loop_stopped", loop=self._name)

    def wake(self) -> None:
        """Run the next tick now instead of waiting out the interval."""
        self._wake_event.set()

    async def run_once(self) -> bool:
        """Execute one tick unless one is already in progress.

        Returns
        -------
        bool
            ``True`` if the tick ran, ``False`` if it was skipped.
        """
        if self._lock.locked():
            logger.debug("poll_tick_skipped_busy", loop=self._name)
            return False
        async with self._lock:
            await self._tick()
        return True

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            self._wake_event.clear()
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("poll_tick_failed", loop=self._name, error=str(exc), exc_info=True)

            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=self._interval_s)
            except asyncio.TimeoutError:
                pass
