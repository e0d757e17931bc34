"""Sequential work queue for everything that talks to GitHub or Discord.

Both APIs rate-limit the bot as a whole, not per guild, so guild work is
serialized: startup sweep, periodic ticks, guild joins and manual commands
all become jobs on one queue, drained by a single worker task. A command
issued in the middle of a tick simply runs after the job in progress.

Usage:
    queue = RefreshQueue()
    result = await queue.submit("refresh guild=1", lambda: registry_refresh(1))
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    name: str
    run: Callable[[], Awaitable[Any]]
    future: asyncio.Future[Any]


class RefreshQueue:
    """FIFO of async jobs, executed strictly one at a time."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[_Job] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker task in the running loop (no-op if already running)."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="issuebot-refresh-queue")

    def submit(self, name: str, run: Callable[[], Awaitable[Any]]) -> asyncio.Future[Any]:
        """Enqueue ``run`` and return a future for its result.

        The job is queued immediately, so submission order is execution order.
        The future raises whatever the job raised.
        """
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Job(name=name, run=run, future=future))
        self.start()
        return future

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def _drain(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job.future.cancelled():
                    logger.debug("refresh_queue_skip_cancelled job=%s", job.name)
                    continue
                logger.debug("refresh_queue_start job=%s pending=%d", job.name, self.pending)
                try:
                    result = await job.run()
                except asyncio.CancelledError:
                    job.future.cancel()
                    raise
                except Exception as exc:  # handed to the submitter via the future
                    if not job.future.done():
                        job.future.set_exception(exc)
                else:
                    if not job.future.done():
                        job.future.set_result(result)
            finally:
                self._queue.task_done()

    async def close(self) -> None:
        """Stop the worker and cancel any jobs still waiting."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        while not self._queue.empty():
            job = self._queue.get_nowait()
            job.future.cancel()
            self._queue.task_done()
