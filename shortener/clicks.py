"""Fire-and-forget click dispatch through a bounded asyncio worker pool.

Redirects hand click increments to this dispatcher and return immediately.
Workers live for the lifetime of the application, not the request, so a
client disconnect never cancels an in-flight increment.

Flow Diagram — dispatch()
=========================
::
    ┌─────────────┐        ┌──────────────────┐
    │ redirect    │──put──▶│ asyncio.Queue     │
    │ handler     │ nowait │ (CLICK_QUEUE_SIZE)│
    └─────────────┘        └────────┬─────────┘
       FULL? drop + count           │ get
                                    ▼
                           ┌──────────────────┐
                           │ N worker tasks    │
                           │ handler(code, …)  │
                           └──────────────────┘

Key Behaviours
===============
- dispatch() never awaits; a full queue drops the click (undercount, never block).
- Handler exceptions are logged and absorbed; the worker keeps running.
- stop() waits for queued clicks to drain (bounded) before cancelling workers.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

from prometheus_client import Counter, Gauge

from shortener.enums import ClickPath

__all__ = ["ClickDispatcher", "ClickSource", "CLICK_INCREMENTS_TOTAL"]

logger = logging.getLogger(__name__)

CLICK_INCREMENTS_TOTAL = Counter(
    "url_shortener_click_increments_total",
    "Click increments by the path that absorbed them",
    ["path"],
)
CLICK_QUEUE_DEPTH = Gauge(
    "url_shortener_click_queue_depth",
    "Click increments waiting for a worker",
)


@dataclass(frozen=True)
class ClickSource:
    """Who followed a link; stored with clicks that reach the database directly."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    referer: Optional[str] = None


class ClickDispatcher:
    """Bounded queue + worker pool running ``handler(code, source)`` per click."""

    def __init__(
        self,
        handler: Callable[[str, Optional[ClickSource]], Awaitable[object]],
        queue_size: int = 10000,
        worker_count: int = 4,
    ):
        assert worker_count > 0, f"worker_count must be positive, got {worker_count!r}"
        self._handler = handler
        self._queue: asyncio.Queue[tuple[str, Optional[ClickSource]]] = asyncio.Queue(maxsize=queue_size)
        self._worker_count = worker_count
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"click-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info(f"Click dispatcher started with {self._worker_count} workers")

    def dispatch(self, code: str, source: Optional[ClickSource] = None) -> bool:
        """Queue one click for ``code``; returns False when the click was dropped."""
        try:
            self._queue.put_nowait((code, source))
        except asyncio.QueueFull:
            CLICK_INCREMENTS_TOTAL.labels(path=ClickPath.DROPPED).inc()
            logger.warning(f"Click queue full, dropping click for {code}")
            return False
        CLICK_QUEUE_DEPTH.set(self._queue.qsize())
        return True

    async def drain(self) -> None:
        """Wait until every queued click has been handled."""
        await self._queue.join()

    async def stop(self, timeout: Optional[float] = 5.0) -> None:
        if not self._workers:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except TimeoutError:
            logger.warning(f"Click dispatcher stopped with {self._queue.qsize()} clicks still queued")

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Click dispatcher stopped")

    async def _worker(self, index: int) -> None:
        while True:
            code, source = await self._queue.get()
            try:
                await self._handler(code, source)
            except Exception as exc:
                logger.error(f"Click worker {index} failed for {code}: {exc}")
            finally:
                self._queue.task_done()
                CLICK_QUEUE_DEPTH.set(self._queue.qsize())
