"""Serialized work queue: one asyncio worker consuming a FIFO queue."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class SerialWorkQueue:
    """Processes queued items strictly one at a time, in enqueue order.

    Items pushed with ``push_later`` join the tail of the queue once their
    delay has elapsed, so they may be reordered relative to items pushed in
    the meantime.
    """

    def __init__(self, name: str, handler: Callable[[Any], Awaitable[None]]):
        self.name = name
        self.handler = handler
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._timers: Set[asyncio.TimerHandle] = set()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def __len__(self) -> int:
        return self._queue.qsize()

    def push(self, item: Any) -> None:
        """Append an item to the queue."""
        self._queue.put_nowait(item)
        logger.debug(f"[{self.name}] queued item, {self._queue.qsize()} waiting")

    def push_later(self, delay: float, item: Any) -> asyncio.TimerHandle:
        """Append an item to the queue after ``delay`` seconds."""
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def fire():
            self._timers.discard(handle)
            self.push(item)

        handle = loop.call_later(max(0.0, delay), fire)
        self._timers.add(handle)
        return handle

    def cancel_timer(self, handle: Optional[asyncio.TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()
            self._timers.discard(handle)

    def start(self) -> None:
        """Start the worker task on the running loop."""
        if self.running:
            logger.warning(f"[{self.name}] worker already running")
            return
        self._worker = asyncio.create_task(self._run(), name=f"{self.name}-worker")
        logger.info(f"[{self.name}] worker started")

    async def stop(self) -> None:
        """Stop the worker and drop pending delayed items."""
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()

        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            logger.info(f"[{self.name}] worker stopped")

    async def join(self) -> None:
        """Wait until every queued item has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self.handler(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[{self.name}] unhandled error while processing item: {e}", exc_info=True)
            finally:
                self._queue.task_done()
