"""Output batching.

Buffers small output chunks and hands them to a flush callback either on a
fixed interval or as soon as the buffer reaches its size threshold. Only one
delivery runs at a time; content that becomes due while a delivery is in
flight is queued and delivered right after it, in append order.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union


logger = logging.getLogger(__name__)

FlushCallback = Callable[[str], Union[None, Awaitable[None]]]

DEFAULT_FLUSH_INTERVAL = 1.5
DEFAULT_MAX_BUFFER_SIZE = 1500


class StreamBuffer:
    """Time and size bounded batching of text chunks."""

    def __init__(
        self,
        on_flush: FlushCallback,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
    ) -> None:
        """Initialize the buffer.

        Args:
            on_flush: Receives each batch; may be a plain or a coroutine function.
            flush_interval: Seconds between timed flushes.
            max_buffer_size: Character count that forces an immediate flush.
        """
        self.on_flush = on_flush
        self.flush_interval = flush_interval
        self.max_buffer_size = max_buffer_size

        self._buffer = ''
        self._pending = ''
        self._timer: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    def is_running(self) -> bool:
        return self._timer is not None

    def is_flushing(self) -> bool:
        return self._flush_task is not None

    def start(self) -> None:
        """Start the interval timer; calling it twice is a no-op."""
        if self._timer is not None:
            return
        self._timer = asyncio.create_task(self._run_timer())

    async def stop(self) -> None:
        """Cancel the timer and deliver whatever is still buffered."""
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        await self.flush()

    def append(self, chunk: str) -> None:
        self._buffer += chunk
        if len(self._buffer) >= self.max_buffer_size:
            self._begin_flush()

    async def flush(self) -> None:
        """Deliver the buffer and wait until every queued batch is delivered."""
        task = self._begin_flush()
        if task is not None:
            await asyncio.shield(task)

    def clear(self) -> None:
        """Drop buffered and queued content without delivering it."""
        self._buffer = ''
        self._pending = ''

    def _begin_flush(self) -> Optional[asyncio.Task]:
        if not self._buffer:
            return self._flush_task

        content, self._buffer = self._buffer, ''
        if self._flush_task is not None:
            self._pending += content
            return self._flush_task

        self._flush_task = asyncio.ensure_future(self._deliver(content))
        return self._flush_task

    async def _deliver(self, content: str) -> None:
        try:
            while content:
                try:
                    result = self.on_flush(content)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("Flush callback failed, dropping %d characters", len(content))
                content, self._pending = self._pending, ''
        finally:
            self._flush_task = None

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            self._begin_flush()
