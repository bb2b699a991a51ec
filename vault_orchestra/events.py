"""Typed event channels.

Each component exposes one ``EventChannel`` per event kind instead of a
string-keyed listener registry. Subscribing returns an unsubscribe callable
so owners can detach their handlers on teardown.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Generic, List, Set, TypeVar


logger = logging.getLogger(__name__)

Handler = TypeVar('Handler', bound=Callable[..., Any])


class EventChannel(Generic[Handler]):
    """A list of handlers for one kind of event.

    Handlers may be plain functions or coroutine functions. Plain handlers run
    inline; coroutines are scheduled on the running loop. Every emission reaches
    each subscribed handler at most once, and a failing handler is logged
    without affecting the emitter or the other handlers.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: List[Handler] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler.

        Args:
            handler: Callable receiving the event arguments.

        Returns:
            Callable that removes the handler again; calling it twice is safe.
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def clear(self) -> None:
        self._handlers.clear()

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def emit(self, *args: Any) -> None:
        """Deliver an event to the handlers subscribed right now."""
        for handler in list(self._handlers):
            try:
                result = handler(*args)
            except Exception:
                logger.exception("Handler for %s event failed", self.name)
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_handler_done)

    async def drain(self) -> None:
        """Wait until every scheduled coroutine handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Handler for %s event failed: %s", self.name, error, exc_info=error)
