from typing import Callable, Dict, List
import asyncio
import inspect
import logging
logger = logging.getLogger(__name__)


class EventEmitter:
    """Simple event emitter for batch events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._pending: List[asyncio.Task] = []

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._listeners.get(event_name))

    def emit_nowait(self, event_name: str, *args, **kwargs):
        """
        Emit without suspending the caller.

        Plain listeners run inline; coroutine listeners are scheduled as tasks.
        """
        if event_name not in self._listeners:
            return

        for callback in self._listeners[event_name][:]:
            try:
                result = callback(*args, **kwargs)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.append(task)
                    task.add_done_callback(self._on_listener_done)
            except Exception as e:
                logger.error(f"Error in event listener for {event_name}: {e}", exc_info=True)

    def _on_listener_done(self, task: asyncio.Task):
        if task in self._pending:
            self._pending.remove(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error in async event listener: {exc}")

    async def drain(self):
        """Wait for scheduled coroutine listeners to finish."""
        while self._pending:
            await asyncio.gather(*self._pending[:], return_exceptions=True)
