from typing import Dict, List, Callable, Set
import asyncio
import logging
logger = logging.getLogger(__name__)

POLL_WAIT = "poll_wait"
UPLOAD_PROGRESS = "upload_progress"
OUTCOME = "outcome"


class EventEmitter:
    """Simple event emitter for checkout flow events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

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

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners; listener errors are logged, not raised."""
        if event_name not in self._listeners:
            return

        async with self._lock:
            for callback in self._listeners[event_name][:]:  # Copy list to avoid modification during iteration
                try:
                    if asyncio.iscoroutinefunction(callback):
                        await callback(*args, **kwargs)
                    else:
                        callback(*args, **kwargs)
                except Exception as e:
                    logger.error(f"Error in event listener for {event_name}: {e}")

    def emit_sync(self, event_name: str, *args, **kwargs):
        """
        Emit from synchronous code (e.g. progress callbacks).

        Plain listeners run immediately; coroutine listeners are scheduled
        on the running loop.
        """
        for callback in self._listeners.get(event_name, [])[:]:
            try:
                if asyncio.iscoroutinefunction(callback):
                    task = asyncio.get_running_loop().create_task(callback(*args, **kwargs))
                    self._pending.add(task)
                    task.add_done_callback(lambda t, name=event_name: self._task_done(name, t))
                else:
                    callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in event listener for {event_name}: {e}")

    def _task_done(self, event_name: str, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error in event listener for {event_name}: {exc}")

    async def drain(self):
        """Wait for coroutine listeners scheduled by emit_sync."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
