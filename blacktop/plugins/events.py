"""Minimal event emitter used for plugin lifecycle events and per-plugin channels."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Named-event emitter with on/off/once/emit semantics.

    Listeners may be plain callables or coroutine functions. Coroutine results are
    scheduled on the running loop; a failing listener is logged and does not stop
    the remaining listeners.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._tasks: set = set()

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def once(self, event: str, listener: Listener) -> None:
        def _wrapper(*args, **kwargs):
            self.off(event, _wrapper)
            return listener(*args, **kwargs)

        _wrapper.__wrapped__ = listener
        self.on(event, _wrapper)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for registered in list(listeners):
            if registered is listener or getattr(registered, "__wrapped__", None) is listener:
                listeners.remove(registered)
                break
        if not listeners:
            del self._listeners[event]

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of ``event``.

        Returns:
            True if the event had listeners
        """
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                logger.error(f"Error in listener for event '{event}': {e}")
        return bool(listeners)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def event_names(self) -> List[str]:
        return list(self._listeners.keys())

    def remove_all_listeners(self, event: str = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def _schedule(self, event: str, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop running: drive the coroutine to completion here
            try:
                asyncio.run(_await(awaitable))
            except Exception as e:
                logger.error(f"Error in async listener for event '{event}': {e}")
            return

        task = loop.create_task(_await(awaitable))
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Error in async listener for event '{event}': {t.exception()}")

        task.add_done_callback(_done)


async def _await(awaitable):
    return await awaitable
