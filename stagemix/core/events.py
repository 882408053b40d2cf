"""Named-event subscription used by the client, watchdog, and service."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

LOGGER = logging.getLogger(__name__)

CONNECTED = "connected"
DISCONNECTED = "disconnected"
ERROR = "error"
TELEMETRY = "telemetry"
STATE_CHANGE = "stateChange"
ATTEMPT = "attempt"
RECONNECTED = "reconnected"
FAILED = "failed"

Handler = Callable[..., Any]


class EventEmitter:
    """Delivers each emitted event to every handler subscribed at emit time.

    Handlers may be plain callables or coroutine functions; coroutines are
    scheduled on the running loop. A failing handler is logged and does not
    stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, handler: Handler) -> Handler:
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def handlers(self, event: str) -> tuple[Handler, ...]:
        return tuple(self._handlers.get(event, ()))

    def clear(self) -> None:
        self._handlers.clear()

    def emit(self, event: str, *args: Any) -> None:
        for handler in self.handlers(event):
            try:
                result = handler(*args)
            except Exception:
                LOGGER.exception("Handler for '%s' event failed", event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("Async event handler failed", exc_info=task.exception())
