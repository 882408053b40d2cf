"""Reconnect watchdog: retries a lost console connection with exponential backoff.

States::

    idle -> watching -> connecting -> connected
                 ^            |
                 +------------+   (attempt failed, backoff doubled)

``stopped`` is reachable from every state through ``stop()``. Backoff starts at
30s, doubles after each failed attempt up to 300s, and returns to 30s only when
a connection is confirmed through ``on_connected()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from stagemix.core.events import ATTEMPT, FAILED, RECONNECTED, STATE_CHANGE, EventEmitter
from stagemix.core.model import WatchdogState, WatchdogStatus

LOGGER = logging.getLogger(__name__)

BASE_INTERVAL_S = 30.0
MAX_INTERVAL_S = 300.0
BACKOFF_MULTIPLIER = 2


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class ReconnectWatchdog:
    def __init__(
        self,
        *,
        base_interval_s: float = BASE_INTERVAL_S,
        max_interval_s: float = MAX_INTERVAL_S,
        call_later: CallLater | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_interval_s = base_interval_s
        self.max_interval_s = max_interval_s
        self.events = EventEmitter()
        self._call_later = call_later or _loop_call_later
        self._clock = clock

        self._state: WatchdogState = "idle"
        self._attempts = 0
        self._last_attempt_at: datetime | None = None
        self._next_attempt_at: datetime | None = None
        self._last_error: str | None = None
        self._interval_s = base_interval_s
        self._timer: TimerHandle | None = None
        self._stopped = False
        self._attempt_task: asyncio.Task[None] | None = None

        self._reconnect: Callable[[], Awaitable[bool]] | None = None
        self._is_connected: Callable[[], bool] | None = None

    @property
    def state(self) -> WatchdogState:
        return self._state

    @property
    def is_configured(self) -> bool:
        return self._reconnect is not None and self._is_connected is not None

    def configure(
        self,
        *,
        reconnect: Callable[[], Awaitable[bool]],
        is_connected: Callable[[], bool],
    ) -> None:
        self._reconnect = reconnect
        self._is_connected = is_connected

    def start(self) -> None:
        if self._state in ("watching", "connecting"):
            return
        if not self.is_configured:
            LOGGER.warning("Watchdog not configured; call configure() before start()")
            return

        self._stopped = False
        self._interval_s = self.base_interval_s
        self._set_state("watching")
        self._schedule_next()
        LOGGER.info("Watchdog started; retrying every %.0fs", self.base_interval_s)

    def stop(self) -> None:
        self._stopped = True
        self._cancel_timer()
        self._next_attempt_at = None
        self._set_state("stopped")
        LOGGER.info("Watchdog stopped")

    def on_connected(self) -> None:
        self._stopped = False
        self._cancel_timer()
        self._attempts = 0
        self._interval_s = self.base_interval_s
        self._next_attempt_at = None
        self._last_error = None
        self._set_state("connected")
        LOGGER.info("Connection confirmed; watchdog backoff reset")

    def on_disconnected(self, reason: str | None = None) -> None:
        if self._stopped:
            return
        # "watching" without a pending timer is the post-reconnect monitoring state.
        monitoring = (
            self._state == "watching"
            and self._timer is None
            and (self._attempt_task is None or self._attempt_task.done())
        )
        if self._state not in ("connected", "idle") and not monitoring:
            return
        self._last_error = reason or "Connection lost"
        self._set_state("watching")
        self._schedule_next()
        LOGGER.info("Connection lost (%s); watchdog retrying", reason or "unknown")

    def status(self) -> WatchdogStatus:
        return WatchdogStatus(
            state=self._state,
            attempts=self._attempts,
            last_attempt_at=self._last_attempt_at,
            next_attempt_at=self._next_attempt_at,
            last_error=self._last_error,
            interval_ms=int(self._interval_s * 1000),
        )

    # -- internals ------------------------------------------------------------

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _set_state(self, new_state: WatchdogState) -> None:
        previous = self._state
        self._state = new_state
        if previous != new_state:
            self.events.emit(STATE_CHANGE, new_state, previous)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_next(self) -> None:
        if self._stopped:
            return
        self._cancel_timer()
        delay = self._interval_s
        self._next_attempt_at = self._now() + timedelta(seconds=delay)
        LOGGER.info("Next reconnect attempt in %.0fs", delay)
        self._timer = self._call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._attempt_task = asyncio.ensure_future(self._attempt())

    async def _attempt(self) -> None:
        if self._stopped or self._reconnect is None or self._is_connected is None:
            return

        if self._is_connected():
            self.on_connected()
            return

        self._attempts += 1
        attempt = self._attempts
        self._last_attempt_at = self._now()
        self._next_attempt_at = None
        self._set_state("connecting")
        LOGGER.info("Reconnect attempt #%d", attempt)
        self.events.emit(ATTEMPT, attempt)

        try:
            success = await self._reconnect()
        except Exception as exc:  # reconnect callables are foreign code
            self._on_attempt_failed(str(exc) or type(exc).__name__)
            return

        if self._stopped:
            return
        if success:
            LOGGER.info("Reconnected on attempt #%d", attempt)
            self.events.emit(RECONNECTED, attempt)
            self.on_connected()
            self._set_state("watching")
        else:
            self._on_attempt_failed("Reconnect failed")

    def _on_attempt_failed(self, reason: str) -> None:
        if self._stopped:
            return
        self._last_error = reason
        LOGGER.warning("Reconnect attempt #%d failed: %s", self._attempts, reason)
        self.events.emit(FAILED, self._attempts, reason)
        self._interval_s = min(self._interval_s * BACKOFF_MULTIPLIER, self.max_interval_s)
        self._set_state("watching")
        self._schedule_next()
