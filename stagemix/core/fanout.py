"""WebSocket fan-out of console telemetry and connection state.

Every subscriber gets a ``connection_status`` message as soon as it connects
and again on every connect, disconnect, or watchdog attempt. VU readings are
merged into a single ``vu_update`` per event-loop turn, keyed ``"IN:1"``,
``"OUT:3"`` and so on, and sent to every live subscriber.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from stagemix.core.errors import StagemixError
from stagemix.core.events import ATTEMPT, CONNECTED, DISCONNECTED, RECONNECTED, TELEMETRY
from stagemix.core.model import TelemetryReading, TelemetrySettings

if TYPE_CHECKING:
    from stagemix.core.service import MixerService

LOGGER = logging.getLogger(__name__)

LIVENESS_INTERVAL_S = 10.0
LIVENESS_TIMEOUT_S = 30.0
POLLED_CLASSES = ("IN", "OUT")


class Subscriber(Protocol):
    async def send(self, message: str) -> None: ...

    async def ping(self) -> Any: ...

    async def close(self) -> None: ...


class TelemetryFanout:
    def __init__(
        self,
        service: MixerService,
        *,
        settings: TelemetrySettings | None = None,
        liveness_interval_s: float = LIVENESS_INTERVAL_S,
        liveness_timeout_s: float = LIVENESS_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.settings = settings or service.settings.telemetry
        self.liveness_interval_s = liveness_interval_s
        self.liveness_timeout_s = liveness_timeout_s
        self._clock = clock
        self._last_seen: dict[Subscriber, float] = {}
        self._pending_levels: dict[str, float] = {}
        self._flush_handle: asyncio.Handle | None = None
        self._loops: list[asyncio.Task[None]] = []
        self._sends: set[asyncio.Task[None]] = set()

        service.events.on(TELEMETRY, self._on_telemetry)
        service.events.on(CONNECTED, self._on_connection_change)
        service.events.on(DISCONNECTED, self._on_connection_change)
        service.watchdog.events.on(ATTEMPT, self._on_watchdog_attempt)
        service.watchdog.events.on(RECONNECTED, self._on_connection_change)

    @property
    def subscribers(self) -> tuple[Subscriber, ...]:
        return tuple(self._last_seen)

    # -- subscribers ----------------------------------------------------------

    def register(self, subscriber: Subscriber) -> None:
        self._last_seen[subscriber] = self._clock()
        LOGGER.info("Subscriber connected (%d total)", len(self._last_seen))

    def unregister(self, subscriber: Subscriber) -> None:
        if self._last_seen.pop(subscriber, None) is not None:
            LOGGER.info("Subscriber disconnected (%d left)", len(self._last_seen))

    async def handle(self, websocket: Any) -> None:
        """Serve one WebSocket connection until it closes."""
        self.register(websocket)
        try:
            await websocket.send(json.dumps(self.connection_status_message()))
            async for raw in websocket:
                await self.handle_message(websocket, raw)
        except ConnectionClosed:
            pass
        finally:
            self.unregister(websocket)

    async def handle_message(self, subscriber: Subscriber, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            LOGGER.debug("Ignoring malformed subscriber message: %r", raw)
            return
        if not isinstance(message, dict) or message.get("type") != "ping":
            return
        self._last_seen[subscriber] = self._clock()
        pong = {"type": "pong", "payload": {"ts": int(time.time() * 1000)}}
        await subscriber.send(json.dumps(pong))

    async def broadcast(self, message: dict[str, Any]) -> None:
        text = json.dumps(message)
        dead: list[Subscriber] = []
        for subscriber in list(self._last_seen):
            try:
                await subscriber.send(text)
            except (ConnectionClosed, OSError):
                dead.append(subscriber)
        for subscriber in dead:
            self.unregister(subscriber)

    # -- messages -------------------------------------------------------------

    def connection_status_message(self, **extra: Any) -> dict[str, Any]:
        client = self.service.client
        payload: dict[str, Any] = {
            "connected": client.is_connected(),
            "simulated": client.is_simulated(),
            "watchdog": self.service.watchdog_status().to_payload(),
        }
        payload.update(extra)
        return {"type": "connection_status", "payload": payload}

    async def _on_connection_change(self, *_: Any) -> None:
        await self.broadcast(self.connection_status_message())

    async def _on_watchdog_attempt(self, attempt: int) -> None:
        await self.broadcast(self.connection_status_message(attempt=attempt))

    def _on_telemetry(self, reading: TelemetryReading) -> None:
        self.merge_levels({reading.key: reading.level_db})

    def merge_levels(self, levels: dict[str, float]) -> None:
        self._pending_levels.update(levels)
        if self._flush_handle is None:
            self._flush_handle = asyncio.get_running_loop().call_soon(self._flush)

    def _flush(self) -> None:
        self._flush_handle = None
        levels, self._pending_levels = self._pending_levels, {}
        if not levels or not self._last_seen:
            return
        task = asyncio.ensure_future(self.broadcast({"type": "vu_update", "payload": levels}))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    # -- periodic work --------------------------------------------------------

    async def poll_once(self) -> None:
        client = self.service.client
        if not client.is_connected():
            return
        channels = [
            (channel_class, number)
            for number in range(1, self.settings.poll_channels + 1)
            for channel_class in POLLED_CLASSES
        ]
        results = await asyncio.gather(
            *(client.get_vu(channel_class, number) for channel_class, number in channels),
            return_exceptions=True,
        )
        levels: dict[str, float] = {}
        for (channel_class, number), result in zip(channels, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, StagemixError):
                LOGGER.debug("VU poll of %s %d failed: %s", channel_class, number, result)
            elif isinstance(result, Exception):
                LOGGER.warning("VU poll of %s %d failed", channel_class, number, exc_info=result)
            else:
                levels[f"{channel_class}:{number}"] = result
        if levels:
            self.merge_levels(levels)

    async def check_liveness(self) -> None:
        now = self._clock()
        for subscriber, last_seen in list(self._last_seen.items()):
            if now - last_seen > self.liveness_timeout_s:
                LOGGER.info("Closing subscriber silent for %.0fs", now - last_seen)
                self.unregister(subscriber)
                await subscriber.close()
                continue
            try:
                await subscriber.ping()
            except (ConnectionClosed, OSError):
                self.unregister(subscriber)

    async def _poll_loop(self) -> None:
        interval_s = self.settings.poll_interval_ms / 1000
        while True:
            await asyncio.sleep(interval_s)
            await self.poll_once()

    async def _liveness_loop(self) -> None:
        while True:
            await asyncio.sleep(self.liveness_interval_s)
            await self.check_liveness()

    def start(self) -> None:
        if self._loops:
            return
        self._loops = [
            asyncio.ensure_future(self._poll_loop()),
            asyncio.ensure_future(self._liveness_loop()),
        ]

    async def stop(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        tasks = [*self._loops, *self._sends]
        self._loops = []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def serve(self, host: str, port: int, *, stop: asyncio.Event | None = None) -> None:
        """Accept subscribers on ``ws://host:port`` until ``stop`` is set."""
        stop = stop or asyncio.Event()
        self.start()
        try:
            async with websockets.serve(self.handle, host, port):
                LOGGER.info("Telemetry server listening on ws://%s:%s", host, port)
                await stop.wait()
        finally:
            await self.stop()
