"""Protocol client for the mixing console.

The console protocol has no request ids: every response line is matched to the
oldest command still waiting (FIFO). Overlapping commands of different kinds
can therefore be answered out of order by a console that reorders replies;
the client does not try to detect this.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from stagemix.core import protocol
from stagemix.core.errors import (
    CommandTimeoutError,
    ConnectionFailedError,
    NotConnectedError,
    ProtocolError,
    StagemixError,
    TransportError,
)
from stagemix.core.events import CONNECTED, DISCONNECTED, ERROR, TELEMETRY, EventEmitter
from stagemix.core.levels import DB_FLOOR, VU_CEILING, clamp_db, db_to_level, level_to_db
from stagemix.core.model import ChannelClass, ConnectionConfig, SendSource
from stagemix.transports.base import Transport
from stagemix.transports.simulated import SimulatedConsole
from stagemix.transports.tcp import TCPTransport
from stagemix.transports.udp import UDPTransport

LOGGER = logging.getLogger(__name__)

_REJECT_PREFIXES = ("ERR", "NAK", "UNKNOWN", "INVALID")

TransportFactory = Callable[[ConnectionConfig], Transport]


def default_transport_factory(config: ConnectionConfig) -> Transport:
    if config.simulated:
        return SimulatedConsole()
    if config.transport == "udp":
        return UDPTransport(config.host, config.port, connect_timeout_s=config.connect_timeout_s)
    return TCPTransport(config.host, config.port, connect_timeout_s=config.connect_timeout_s)


@dataclass(eq=False)
class PendingCommand:
    command: str
    issued_at: float
    future: asyncio.Future[str]


class MixerClient:
    level_to_db = staticmethod(level_to_db)
    db_to_level = staticmethod(db_to_level)

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        *,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._config = config or ConnectionConfig()
        self._transport_factory = transport_factory or default_transport_factory
        self.events = EventEmitter()
        self._transport: Transport | None = None
        self._connected = False
        self._pending: deque[PendingCommand] = deque()
        self._connect_task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._closed_by_user = False
        self._generation = 0

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_connected(self) -> bool:
        return self._connected

    def is_simulated(self) -> bool:
        return self._config.simulated

    # -- connection lifecycle -------------------------------------------------

    async def connect(self) -> None:
        if self._connected:
            return
        self._closed_by_user = False
        self._cancel_reconnect()
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self._open())
        await asyncio.shield(self._connect_task)

    async def _open(self) -> None:
        config = self._config
        generation = self._generation
        transport = self._transport_factory(config)
        try:
            await transport.open(
                on_line=self._handle_line,
                on_lost=self._handle_lost,
                on_error=self._handle_error,
            )
        except TransportError as exc:
            LOGGER.warning("Console connect failed for %s:%s: %s", config.host, config.port, exc)
            self.events.emit(ERROR, exc)
            self._schedule_reconnect()
            raise ConnectionFailedError(
                f"Could not connect to console at {config.host}:{config.port}: {exc}"
            ) from exc

        # disconnect() ran while the link was opening.
        if generation != self._generation:
            await transport.close()
            raise ConnectionFailedError(
                f"Connect to {config.host}:{config.port} abandoned after disconnect()"
            )

        self._transport = transport
        self._connected = True
        if config.simulated:
            LOGGER.info("Connected to simulated console")
        else:
            LOGGER.info("Connected to console at %s:%s (%s)", config.host, config.port, config.transport)
        self.events.emit(CONNECTED)

    def _handle_error(self, error: Exception) -> None:
        LOGGER.warning("Console transport error: %s", error)
        self.events.emit(ERROR, error)

    def _handle_lost(self, error: Exception | None) -> None:
        self._transport = None
        was_connected = self._connected
        self._connected = False
        if error is not None:
            self.events.emit(ERROR, error)
        if was_connected:
            LOGGER.warning("Console connection lost: %s", error or "closed by peer")
            self.events.emit(DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._config.auto_reconnect or self._closed_by_user:
            return
        if self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(
            self._config.reconnect_interval_s, self._reconnect_due
        )

    def _reconnect_due(self) -> None:
        self._reconnect_handle = None
        if self._connected or self._closed_by_user:
            return
        task = asyncio.ensure_future(self._background_reconnect())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_reconnect(self) -> None:
        try:
            await self.connect()
        except StagemixError as exc:
            LOGGER.debug("Background reconnect failed: %s", exc)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    async def disconnect(self) -> None:
        self._closed_by_user = True
        self._generation += 1
        self._connect_task = None
        self._cancel_reconnect()
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()
        self._connected = False
        LOGGER.info("Disconnected from console")
        self.events.emit(DISCONNECTED)

    # -- request/response -----------------------------------------------------

    def _handle_line(self, raw: str) -> None:
        for line in protocol.split_lines(raw):
            reading = protocol.parse_vu_line(line)
            if reading is not None:
                self.events.emit(TELEMETRY, reading)
            if not self._resolve_oldest(line) and reading is None:
                LOGGER.debug("Unsolicited line from console: %s", line)

    def _resolve_oldest(self, line: str) -> bool:
        while self._pending:
            pending = self._pending.popleft()
            if not pending.future.done():
                pending.future.set_result(line)
                return True
        return False

    async def send_raw(self, command: str) -> str:
        transport = self._transport
        if not self._connected or transport is None:
            raise NotConnectedError("Not connected to the console")

        loop = asyncio.get_running_loop()
        pending = PendingCommand(command=command, issued_at=loop.time(), future=loop.create_future())
        self._pending.append(pending)
        try:
            transport.write_line(command)
            return await asyncio.wait_for(pending.future, timeout=self._config.command_timeout_s)
        except asyncio.TimeoutError as exc:
            raise CommandTimeoutError(f"Timeout: {command}") from exc
        finally:
            if pending in self._pending:
                self._pending.remove(pending)

    async def _command(self, command: str) -> str:
        response = await self.send_raw(command)
        if response.upper().startswith(_REJECT_PREFIXES):
            raise ProtocolError(f"Console rejected '{command}': {response}")
        return response

    # -- typed operations -----------------------------------------------------

    async def set_gain(self, channel_class: ChannelClass, number: int, db: float) -> str:
        return await self._command(protocol.set_gain(channel_class, number, db))

    async def get_gain(self, channel_class: ChannelClass, number: int) -> float:
        response = await self.send_raw(protocol.get_gain(channel_class, number))
        return protocol.parse_number(response)

    async def set_send(self, src_class: SendSource, src_number: int, bus: int, db: float) -> str:
        return await self._command(protocol.set_send(src_class, src_number, bus, db))

    async def get_send(self, src_class: SendSource, src_number: int, bus: int) -> float:
        response = await self.send_raw(protocol.get_send(src_class, src_number, bus))
        return protocol.parse_number(response)

    async def set_mute(self, channel_class: ChannelClass, number: int, muted: bool) -> str:
        return await self._command(protocol.set_mute(channel_class, number, muted))

    async def get_vu(self, channel_class: ChannelClass, number: int) -> float:
        response = await self.send_raw(protocol.get_vu(channel_class, number))
        return clamp_db(protocol.parse_number(response), floor=DB_FLOOR, ceiling=VU_CEILING)

    async def set_preset(self, number: int) -> str:
        return await self._command(protocol.set_preset(number))

    async def get_preset(self) -> int:
        return protocol.parse_preset(await self.send_raw(protocol.get_preset()))
