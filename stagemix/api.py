"""Stable public API for building tooling on top of stagemix.

This module is the supported integration surface for third-party callers
(control UIs, show-automation scripts, bridges). Avoid importing from
private/internal modules unless intentionally depending on non-stable
internals.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from stagemix.core.client import MixerClient
from stagemix.core.config_store import ConfigStore
from stagemix.core.errors import (
    CommandTimeoutError,
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
    ConnectionFailedError,
    MixerError,
    NotConnectedError,
    ProtocolError,
    StagemixError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from stagemix.core.events import EventEmitter
from stagemix.core.fanout import TelemetryFanout
from stagemix.core.levels import db_to_level, level_to_db
from stagemix.core.model import (
    ChannelClass,
    ConnectionConfig,
    ConnectionStatus,
    LocalNetworkInfo,
    MixerSettings,
    ScanResult,
    SendSource,
    TelemetryReading,
    TransportKind,
    WatchdogStatus,
)
from stagemix.core.service import ClientFactory, MixerService
from stagemix.core.watchdog import ReconnectWatchdog

__all__ = [
    "StagemixError",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
    "MixerError",
    "NotConnectedError",
    "CommandTimeoutError",
    "ProtocolError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "TransportTimeoutError",
    "ConnectionFailedError",
    "ChannelClass",
    "SendSource",
    "ConnectionConfig",
    "ConnectionStatus",
    "LocalNetworkInfo",
    "MixerSettings",
    "ScanResult",
    "TelemetryReading",
    "WatchdogStatus",
    "MixerClient",
    "ReconnectWatchdog",
    "TelemetryFanout",
    "level_to_db",
    "db_to_level",
    "MixerSnapshot",
    "Client",
]


@dataclass(frozen=True)
class MixerSnapshot:
    """Connection and watchdog state captured at one instant."""

    connection: ConnectionStatus
    watchdog: WatchdogStatus


class Client:
    """Public client for driving a console through stagemix.

    A `Client` wraps configuration, the console connection, the reconnect
    watchdog, and network discovery behind a stable async API. Call
    :meth:`start` once inside a running event loop before issuing commands.
    """

    def __init__(
        self,
        *,
        store: ConfigStore | None = None,
        settings: MixerSettings | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._service = MixerService(store=store, settings=settings, client_factory=client_factory)

    @property
    def events(self) -> EventEmitter:
        return self._service.events

    @property
    def settings(self) -> MixerSettings:
        return self._service.settings

    def snapshot(self) -> MixerSnapshot:
        return MixerSnapshot(
            connection=self._service.status(),
            watchdog=self._service.watchdog_status(),
        )

    def fanout(self) -> TelemetryFanout:
        return TelemetryFanout(self._service)

    async def start(self) -> ConnectionStatus:
        await self._service.start()
        return self._service.status()

    async def connect(
        self,
        host: str,
        port: int,
        *,
        transport: TransportKind = "tcp",
        simulated: bool = False,
    ) -> bool:
        return await self._service.connect(host, port, transport, simulated)

    async def disconnect(self) -> None:
        await self._service.disconnect()

    async def close(self) -> None:
        await self._service.shutdown()

    def start_watchdog(self) -> WatchdogStatus:
        return self._service.start_watchdog()

    def stop_watchdog(self) -> WatchdogStatus:
        return self._service.stop_watchdog()

    def local_info(self) -> LocalNetworkInfo:
        return self._service.local_info()

    async def scan(self, *, subnet: str | None = None, ports: Sequence[int] | None = None) -> list[ScanResult]:
        return await self._service.scan(subnet=subnet, ports=ports)

    async def get_vu(self, channel_class: ChannelClass, number: int) -> float:
        return await self._service.get_vu(channel_class, number)

    async def set_gain(self, channel_class: ChannelClass, number: int, db: float) -> str:
        return await self._service.client.set_gain(channel_class, number, db)

    async def set_mute(self, channel_class: ChannelClass, number: int, muted: bool) -> str:
        return await self._service.client.set_mute(channel_class, number, muted)

    async def recall_preset(self, number: int) -> str:
        return await self._service.client.set_preset(number)

    async def current_preset(self) -> int:
        return await self._service.client.get_preset()

    async def apply_send(
        self,
        src_class: SendSource,
        src_number: int,
        bus: int,
        level: float,
        *,
        muted: bool = False,
    ) -> bool:
        return await self._service.apply_send(src_class, src_number, bus, level, muted)
