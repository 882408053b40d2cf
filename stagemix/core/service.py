"""Service layer used by the CLI, the telemetry fan-out, and future UI frontends.

``MixerService`` is the single owner of the current ``MixerClient``. The
watchdog and the fan-out reach the console only through the service, so
replacing the client never leaves a callback bound to a retired instance.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from functools import partial
from typing import Any

from stagemix.core.client import MixerClient
from stagemix.core.config_store import ConfigStore, YamlConfigStore
from stagemix.core.errors import StagemixError
from stagemix.core.events import CONNECTED, DISCONNECTED, ERROR, TELEMETRY, EventEmitter
from stagemix.core.levels import DB_FLOOR, level_to_db
from stagemix.core.model import (
    ChannelClass,
    ConnectionConfig,
    ConnectionStatus,
    LocalNetworkInfo,
    MixerSettings,
    ScanResult,
    SendSource,
    TransportKind,
    WatchdogStatus,
)
from stagemix.core.scanner import local_network_info, scan_network
from stagemix.core.watchdog import ReconnectWatchdog

LOGGER = logging.getLogger(__name__)

_RELAYED_EVENTS = (CONNECTED, DISCONNECTED, ERROR, TELEMETRY)

ClientFactory = Callable[[ConnectionConfig], MixerClient]
Scanner = Callable[..., Awaitable[list[ScanResult]]]


class MixerService:
    def __init__(
        self,
        *,
        store: ConfigStore | None = None,
        settings: MixerSettings | None = None,
        client_factory: ClientFactory | None = None,
        watchdog: ReconnectWatchdog | None = None,
        scanner: Scanner | None = None,
    ) -> None:
        self.store = store or YamlConfigStore()
        self.settings = settings or self.store.load()
        self.events = EventEmitter()
        self.watchdog = watchdog or ReconnectWatchdog()
        self._client_factory = client_factory or MixerClient
        self._scanner = scanner or scan_network
        self._client = self._build_client(self.settings.connection)
        self.watchdog.configure(reconnect=self._watchdog_reconnect, is_connected=self.is_connected)

    @property
    def client(self) -> MixerClient:
        return self._client

    def is_connected(self) -> bool:
        return self._client.is_connected()

    def _build_client(self, config: ConnectionConfig) -> MixerClient:
        client = self._client_factory(config)
        for event in _RELAYED_EVENTS:
            client.events.on(event, partial(self._relay, client, event))
        return client

    def _relay(self, client: MixerClient, event: str, *args: Any) -> None:
        if client is not self._client:
            return
        if event == DISCONNECTED and not client.is_simulated():
            self.watchdog.on_disconnected("Console connection lost")
        self.events.emit(event, *args)

    async def _watchdog_reconnect(self) -> bool:
        client = self._client
        await client.connect()
        return client.is_connected()

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        client = self._client
        try:
            await client.connect()
        except StagemixError as exc:
            LOGGER.warning("Initial console connect failed: %s", exc)
        if client.is_simulated():
            return
        if client.is_connected():
            self.watchdog.on_connected()
        else:
            self.watchdog.on_disconnected("Initial connect failed")

    async def reconfigure(self, config: ConnectionConfig) -> MixerClient:
        """Replace the client with one built for ``config``."""
        self.watchdog.stop()
        previous = self._client
        await previous.disconnect()
        previous.events.clear()
        self._client = self._build_client(config)
        return self._client

    async def shutdown(self) -> None:
        self.watchdog.stop()
        await self._client.disconnect()

    # -- status/command surface -----------------------------------------------

    def status(self) -> ConnectionStatus:
        config = self._client.config
        return ConnectionStatus(
            connected=self._client.is_connected(),
            simulated=self._client.is_simulated(),
            host=config.host,
            port=config.port,
            transport=config.transport,
        )

    async def connect(
        self,
        host: str,
        port: int,
        transport: TransportKind = "tcp",
        simulated: bool = False,
    ) -> bool:
        config = replace(
            self._client.config,
            host=host,
            port=port,
            transport=transport,
            simulated=simulated,
        )
        self.store.save_connection(config)
        self.settings = replace(self.settings, connection=config)

        client = await self.reconfigure(config)
        await client.connect()
        if not simulated and client.is_connected():
            self.watchdog.on_connected()
        return client.is_connected()

    async def disconnect(self) -> None:
        self.watchdog.stop()
        await self._client.disconnect()

    def watchdog_status(self) -> WatchdogStatus:
        return self.watchdog.status()

    def start_watchdog(self) -> WatchdogStatus:
        if not self._client.is_simulated():
            self.watchdog.start()
        return self.watchdog.status()

    def stop_watchdog(self) -> WatchdogStatus:
        self.watchdog.stop()
        return self.watchdog.status()

    def local_info(self) -> LocalNetworkInfo:
        return local_network_info()

    async def scan(self, subnet: str | None = None, ports: Sequence[int] | None = None) -> list[ScanResult]:
        return await self._scanner(subnet=subnet, ports=ports)

    async def get_vu(self, channel_class: ChannelClass, number: int) -> float:
        if not self._client.is_connected():
            return DB_FLOOR
        return await self._client.get_vu(channel_class, number)

    async def apply_send(
        self,
        src_class: SendSource,
        src_number: int,
        bus: int,
        level: float,
        muted: bool = False,
    ) -> bool:
        """Route ``src`` into monitor ``bus`` at a 0..1 fader level.

        Consoles that reject the SEND command get the bus output gain instead,
        which moves the whole monitor mix rather than one source.
        """
        client = self._client
        if not client.is_connected():
            return False
        db = DB_FLOOR if muted else level_to_db(level)
        try:
            await client.set_send(src_class, src_number, bus, db)
            return True
        except StagemixError as exc:
            LOGGER.info("SEND %s %d -> OUT %d not accepted (%s); using bus gain", src_class, src_number, bus, exc)
        try:
            await client.set_gain("OUT", bus, db)
            return True
        except StagemixError as exc:
            LOGGER.warning("Bus gain fallback for OUT %d failed: %s", bus, exc)
            return False
