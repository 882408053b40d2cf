from __future__ import annotations

import asyncio

from fakes import ConsoleFactory, FakeStore

from stagemix.api import Client, MixerSnapshot
from stagemix.core.model import ConnectionConfig


def test_public_client_drives_simulated_console() -> None:
    client = Client(store=FakeStore(), client_factory=ConsoleFactory())

    async def _exercise() -> tuple[MixerSnapshot, int, float]:
        status = await client.start()
        assert status.connected
        await client.recall_preset(2)
        preset = await client.current_preset()
        await client.set_gain("OUT", 1, -8)
        vu = await client.get_vu("OUT", 1)
        snapshot = client.snapshot()
        await client.close()
        return snapshot, preset, vu

    snapshot, preset, vu = asyncio.run(_exercise())
    assert isinstance(snapshot, MixerSnapshot)
    assert snapshot.connection.simulated
    assert snapshot.watchdog.state == "idle"
    assert preset == 2
    assert -60 <= vu <= 0


def test_public_client_apply_send_and_connect() -> None:
    factory = ConsoleFactory(replies={"SET SEND STIN 1 OUT 3 = 0.0": "OK"})
    store = FakeStore()
    client = Client(store=store, client_factory=factory)

    async def _exercise() -> tuple[bool, bool]:
        connected = await client.connect("10.0.0.7", 3000)
        applied = await client.apply_send("STIN", 1, 3, 1.0)
        await client.close()
        return connected, applied

    assert asyncio.run(_exercise()) == (True, True)
    assert store.saved == [ConnectionConfig(host="10.0.0.7", port=3000, auto_reconnect=False)]
    assert client.settings.connection.host == "10.0.0.7"
