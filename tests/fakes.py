from __future__ import annotations

import asyncio

from stagemix.core.client import MixerClient
from stagemix.core.model import ConnectionConfig, MixerSettings
from stagemix.transports.base import ErrorHandler, LineHandler, LostHandler
from stagemix.transports.simulated import SimulatedConsole


class FakeTransport:
    """Line transport that records writes and answers from a reply table."""

    def __init__(
        self,
        *,
        replies: dict[str, str] | None = None,
        fail: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.replies = replies or {}
        self.fail = fail
        self.gate = gate
        self.on_error: ErrorHandler | None = None
        self.lines: list[str] = []
        self.on_line: LineHandler | None = None
        self.on_lost: LostHandler | None = None
        self.opened = 0
        self.closed = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(
        self,
        *,
        on_line: LineHandler,
        on_lost: LostHandler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self.opened += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise self.fail
        self.on_line = on_line
        self.on_lost = on_lost
        self.on_error = on_error
        self._open = True

    def write_line(self, line: str) -> None:
        self.lines.append(line)
        reply = self.replies.get(line)
        if reply is not None:
            asyncio.get_running_loop().call_soon(self.on_line, reply)

    def feed(self, line: str) -> None:
        assert self.on_line is not None
        self.on_line(line)

    def drop(self, error: Exception | None = None) -> None:
        self._open = False
        assert self.on_lost is not None
        self.on_lost(error)

    async def close(self) -> None:
        self._open = False
        self.closed = True


class FakeScheduler:
    """Manual ``call_later`` replacement driven by ``advance()``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[FakeTimer] = []

    def call_later(self, delay, callback):
        timer = FakeTimer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [timer for timer in self._timers if not timer.cancelled]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = [timer for timer in self.pending if timer.when <= self.now]
        for timer in due:
            self._timers.remove(timer)
            timer.callback()


class FakeTimer:
    def __init__(self, when: float, callback) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


async def drain(turns: int = 5) -> None:
    for _ in range(turns):
        await asyncio.sleep(0)


class FakeStore:
    def __init__(self, connection: ConnectionConfig | None = None) -> None:
        self.settings = MixerSettings(
            connection=connection or ConnectionConfig(simulated=True, auto_reconnect=False)
        )
        self.saved: list[ConnectionConfig] = []

    def load(self) -> MixerSettings:
        return self.settings

    def save_connection(self, config: ConnectionConfig) -> None:
        self.saved.append(config)


class ConsoleFactory:
    """Builds clients on fake transports, or on a fast simulator when simulated."""

    def __init__(self, replies: dict[str, str] | None = None) -> None:
        self.replies = replies or {}
        self.fail: Exception | None = None
        self.transports: list[FakeTransport] = []

    def __call__(self, config: ConnectionConfig) -> MixerClient:
        return MixerClient(config, transport_factory=self._transport)

    def _transport(self, config: ConnectionConfig):
        if config.simulated:
            return SimulatedConsole(response_delay_s=(0.0, 0.001))
        transport = FakeTransport(replies=self.replies, fail=self.fail)
        self.transports.append(transport)
        return transport

