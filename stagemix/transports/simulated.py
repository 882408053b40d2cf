"""In-process stand-in for the console, used when no hardware is available.

The simulator speaks the same line protocol as the real console, so the
client's send/correlate path is exercised unchanged. It never opens a socket.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import re
from dataclasses import dataclass, field

from stagemix.core.errors import TransportSendError
from stagemix.core.levels import DB_FLOOR, VU_CEILING
from stagemix.transports.base import ErrorHandler, LineHandler, LostHandler

LOGGER = logging.getLogger(__name__)

INPUT_CHANNELS = 20
OUTPUT_CHANNELS = 8
STEREO_INPUT_CHANNELS = 3
DEFAULT_GAIN_DB = -10.0
JITTER_PERIOD_S = 0.1
JITTER_STEP_DB = 4.0

_GET_VU_RE = re.compile(r"^GET VU (IN|OUT|STIN) (\d+)$")
_GET_GAIN_RE = re.compile(r"^GET GAIN (IN|OUT|STIN) (\d+)$")
_SET_GAIN_RE = re.compile(r"^SET GAIN (IN|OUT|STIN) (\d+) = ([-\d.]+)$")
_SET_SEND_RE = re.compile(r"^SET SEND (IN|STIN) (\d+) OUT (\d+) = ([-\d.]+)$")
_GET_SEND_RE = re.compile(r"^GET SEND (IN|STIN) (\d+) OUT (\d+)$")
_SET_MUTE_RE = re.compile(r"^SET MUTE (IN|OUT|STIN) (\d+) (ON|OFF)$")
_SET_PRESET_RE = re.compile(r"^SET PRESET (\d+)$")


@dataclass
class ConsoleState:
    gains: dict[str, float] = field(default_factory=dict)
    mutes: dict[str, bool] = field(default_factory=dict)
    sends: dict[str, float] = field(default_factory=dict)
    vu: dict[str, float] = field(default_factory=dict)
    preset: int = 1


class SimulatedConsole:
    def __init__(
        self,
        *,
        rng: random.Random | None = None,
        response_delay_s: tuple[float, float] = (0.01, 0.03),
        jitter_period_s: float = JITTER_PERIOD_S,
    ) -> None:
        self.rng = rng or random.Random()
        self.response_delay_s = response_delay_s
        self.jitter_period_s = jitter_period_s
        self.state = ConsoleState()
        self._on_line: LineHandler | None = None
        self._jitter_task: asyncio.Task[None] | None = None
        self._open = False
        self.seed()

    @property
    def is_open(self) -> bool:
        return self._open

    def seed(self) -> None:
        state = self.state
        for i in range(1, INPUT_CHANNELS + 1):
            state.gains[f"IN:{i}"] = DEFAULT_GAIN_DB
            state.mutes[f"IN:{i}"] = False
            state.vu[f"IN:{i}"] = -20 - self.rng.random() * 20
        for i in range(1, OUTPUT_CHANNELS + 1):
            state.gains[f"OUT:{i}"] = DEFAULT_GAIN_DB
            state.mutes[f"OUT:{i}"] = False
            state.vu[f"OUT:{i}"] = -15 - self.rng.random() * 15
        for i in range(1, STEREO_INPUT_CHANNELS + 1):
            state.gains[f"STIN:{i}"] = DEFAULT_GAIN_DB
            state.mutes[f"STIN:{i}"] = False

    async def open(
        self,
        *,
        on_line: LineHandler,
        on_lost: LostHandler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self._on_line = on_line
        self._open = True
        if self._jitter_task is None or self._jitter_task.done():
            self._jitter_task = asyncio.create_task(self._jitter_loop())
        LOGGER.info("Simulated console online")

    async def _jitter_loop(self) -> None:
        while True:
            await asyncio.sleep(self.jitter_period_s)
            self.jitter()

    def jitter(self) -> None:
        """Random-walk every VU value, bounded to the meter range."""
        vu = self.state.vu
        for key, value in vu.items():
            step = (self.rng.random() - 0.5) * JITTER_STEP_DB
            vu[key] = max(DB_FLOOR, min(VU_CEILING, value + step))

    def write_line(self, line: str) -> None:
        if not self._open:
            raise TransportSendError("Simulated console is not open")
        response = self.respond(line)
        low, high = self.response_delay_s
        delay = low + self.rng.random() * (high - low)
        asyncio.get_running_loop().call_later(delay, self._deliver, response)

    def _deliver(self, response: str) -> None:
        if self._open and self._on_line is not None:
            self._on_line(response)

    def respond(self, command: str) -> str:
        upper = command.strip().upper()
        state = self.state

        match = _GET_VU_RE.match(upper)
        if match:
            value = state.vu.get(f"{match[1]}:{match[2]}", -40.0)
            return f"VU {match[1]} {match[2]} = {value:.1f}"

        match = _GET_GAIN_RE.match(upper)
        if match:
            value = state.gains.get(f"{match[1]}:{match[2]}", DEFAULT_GAIN_DB)
            return f"GAIN {match[1]} {match[2]} = {value:.1f}"

        match = _SET_GAIN_RE.match(upper)
        if match:
            state.gains[f"{match[1]}:{match[2]}"] = float(match[3])
            return f"OK GAIN {match[1]} {match[2]} = {match[3]}"

        match = _SET_SEND_RE.match(upper)
        if match:
            state.sends[f"{match[1]}:{match[2]}:OUT:{match[3]}"] = float(match[4])
            return f"OK SEND {match[1]} {match[2]} OUT {match[3]} = {match[4]}"

        match = _GET_SEND_RE.match(upper)
        if match:
            value = state.sends.get(f"{match[1]}:{match[2]}:OUT:{match[3]}", DEFAULT_GAIN_DB)
            return f"SEND {match[1]} {match[2]} OUT {match[3]} = {value:.1f}"

        match = _SET_MUTE_RE.match(upper)
        if match:
            state.mutes[f"{match[1]}:{match[2]}"] = match[3] == "ON"
            return f"OK MUTE {match[1]} {match[2]} {match[3]}"

        if upper == "GET PRESET":
            return f"PRESET = {state.preset}"

        match = _SET_PRESET_RE.match(upper)
        if match:
            state.preset = int(match[1])
            return f"OK PRESET {match[1]}"

        return "OK"

    async def close(self) -> None:
        self._open = False
        task, self._jitter_task = self._jitter_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
