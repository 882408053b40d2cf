"""Line protocol spoken by the console: command encoding and response parsing.

Commands are plain text terminated by CRLF, for example::

    SET GAIN IN 3 = -12.0
    GET VU OUT 2          ->  VU OUT 2 = -18.5
    GET PRESET            ->  PRESET = 4

``SET/GET SEND`` is not part of the documented command set; consoles that do
not understand it answer with an error or not at all.
"""

from __future__ import annotations

import re

from stagemix.core.levels import DB_FLOOR, clamp_db
from stagemix.core.model import (
    CHANNEL_CLASSES,
    SEND_SOURCES,
    ChannelClass,
    SendSource,
    TelemetryReading,
)

LINE_TERMINATOR = "\r\n"
DEFAULT_PRESET = 1

_VU_LINE_RE = re.compile(r"VU\s+(IN|OUT|STIN)\s+(\d+)\s+=\s+([-\d.]+)", re.IGNORECASE)
_TRAILING_NUMBER_RE = re.compile(r"([-\d.]+)\s*$")
_TRAILING_INT_RE = re.compile(r"(\d+)\s*$")


def _check_class(channel_class: str, allowed: tuple[str, ...] = CHANNEL_CLASSES) -> str:
    normalized = channel_class.strip().upper()
    if normalized not in allowed:
        raise ValueError(f"Unknown channel class '{channel_class}'. Allowed: {', '.join(allowed)}")
    return normalized


def encode_line(command: str) -> bytes:
    return f"{command}{LINE_TERMINATOR}".encode("ascii")


def set_gain(channel_class: ChannelClass, number: int, db: float) -> str:
    return f"SET GAIN {_check_class(channel_class)} {number} = {clamp_db(db):.1f}"


def get_gain(channel_class: ChannelClass, number: int) -> str:
    return f"GET GAIN {_check_class(channel_class)} {number}"


def set_send(src_class: SendSource, src_number: int, bus: int, db: float) -> str:
    src = _check_class(src_class, SEND_SOURCES)
    return f"SET SEND {src} {src_number} OUT {bus} = {clamp_db(db):.1f}"


def get_send(src_class: SendSource, src_number: int, bus: int) -> str:
    return f"GET SEND {_check_class(src_class, SEND_SOURCES)} {src_number} OUT {bus}"


def set_mute(channel_class: ChannelClass, number: int, muted: bool) -> str:
    return f"SET MUTE {_check_class(channel_class)} {number} {'ON' if muted else 'OFF'}"


def get_vu(channel_class: ChannelClass, number: int) -> str:
    return f"GET VU {_check_class(channel_class)} {number}"


def set_preset(number: int) -> str:
    return f"SET PRESET {number}"


def get_preset() -> str:
    return "GET PRESET"


def parse_number(response: str, default: float = DB_FLOOR) -> float:
    """Parse the numeric suffix of a response line, or return ``default``."""
    match = _TRAILING_NUMBER_RE.search(response)
    if not match:
        return default
    try:
        return float(match.group(1))
    except ValueError:
        return default


def parse_preset(response: str) -> int:
    match = _TRAILING_INT_RE.search(response)
    return int(match.group(1)) if match else DEFAULT_PRESET


def parse_vu_line(line: str) -> TelemetryReading | None:
    match = _VU_LINE_RE.search(line)
    if not match:
        return None
    try:
        level = float(match.group(3))
    except ValueError:
        return None
    return TelemetryReading(
        channel_class=match.group(1).upper(),
        channel_number=int(match.group(2)),
        level_db=level,
        peak_db=level,
    )


def split_lines(data: str) -> list[str]:
    return [line.strip() for line in data.splitlines() if line.strip()]
