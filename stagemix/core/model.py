"""Core data models used across client, watchdog, scanner, and service."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

ChannelClass = Literal["IN", "OUT", "STIN"]
SendSource = Literal["IN", "STIN"]
TransportKind = Literal["tcp", "udp"]
WatchdogState = Literal["idle", "watching", "connecting", "connected", "stopped"]

CHANNEL_CLASSES: tuple[str, ...] = ("IN", "OUT", "STIN")
SEND_SOURCES: tuple[str, ...] = ("IN", "STIN")
TRANSPORT_KINDS: tuple[str, ...] = ("tcp", "udp")


@dataclass(frozen=True)
class ConnectionConfig:
    host: str = "192.168.2.1"
    port: int = 3000
    transport: TransportKind = "tcp"
    simulated: bool = False
    reconnect_interval_s: float = 3.0
    command_timeout_s: float = 2.0
    connect_timeout_s: float = 5.0
    auto_reconnect: bool = True


@dataclass(frozen=True)
class TelemetrySettings:
    poll_interval_ms: int = 100
    poll_channels: int = 8


@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 8765


@dataclass(frozen=True)
class MixerSettings:
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    telemetry: TelemetrySettings = field(default_factory=TelemetrySettings)
    server: ServerSettings = field(default_factory=ServerSettings)


@dataclass(frozen=True)
class TelemetryReading:
    channel_class: ChannelClass
    channel_number: int
    level_db: float
    peak_db: float

    @property
    def key(self) -> str:
        return f"{self.channel_class}:{self.channel_number}"


@dataclass(frozen=True)
class WatchdogStatus:
    state: WatchdogState
    attempts: int
    last_attempt_at: datetime | None
    next_attempt_at: datetime | None
    last_error: str | None
    interval_ms: int

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("last_attempt_at", "next_attempt_at"):
            value = payload[key]
            payload[key] = value.isoformat() if value is not None else None
        return payload


@dataclass(frozen=True)
class ScanResult:
    host: str
    port: int
    is_target_device: bool
    response_snippet: str | None
    latency_ms: float


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    simulated: bool
    host: str
    port: int
    transport: TransportKind


@dataclass(frozen=True)
class LocalNetworkInfo:
    server_ip: str
    subnet: str
    candidate_ports: tuple[int, ...]
