"""Network discovery of consoles on the local /24 subnet.

Every host x candidate port gets a short TCP connect probe. Ports that accept
a connection are then sent a read-only ``GET PRESET`` and the first response
chunk is fingerprinted against keywords the console protocol is known to use.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import time
from collections.abc import Callable, Sequence

import psutil

from stagemix.core.model import LocalNetworkInfo, ScanResult
from stagemix.core.protocol import encode_line, get_preset

LOGGER = logging.getLogger(__name__)

CANDIDATE_PORTS: tuple[int, ...] = (3000, 8080, 8888, 9000, 10000, 3001, 7000)
CONNECT_TIMEOUT_S = 0.6
PROBE_TIMEOUT_S = 0.8
CONCURRENCY = 40
SNIPPET_LENGTH = 80
DEVICE_KEYWORDS: tuple[str, ...] = (
    "OK",
    "MATRIX",
    "PRESET",
    "GAIN",
    "SEND",
    "MUTE",
    "NCTRL",
    "WALDMAN",
)

ProgressCallback = Callable[[int, int], None]


def _route_address() -> str | None:
    # Connecting a UDP socket sends nothing; it only selects the outbound interface.
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            sock.connect(("10.254.254.254", 1))
            return sock.getsockname()[0]
        except OSError:
            return None


def _interface_address() -> str | None:
    for addresses in psutil.net_if_addrs().values():
        for addr in addresses:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                return addr.address
    return None


def get_local_ip() -> str:
    """Return the first non-loopback IPv4 address of this host.

    Interfaces are enumerated first so isolated networks without a default
    route still resolve; route selection and the hostname are fallbacks.
    """
    address = _interface_address()
    if address:
        return address
    address = _route_address()
    if address and not address.startswith("127."):
        return address
    try:
        candidates = socket.gethostbyname_ex(socket.gethostname())[2]
    except OSError:
        candidates = []
    for candidate in candidates:
        if not candidate.startswith("127."):
            return candidate
    return "127.0.0.1"


def get_subnet(ip: str) -> str:
    return ".".join(ip.split(".")[:3])


def get_subnet_hosts(subnet: str) -> list[str]:
    return [f"{subnet}.{suffix}" for suffix in range(1, 255)]


def local_network_info() -> LocalNetworkInfo:
    ip = get_local_ip()
    return LocalNetworkInfo(server_ip=ip, subnet=get_subnet(ip), candidate_ports=CANDIDATE_PORTS)


def classify_response(data: str) -> tuple[bool, str]:
    upper = data.upper()
    is_target = any(keyword in upper for keyword in DEVICE_KEYWORDS)
    snippet = data[:SNIPPET_LENGTH].replace("\r", " ").replace("\n", " ").strip()
    return is_target, snippet


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(OSError, asyncio.TimeoutError):
        await asyncio.wait_for(writer.wait_closed(), timeout=CONNECT_TIMEOUT_S)


async def tcp_connect(host: str, port: int, timeout_s: float | None = None) -> bool:
    """Return True if a TCP connection to host:port opens within the timeout."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=CONNECT_TIMEOUT_S if timeout_s is None else timeout_s,
        )
    except (OSError, asyncio.TimeoutError):
        return False
    await _close_writer(writer)
    return True


async def probe_device(host: str, port: int) -> tuple[bool, str]:
    """Send the read-only probe and fingerprint the first response chunk."""
    data = b""
    writer: asyncio.StreamWriter | None = None
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=PROBE_TIMEOUT_S
        )
        writer.write(encode_line(get_preset()))
        await writer.drain()
        data = await asyncio.wait_for(reader.read(1024), timeout=PROBE_TIMEOUT_S)
    except (OSError, asyncio.TimeoutError) as exc:
        LOGGER.debug("Probe of %s:%s got no answer: %s", host, port, exc)
    finally:
        if writer is not None:
            await _close_writer(writer)
    return classify_response(data.decode("utf-8", errors="replace"))


def _sort_key(result: ScanResult) -> tuple[bool, float]:
    return (not result.is_target_device, result.latency_ms)


async def scan_network(
    subnet: str | None = None,
    ports: Sequence[int] | None = None,
    *,
    on_progress: ProgressCallback | None = None,
) -> list[ScanResult]:
    """Scan ``subnet`` (default: this host's /24) for console-like devices.

    Targets matching the console fingerprint come first, then open but
    unidentified ports; each group is ordered by connect latency.
    """
    subnet = subnet or get_subnet(get_local_ip())
    ports = tuple(ports) if ports else CANDIDATE_PORTS
    targets = [(host, port) for host in get_subnet_hosts(subnet) for port in ports]
    total = len(targets)
    scanned = 0
    found: list[ScanResult] = []

    LOGGER.info("Scanning %s.0/24 on ports %s (%d targets)", subnet, ", ".join(map(str, ports)), total)

    async def scan_one(host: str, port: int) -> None:
        nonlocal scanned
        started = time.perf_counter()
        is_open = await tcp_connect(host, port)
        scanned += 1
        if on_progress is not None:
            on_progress(scanned, total)
        if not is_open:
            return
        latency_ms = round((time.perf_counter() - started) * 1000, 1)
        is_target, snippet = await probe_device(host, port)
        found.append(
            ScanResult(
                host=host,
                port=port,
                is_target_device=is_target,
                response_snippet=snippet or None,
                latency_ms=latency_ms,
            )
        )

    for index in range(0, total, CONCURRENCY):
        batch = targets[index : index + CONCURRENCY]
        outcomes = await asyncio.gather(
            *(scan_one(host, port) for host, port in batch), return_exceptions=True
        )
        for (host, port), outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                LOGGER.debug("Scan of %s:%s failed: %s", host, port, outcome)

    found.sort(key=_sort_key)
    LOGGER.info("Scan finished: %d open, %d console(s)", len(found), sum(r.is_target_device for r in found))
    return found
