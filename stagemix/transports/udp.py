"""UDP datagram transport; each datagram may carry one or more lines."""

from __future__ import annotations

import asyncio
import logging

from stagemix.core.errors import (
    TransportConnectError,
    TransportSendError,
    TransportTimeoutError,
)
from stagemix.core.protocol import encode_line, split_lines
from stagemix.transports.base import ErrorHandler, LineHandler, LostHandler

LOGGER = logging.getLogger(__name__)


class _LineDatagramProtocol(asyncio.DatagramProtocol):
    def __init__(
        self,
        on_line: LineHandler,
        on_lost: LostHandler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self.on_line = on_line
        self.on_lost = on_lost
        self.on_error = on_error
        self.closing = False

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        for line in split_lines(data.decode("utf-8", errors="replace")):
            self.on_line(line)

    def error_received(self, exc: Exception) -> None:
        LOGGER.warning("UDP transport error: %s", exc)
        if self.on_error is not None:
            self.on_error(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if not self.closing:
            self.on_lost(exc)


class UDPTransport:
    def __init__(self, host: str, port: int, *, connect_timeout_s: float = 5.0) -> None:
        self.host = host
        self.port = port
        self.connect_timeout_s = connect_timeout_s
        self._transport: asyncio.DatagramTransport | None = None
        self._protocol: _LineDatagramProtocol | None = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def open(
        self,
        *,
        on_line: LineHandler,
        on_lost: LostHandler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        protocol = _LineDatagramProtocol(on_line, on_lost, on_error)
        try:
            transport, _ = await asyncio.wait_for(
                loop.create_datagram_endpoint(lambda: protocol, remote_addr=(self.host, self.port)),
                timeout=self.connect_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(
                f"UDP endpoint setup timed out for {self.host}:{self.port}"
            ) from exc
        except OSError as exc:
            raise TransportConnectError(
                f"UDP endpoint setup failed for {self.host}:{self.port}: {exc}"
            ) from exc
        self._transport = transport
        self._protocol = protocol

    def write_line(self, line: str) -> None:
        if not self.is_open:
            raise TransportSendError(f"UDP endpoint for {self.host}:{self.port} is not open")
        assert self._transport is not None
        try:
            self._transport.sendto(encode_line(line))
        except OSError as exc:
            raise TransportSendError(f"UDP send failed: {exc}") from exc

    async def close(self) -> None:
        if self._protocol is not None:
            self._protocol.closing = True
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
