"""TCP line transport implementation using asyncio streams."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from stagemix.core.errors import (
    TransportConnectError,
    TransportSendError,
    TransportTimeoutError,
)
from stagemix.core.protocol import encode_line
from stagemix.transports.base import ErrorHandler, LineHandler, LostHandler

LOGGER = logging.getLogger(__name__)


class TCPTransport:
    def __init__(self, host: str, port: int, *, connect_timeout_s: float = 5.0) -> None:
        self.host = host
        self.port = port
        self.connect_timeout_s = connect_timeout_s
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(
        self,
        *,
        on_line: LineHandler,
        on_lost: LostHandler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(
                f"TCP connect timed out for {self.host}:{self.port}"
            ) from exc
        except OSError as exc:
            raise TransportConnectError(
                f"TCP connect failed for {self.host}:{self.port}: {exc}"
            ) from exc

        self._writer = writer
        self._reader_task = asyncio.create_task(self._read_loop(reader, on_line, on_lost))

    async def _read_loop(
        self,
        reader: asyncio.StreamReader,
        on_line: LineHandler,
        on_lost: LostHandler,
    ) -> None:
        error: Exception | None = None
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                on_line(raw.decode("utf-8", errors="replace"))
        except (OSError, ValueError) as exc:
            error = exc
        LOGGER.debug("TCP link to %s:%s closed by peer (%s)", self.host, self.port, error)
        self._drop_writer()
        on_lost(error)

    def write_line(self, line: str) -> None:
        if not self.is_open:
            raise TransportSendError(f"TCP link to {self.host}:{self.port} is not open")
        assert self._writer is not None
        try:
            self._writer.write(encode_line(line))
        except OSError as exc:
            raise TransportSendError(f"TCP send failed: {exc}") from exc

    def _drop_writer(self) -> None:
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.close()

    async def close(self) -> None:
        task, self._reader_task = self._reader_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
