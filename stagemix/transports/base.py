"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

LineHandler = Callable[[str], None]
LostHandler = Callable[[Exception | None], None]
ErrorHandler = Callable[[Exception], None]


class Transport(Protocol):
    @property
    def is_open(self) -> bool:
        """True while lines can be written."""

    async def open(
        self,
        *,
        on_line: LineHandler,
        on_lost: LostHandler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        """Establish the link; received lines go to ``on_line``.

        ``on_lost`` is called once if the link drops without ``close()``.
        ``on_error`` receives faults that leave the link usable.
        """

    def write_line(self, line: str) -> None:
        """Queue one command line (without terminator) for sending."""

    async def close(self) -> None:
        """Tear the link down without reporting it as lost."""
