from __future__ import annotations

import asyncio
import sys
from typing import Optional, TextIO, Tuple


class _StdoutProtocol(asyncio.BaseProtocol):
    """Write-pipe protocol with the ``_drain_helper`` StreamWriter expects."""

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._paused = False
        self._drain_waiter: Optional[asyncio.Future[None]] = None
        self._lost: Optional[BaseException] = None

    def pause_writing(self) -> None:  # type: ignore[override]
        self._paused = True
        if self._drain_waiter is None:
            self._drain_waiter = self._loop.create_future()

    def resume_writing(self) -> None:  # type: ignore[override]
        self._paused = False
        self._wake(None)

    def connection_lost(self, exc: Optional[BaseException]) -> None:  # type: ignore[override]
        # The host closed our stdout; blocked writers must not hang.
        self._lost = exc or ConnectionResetError("stdout closed")
        self._wake(self._lost)

    def _wake(self, exc: Optional[BaseException]) -> None:
        waiter, self._drain_waiter = self._drain_waiter, None
        if waiter is None or waiter.done():
            return
        if exc is None:
            waiter.set_result(None)
        else:
            waiter.set_exception(exc)

    async def _drain_helper(self) -> None:
        if self._lost is not None:
            raise ConnectionResetError("stdout closed") from self._lost
        if self._paused and self._drain_waiter is not None:
            await self._drain_waiter


async def stdio_streams(
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """
    Wrap this process's stdin/stdout as an asyncio stream pair.

    An agent launched by the host speaks ACP over these pipes, so they are
    connected without blocking the event loop. POSIX only: Windows needs a
    proactor loop with real async pipes.
    """
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader()
    reader_protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: reader_protocol, stdin or sys.stdin)

    write_protocol = _StdoutProtocol()
    transport, _ = await loop.connect_write_pipe(lambda: write_protocol, stdout or sys.stdout)
    writer = asyncio.StreamWriter(transport, write_protocol, None, loop)

    return reader, writer
