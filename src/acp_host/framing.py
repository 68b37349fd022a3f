"""Newline-delimited JSON framing.

One JSON value per ``\\n``-terminated UTF-8 line. Reading tolerates arbitrary
chunking of the underlying byte stream; writing issues one write per line so
that concurrent senders never interleave partial frames.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Union

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True, slots=True)
class UnparsedLine:
    """A complete line that did not decode to a JSON object."""

    text: str


Frame = Union[dict, UnparsedLine]


class LineBuffer:
    """Accumulates chunks and hands back complete, stripped, non-empty lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder(ENCODING)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        lines: List[str] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            line = line.strip()
            if line:
                lines.append(line)
        return lines

    @property
    def pending(self) -> str:
        return self._buffer


async def iter_lines(
    reader: asyncio.StreamReader, chunk_size: int = READ_CHUNK_SIZE
) -> AsyncIterator[str]:
    """Yield complete lines from ``reader`` until it reaches EOF."""
    buffer = LineBuffer()
    while True:
        data = await reader.read(chunk_size)
        if not data:
            break
        for line in buffer.feed(data):
            yield line
    leftover = buffer.pending.strip()
    if leftover:
        logger.debug("Discarding unterminated trailing data: %r", leftover[:200])


def decode_frame(line: str) -> Frame:
    try:
        message = json.loads(line)
    except ValueError:
        return UnparsedLine(line)
    if not isinstance(message, dict):
        return UnparsedLine(line)
    return message


async def read_frames(reader: asyncio.StreamReader) -> AsyncIterator[Frame]:
    async for line in iter_lines(reader):
        yield decode_frame(line)


def encode_frame(value: Any) -> bytes:
    return (json.dumps(value, separators=(",", ":"), ensure_ascii=False) + "\n").encode(ENCODING)


class FrameWriter:
    """Serializes values onto a stream writer, one atomic line at a time."""

    def __init__(self, writer: asyncio.StreamWriter) -> None:
        self._writer = writer
        self._lock = asyncio.Lock()

    @property
    def writable(self) -> bool:
        return not self._writer.is_closing()

    async def write(self, value: Any) -> None:
        data = encode_frame(value)
        async with self._lock:
            self._writer.write(data)
            await self._writer.drain()

    def close(self) -> None:
        if not self._writer.is_closing():
            self._writer.close()
