"""
REPL Engine - Byte Accumulator
===============================
Growable byte buffer filled by the read router while protocol capture is
engaged, with bounded-wait extraction.

Extraction never consumes partially: a call either returns everything it
asked for or returns None and leaves the buffer untouched.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Union


class ByteAccumulator:
    """
    Append-only byte queue consumed from the front.

    ``take`` and ``take_until`` poll at a fixed interval rather than
    waiting on a signal; callers must not run them concurrently.
    """

    def __init__(self, poll_interval_s: float = 0.01):
        self.poll_interval_s = poll_interval_s
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def append(self, data: bytes) -> None:
        self._buffer.extend(data)

    def reset(self) -> None:
        self._buffer.clear()

    def drain(self) -> bytes:
        """Remove and return everything queued."""
        data = bytes(self._buffer)
        self._buffer.clear()
        return data

    def peek(self) -> bytes:
        return bytes(self._buffer)

    async def take(self, n: int, timeout: float) -> Optional[bytes]:
        """
        Wait for n bytes and remove exactly those.

        Args:
            n: Number of bytes wanted
            timeout: Seconds to wait

        Returns:
            The first n bytes, or None if they did not all arrive in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if len(self._buffer) >= n:
                data = bytes(self._buffer[:n])
                del self._buffer[:n]
                return data

            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval_s, remaining))

    async def take_until(self, marker: Union[str, bytes], timeout: float) -> Optional[str]:
        """
        Wait for marker and remove everything up to and including it.

        The search runs on the encoded marker so the amount consumed is
        measured in bytes even when the text holds multi-byte characters.

        Args:
            marker: Text (UTF-8 encoded for the search) or raw bytes
            timeout: Seconds to wait

        Returns:
            Decoded text through the end of the marker, or None on timeout
        """
        needle = marker.encode('utf-8') if isinstance(marker, str) else marker
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            index = self._buffer.find(needle)
            if index != -1:
                end = index + len(needle)
                data = bytes(self._buffer[:end])
                del self._buffer[:end]
                return data.decode('utf-8', errors='replace')

            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval_s, remaining))
