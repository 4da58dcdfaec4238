"""
REPL Engine - Read Router
==========================
Single continuous reader of the transport.

Each chunk is either appended to the byte accumulator (protocol capture)
or decoded and handed to whichever text consumer currently owns the
stream (console or session).
"""

from __future__ import annotations

import asyncio
import codecs
from typing import Awaitable, Callable, Optional, Union

from loguru import logger

from serial_link import RoutingMode, Transport

from .accumulator import ByteAccumulator

DataCallback = Callable[[str], Union[None, Awaitable[None]]]


class ReadRouter:
    """
    Routes incoming bytes according to the current RoutingMode.

    Usage:
        router = ReadRouter(ByteAccumulator())
        router.set_console_callback(print)
        await router.run(transport)
    """

    def __init__(self, accumulator: ByteAccumulator):
        self.accumulator = accumulator
        self._mode = RoutingMode.CONSOLE
        self._console_callback: Optional[DataCallback] = None
        self._session_callback: Optional[DataCallback] = None
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')

        # Statistics
        self.bytes_routed = 0
        self.bytes_captured = 0

    @property
    def mode(self) -> RoutingMode:
        return self._mode

    @mode.setter
    def mode(self, mode: RoutingMode) -> None:
        if mode == RoutingMode.PROTOCOL_CAPTURE:
            raise ValueError("Use begin_capture() to enter protocol capture")
        if self._mode == RoutingMode.PROTOCOL_CAPTURE:
            raise ValueError("Use release_capture() to leave protocol capture")
        if mode != self._mode:
            logger.trace(f"Routing {self._mode.value} -> {mode.value}")
        self._mode = mode

    @property
    def capturing(self) -> bool:
        return self._mode == RoutingMode.PROTOCOL_CAPTURE

    def set_console_callback(self, callback: Optional[DataCallback]) -> None:
        self._console_callback = callback

    def set_session_callback(self, callback: Optional[DataCallback]) -> None:
        self._session_callback = callback

    def begin_capture(self, reset: bool = True) -> None:
        """Divert incoming bytes into the accumulator."""
        if reset:
            self.accumulator.reset()
        if not self.capturing:
            logger.trace(f"Routing {self._mode.value} -> capture")
            self._decoder.reset()
        self._mode = RoutingMode.PROTOCOL_CAPTURE

    async def release_capture(self, mode: RoutingMode) -> None:
        """
        Leave protocol capture and hand leftover bytes to the new consumer.

        Args:
            mode: CONSOLE or SESSION
        """
        if mode == RoutingMode.PROTOCOL_CAPTURE:
            raise ValueError("release_capture() needs a text routing mode")

        leftover = self.accumulator.drain()
        self._mode = mode
        if leftover:
            logger.trace(f"Releasing {len(leftover)} captured bytes to {mode.value}")
            # Through the stream decoder so a character split across chunks survives
            text = self._decoder.decode(leftover)
            if text:
                await self._deliver(text)

    def abandon_capture(self, mode: RoutingMode = RoutingMode.CONSOLE) -> None:
        """Leave capture and discard whatever is queued."""
        self.accumulator.reset()
        self._decoder.reset()
        self._mode = mode

    async def feed(self, chunk: bytes) -> None:
        """Route one chunk read from the transport."""
        if self._mode == RoutingMode.PROTOCOL_CAPTURE:
            self.accumulator.append(chunk)
            self.bytes_captured += len(chunk)
            logger.trace(f"Captured {chunk!r}")
            return

        self.bytes_routed += len(chunk)
        text = self._decoder.decode(chunk)
        if text:
            await self._deliver(text)

    async def deliver_console(self, text: str) -> None:
        """Write text straight to the console consumer, whatever the mode."""
        await self._dispatch(self._console_callback, text)

    async def _deliver(self, text: str) -> None:
        if self._mode == RoutingMode.SESSION:
            await self._dispatch(self._session_callback, text)
        else:
            await self._dispatch(self._console_callback, text)

    async def _dispatch(self, callback: Optional[DataCallback], text: str) -> None:
        if callback is None:
            return
        try:
            if asyncio.iscoroutinefunction(callback):
                await callback(text)
            else:
                callback(text)
        except Exception as e:
            logger.error(f"Callback error: {e}")

    async def run(self, transport: Transport) -> None:
        """
        Read until the transport signals end of input.

        Cancellation propagates to the caller; transport errors are raised.
        """
        while True:
            chunk = await transport.read_chunk()
            if chunk is None:
                logger.debug("Transport reached end of input")
                return
            if chunk:
                await self.feed(chunk)
