"""
REPL Engine - Device Session
=============================
Exclusive handle on a device in raw REPL, returned by
``DeviceLink.open_session``.

Usage:
    async with await link.open_session("run") as session:
        session.on_data(print)
        await session.send("print(1)\\n")
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional

from loguru import logger

from serial_link import (
    DeviceAbort,
    RoutingMode,
    SessionCapability,
    SessionClosed,
    SessionState,
    TransferStats,
)

from . import constants
from .router import DataCallback
from .transfer import BulkTransferEngine

if TYPE_CHECKING:
    from .engine import DeviceLink


class DeviceSession:
    """
    One raw REPL session.

    Lifecycle: NEGOTIATING -> ACTIVE -> CLOSING -> CLOSED. Closing always
    releases exclusivity, even if the exit write fails.
    """

    def __init__(self, link: DeviceLink, reason: str):
        self._link = link
        self.reason = reason
        self.state = SessionState.NEGOTIATING
        self.capability: Optional[SessionCapability] = None
        self.last_transfer: Optional[TransferStats] = None
        self._transfer: Optional[BulkTransferEngine] = None

    def __repr__(self) -> str:
        return f"<DeviceSession reason={self.reason!r} state={self.state.value}>"

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def use_raw_paste(self) -> bool:
        return bool(self.capability and self.capability.use_raw_paste)

    @property
    def window_size(self) -> int:
        return self.capability.window_size if self.capability else 0

    def _activate(self, capability: SessionCapability, transfer: BulkTransferEngine) -> None:
        self.capability = capability
        self._transfer = transfer
        self.state = SessionState.ACTIVE

    async def send(self, text: str, strict: bool = False) -> TransferStats:
        """
        Send a program buffer for execution.

        Args:
            text: Python source to run on the device
            strict: Raise DeviceAbort if the device cut the transfer short

        Returns:
            Statistics of the transfer

        Raises:
            SessionClosed: the session is not active
            DeviceAbort: device aborted and strict is set
            TransferTimeout: raw-paste flow control stalled
            PortIOError: transport write failed
        """
        if not self.is_active or self._transfer is None:
            raise SessionClosed(f"Session '{self.reason}' is {self.state.value}")

        stats = await self._transfer.send(text.encode('utf-8'), self.capability)
        self.last_transfer = stats

        if stats.aborted and strict:
            raise DeviceAbort(stats.bytes_sent, stats.total_bytes)
        return stats

    def on_data(self, callback: Optional[DataCallback]) -> None:
        """Register the function that receives device output for this session."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self._link.router.set_session_callback(callback)

    async def write_terminal(self, text: str) -> None:
        """Show a message on the console consumer without touching the wire."""
        await self._link.router.deliver_console(text)

    async def close(self) -> None:
        """
        Leave raw REPL and release the wire.

        Idempotent. Cleanup runs even if the exit write fails; the failure
        is still raised.
        """
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return

        timings = self._link.timings
        self.state = SessionState.CLOSING
        try:
            await asyncio.sleep(timings.close_drain_delay_s)

            # Route to the console before the exit byte so the friendly prompt reaches it
            router = self._link.router
            if router.capturing:
                router.abandon_capture(RoutingMode.CONSOLE)
            else:
                router.mode = RoutingMode.CONSOLE

            await self._link.write(constants.EXIT_RAW)
            await asyncio.sleep(timings.close_settle_delay_s)
        finally:
            self._link._release_session(self)

        logger.info(f"Session '{self.reason}' closed")

    async def __aenter__(self) -> DeviceSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
