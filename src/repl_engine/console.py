"""
REPL Engine - Console Shell
============================
Always-available pass-through to the device's friendly prompt.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from loguru import logger

from .router import DataCallback

if TYPE_CHECKING:
    from .engine import DeviceLink


class ConsoleShell:
    """
    Interactive console consumer.

    Input is silently dropped while a session owns the wire; output is
    delivered only while the router is in console mode.
    """

    def __init__(self, link: DeviceLink):
        self._link = link
        self.columns: Optional[int] = None
        self.rows: Optional[int] = None

    async def send(self, text: str) -> None:
        """Write keystrokes or a line of input to the device."""
        if not self._link.is_connected:
            logger.debug("Console input dropped: not connected")
            return
        if self._link.session is not None:
            logger.debug(f"Console input dropped: session '{self._link.session.reason}' owns the wire")
            return
        await self._link.write(text.encode('utf-8'))

    def on_data(self, callback: Optional[DataCallback]) -> None:
        """Register the function that receives console text."""
        self._link.router.set_console_callback(callback)

    def resize(self, cols: Optional[int] = None, rows: Optional[int] = None) -> None:
        # Recorded for the UI only; the REPL has no window-size protocol
        if cols is not None:
            self.columns = cols
        if rows is not None:
            self.rows = rows
