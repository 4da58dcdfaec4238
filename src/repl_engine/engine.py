"""
REPL Engine - Device Link
==========================
Owns the connection to a MicroPython board and arbitrates the wire
between the console and one exclusive raw REPL session.

Features:
- Connection lifecycle with DTR/RTS setup and REPL wake sequence
- Single read loop routing bytes to console, session or capture buffer
- Exclusive sessions with raw-paste negotiation and fallback
- Busy status published to observers for the life of a session

Usage:
    link = DeviceLink(config)
    await link.connect()
    link.console.on_data(print)
    async with await link.open_session("run") as session:
        await session.send("print(1)\\n")
    await link.disconnect()
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Callable, List, Optional

from loguru import logger

from serial_link import (
    BusyStatus,
    ConnectionStatus,
    DeviceLinkError,
    LinkConfig,
    NotConnected,
    PortIOError,
    ProtocolTimings,
    RoutingMode,
    SessionAlreadyActive,
    SessionState,
    TransferStats,
    Transport,
    TransportFactory,
    open_serial_transport,
)

from . import constants
from .accumulator import ByteAccumulator
from .console import ConsoleShell
from .negotiator import SessionNegotiator
from .router import DataCallback, ReadRouter
from .session import DeviceSession
from .transfer import BulkTransferEngine

BusyCallback = Callable[[Optional[BusyStatus]], None]


class DeviceLink:
    """
    Device session transport engine.

    Public operations are ``connect``, ``disconnect``, ``open_session`` and
    the ``console`` shell. Everything else is shared state kept on this
    object and touched only from the read loop and the one in-flight
    session call.
    """

    def __init__(
        self,
        config: Optional[LinkConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """
        Initialize the device link.

        Args:
            config: Link configuration (serial line and protocol timings)
            transport_factory: Coroutine opening a Transport; defaults to pyserial
        """
        self.config = config or LinkConfig()
        self._transport_factory = transport_factory or open_serial_transport
        self._transport: Optional[Transport] = None
        self._status = ConnectionStatus.DISCONNECTED

        self.accumulator = ByteAccumulator(self.config.timings.poll_interval_s)
        self.router = ReadRouter(self.accumulator)
        self.console = ConsoleShell(self)

        self._read_task: Optional[asyncio.Task] = None
        self._session: Optional[DeviceSession] = None
        self._busy: Optional[BusyStatus] = None
        self._busy_callbacks: List[BusyCallback] = []

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._status == ConnectionStatus.CONNECTED

    @property
    def timings(self) -> ProtocolTimings:
        return self.config.timings

    @property
    def routing_mode(self) -> RoutingMode:
        return self.router.mode

    @property
    def session(self) -> Optional[DeviceSession]:
        """The live session, including one still negotiating."""
        return self._session

    @property
    def busy(self) -> Optional[BusyStatus]:
        return self._busy

    def on_busy_change(self, callback: BusyCallback) -> None:
        """Register an observer of busy status changes."""
        self._busy_callbacks.append(callback)

    def remove_busy_callback(self, callback: BusyCallback) -> None:
        if callback in self._busy_callbacks:
            self._busy_callbacks.remove(callback)

    def _set_busy(self, status: Optional[BusyStatus]) -> None:
        if status == self._busy:
            return
        self._busy = status
        for callback in list(self._busy_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Busy callback error: {e}")

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the transport, start reading and wake the REPL.

        Raises:
            PortIOError: the port could not be opened or written
        """
        if self._transport is not None:
            logger.warning("connect() called while already connected")
            return

        self._status = ConnectionStatus.CONNECTING
        logger.info(f"Connecting to {self.config.serial.port}...")

        transport: Optional[Transport] = None
        try:
            transport = await self._transport_factory(self.config.serial)
            transport.set_control_lines(ready=True, request=False)
            await asyncio.sleep(self.timings.settle_delay_s)

            self._transport = transport
            self.router.abandon_capture(RoutingMode.CONSOLE)
            self._read_task = asyncio.create_task(self._read_loop(transport))

            await asyncio.sleep(self.timings.wake_delay_s)
            await self._wake(transport)
        except OSError as e:
            await self._abort_connect(transport)
            raise PortIOError(f"Connection failed: {e}") from e
        except BaseException:
            await self._abort_connect(transport)
            raise

        self._status = ConnectionStatus.CONNECTED
        logger.success(f"Connected to {self.config.serial.port} at {self.config.serial.baudrate} baud")

    async def _wake(self, transport: Transport) -> None:
        await transport.write(constants.INTERRUPT)
        await asyncio.sleep(self.timings.wake_step_delay_s)
        await transport.write(constants.SOFT_RESET)
        await asyncio.sleep(self.timings.wake_step_delay_s)
        await transport.write(constants.NEWLINE)

    async def _abort_connect(self, transport: Optional[Transport]) -> None:
        await self._stop_read_loop()
        self._transport = None
        self._status = ConnectionStatus.ERROR
        if transport is not None:
            try:
                await transport.close()
            except (DeviceLinkError, OSError) as e:
                logger.error(f"Error closing transport after failed connect: {e}")
        logger.error("Connection attempt failed")

    async def disconnect(self) -> None:
        """Stop reading, end any session and close the transport. No-op when closed."""
        if self._transport is None:
            return

        transport = self._transport
        await self._stop_read_loop()

        if self._session is not None:
            logger.warning(f"Disconnecting with session '{self._session.reason}' still open")
            self._release_session(self._session)
        self._set_busy(None)
        self.router.abandon_capture(RoutingMode.CONSOLE)

        self._transport = None
        try:
            await transport.close()
        except (DeviceLinkError, OSError) as e:
            logger.error(f"Error closing transport: {e}")
        finally:
            self._status = ConnectionStatus.DISCONNECTED
            logger.info("Serial connection closed")

    async def _stop_read_loop(self) -> None:
        task = self._read_task
        self._read_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _read_loop(self, transport: Transport) -> None:
        """Continuous read loop."""
        task = asyncio.current_task()
        try:
            await self.router.run(transport)
        except (DeviceLinkError, OSError) as e:
            logger.error(f"Read error: {e}")
            if self._transport is transport:
                self._status = ConnectionStatus.ERROR
        finally:
            # A newer loop may already own the handle
            if self._read_task is task:
                self._read_task = None

    async def write(self, data: bytes) -> None:
        """
        Write raw bytes to the device.

        Raises:
            NotConnected: no transport
            PortIOError: transport write failed
        """
        if self._transport is None:
            raise NotConnected("write")
        await self._transport.write(data)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def open_session(self, reason: str) -> DeviceSession:
        """
        Enter raw REPL and take exclusive ownership of the wire.

        Args:
            reason: Tag shown in the busy status (e.g. "run", "sync")

        Returns:
            Active session

        Raises:
            NotConnected: no connection
            SessionAlreadyActive: another session is live
            HandshakeTimeout: device never showed the raw REPL prompt
        """
        if not self.is_connected:
            raise NotConnected("open_session")
        if self._session is not None:
            raise SessionAlreadyActive(self._session.reason, reason)

        # Reserved before the first await so two negotiations cannot interleave
        transport = self._transport
        session = DeviceSession(self, reason)
        self._session = session
        self._set_busy(BusyStatus(reason=reason, detail="negotiating"))
        owns_wire = partial(self._owns_wire, session, transport)

        try:
            negotiator = SessionNegotiator(transport, self.router, self.timings, owns_wire)
            capability = await negotiator.negotiate()
        except BaseException as e:
            logger.error(f"Session '{reason}' negotiation failed: {e}")
            self._release_session(session)
            raise

        if not owns_wire():
            # Disconnected while the handshake was in flight
            logger.warning(f"Session '{reason}' lost its connection during negotiation")
            session.state = SessionState.CLOSED
            raise NotConnected("open_session")

        transfer = BulkTransferEngine(transport, self.router, self.timings, owns_wire)
        session._activate(capability, transfer)

        mode = f"raw-paste window {capability.window_size}" if capability.use_raw_paste else "raw"
        self._set_busy(BusyStatus(reason=reason, detail=mode))
        logger.info(f"Session '{reason}' opened ({mode})")
        return session

    def _owns_wire(self, session: DeviceSession, transport: Transport) -> bool:
        """True while session is still the live session on transport."""
        return self._session is session and self._transport is transport

    def _release_session(self, session: DeviceSession) -> None:
        session.state = SessionState.CLOSED
        if self._session is not session:
            return
        self._session = None
        self._set_busy(None)
        self.router.set_session_callback(None)
        self.router.abandon_capture(RoutingMode.CONSOLE)

    async def run_code(
        self,
        code: str,
        reason: str = "run",
        on_output: Optional[DataCallback] = None,
        wait_s: float = 0.0,
    ) -> TransferStats:
        """
        Run a program in a one-shot session.

        Args:
            code: Python source
            reason: Busy status tag
            on_output: Receives device output while the session is open
            wait_s: Extra time to collect output before closing

        Returns:
            Statistics of the transfer
        """
        async with await self.open_session(reason) as session:
            if on_output is not None:
                session.on_data(on_output)
            stats = await session.send(code)
            if wait_s > 0:
                await asyncio.sleep(wait_s)
        return stats
