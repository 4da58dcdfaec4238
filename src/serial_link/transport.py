"""
Serial Link - Transport
========================
Byte transport used by the REPL engine.

Features:
- Transport protocol the engine depends on (open/read/write/control lines)
- pyserial-backed implementation (device paths and socket:// / loop:// URLs)
- Auto-detection of USB-UART bridges
- Non-blocking polled reads suitable for an asyncio read loop
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

import serial
import serial.tools.list_ports
from loguru import logger

from .errors import PortIOError
from .models import FlowControl, SerialConfig


# Common USB-UART bridge identifiers found on MicroPython boards
BRIDGE_IDENTIFIERS = ['cp210', 'ch340', 'ch910', 'ftdi', 'usb jtag', 'usb-serial', 'micropython']


@runtime_checkable
class Transport(Protocol):
    """Duplex byte stream with two hardware control lines."""

    async def read_chunk(self) -> Optional[bytes]:
        """Wait for the next chunk of bytes; None signals end of input."""
        ...

    async def write(self, data: bytes) -> None:
        """Write all of data to the device."""
        ...

    def set_control_lines(self, ready: bool, request: bool) -> None:
        """Drive the ready (DTR) and request (RTS) lines."""
        ...

    async def close(self) -> None:
        """Release the underlying port."""
        ...


TransportFactory = Callable[[SerialConfig], Awaitable[Transport]]


class SerialTransport:
    """
    pyserial implementation of the Transport protocol.

    The port is opened non-blocking (timeout=0) and reads poll
    ``in_waiting`` so that the asyncio loop is never stalled.
    """

    def __init__(self, port: serial.SerialBase, poll_interval_s: float = 0.005):
        self._serial = port
        self._poll_interval_s = poll_interval_s
        self._closed = False

    @property
    def name(self) -> str:
        return str(self._serial.port)

    @property
    def is_open(self) -> bool:
        return not self._closed and self._serial.is_open

    async def read_chunk(self) -> Optional[bytes]:
        while True:
            if not self.is_open:
                return None
            try:
                waiting = self._serial.in_waiting
                if waiting:
                    data = self._serial.read(waiting)
                    if data:
                        return data
            except (serial.SerialException, OSError) as e:
                if self._closed:
                    return None
                raise PortIOError(f"Read from {self.name} failed: {e}") from e
            await asyncio.sleep(self._poll_interval_s)

    async def write(self, data: bytes) -> None:
        if not self.is_open:
            raise PortIOError(f"Write to {self.name} failed: port is closed")
        try:
            self._serial.write(data)
            self._serial.flush()
        except (serial.SerialException, OSError) as e:
            raise PortIOError(f"Write to {self.name} failed: {e}") from e

    def set_control_lines(self, ready: bool, request: bool) -> None:
        try:
            self._serial.dtr = ready
            self._serial.rts = request
        except (serial.SerialException, OSError, ValueError) as e:
            # Network URLs have no modem lines
            logger.debug(f"Control lines not supported on {self.name}: {e}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as e:
            raise PortIOError(f"Close of {self.name} failed: {e}") from e
        logger.debug(f"Serial port {self.name} closed")


def list_available_ports() -> List[Dict[str, str]]:
    """
    List all available serial ports.

    Returns:
        List of port information dictionaries
    """
    ports = []
    for port in serial.tools.list_ports.comports():
        ports.append({
            "device": port.device,
            "name": port.name,
            "description": port.description,
            "hwid": port.hwid,
            "manufacturer": port.manufacturer or "Unknown",
        })
    return ports


def find_device_port() -> Optional[str]:
    """
    Auto-detect a MicroPython board's serial port.

    Returns:
        Port device path or None if not found
    """
    for port in serial.tools.list_ports.comports():
        description = (port.description or '').lower()
        manufacturer = (port.manufacturer or '').lower()
        if any(ident in description for ident in BRIDGE_IDENTIFIERS):
            logger.info(f"Auto-detected device on {port.device}")
            return port.device
        if any(ident in manufacturer for ident in ['espressif', 'wch', 'silicon labs', 'micropython']):
            logger.info(f"Auto-detected device on {port.device}")
            return port.device
    return None


async def open_serial_transport(config: SerialConfig) -> SerialTransport:
    """
    Open and configure a serial port.

    Args:
        config: Serial line configuration

    Returns:
        Opened transport

    Raises:
        PortIOError: if no port is found or the port cannot be opened
    """
    port = config.port
    if port == "auto":
        port = find_device_port()
        if not port:
            raise PortIOError("Could not auto-detect a device port")

    stop_bits = int(config.stop_bits) if float(config.stop_bits).is_integer() else config.stop_bits

    try:
        ser = serial.serial_for_url(port, do_not_open=True)
        ser.baudrate = config.baudrate
        ser.bytesize = config.data_bits
        ser.parity = config.parity.pyserial
        ser.stopbits = stop_bits
        ser.rtscts = config.flow_control == FlowControl.HARDWARE
        ser.xonxoff = config.flow_control == FlowControl.SOFTWARE
        ser.timeout = config.read_timeout_s
        ser.write_timeout = config.write_timeout_s
        ser.open()
    except (serial.SerialException, OSError, ValueError) as e:
        raise PortIOError(f"Failed to open {port}: {e}") from e

    logger.debug(
        f"Opened {port} at {config.baudrate} baud "
        f"({config.data_bits}{config.parity.value[0].upper()}{stop_bits}, flow={config.flow_control.value})"
    )
    return SerialTransport(ser)
