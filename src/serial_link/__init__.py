"""
Serial Link Package
====================
Provides the byte transport and shared models for talking to a
MicroPython board:
- pyserial transport (device paths and pyserial URLs)
- Port discovery
- Configuration and state models
- Error hierarchy

The REPL engine depends only on the Transport protocol defined here.
"""

from .errors import (
    DeviceLinkError,
    NotConnected,
    SessionAlreadyActive,
    HandshakeTimeout,
    PortIOError,
    DeviceAbort,
    TransferTimeout,
    SessionClosed,
)
from .models import (
    ConnectionStatus,
    RoutingMode,
    SessionState,
    Parity,
    FlowControl,
    BusyStatus,
    SessionCapability,
    TransferStats,
    SerialConfig,
    ProtocolTimings,
    LinkConfig,
    load_config,
)
from .transport import (
    Transport,
    TransportFactory,
    SerialTransport,
    list_available_ports,
    find_device_port,
    open_serial_transport,
)

__all__ = [
    "DeviceLinkError",
    "NotConnected",
    "SessionAlreadyActive",
    "HandshakeTimeout",
    "PortIOError",
    "DeviceAbort",
    "TransferTimeout",
    "SessionClosed",
    "ConnectionStatus",
    "RoutingMode",
    "SessionState",
    "Parity",
    "FlowControl",
    "BusyStatus",
    "SessionCapability",
    "TransferStats",
    "SerialConfig",
    "ProtocolTimings",
    "LinkConfig",
    "load_config",
    "Transport",
    "TransportFactory",
    "SerialTransport",
    "list_available_ports",
    "find_device_port",
    "open_serial_transport",
]
