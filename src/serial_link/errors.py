"""
Serial Link - Errors
=====================
Exception hierarchy shared by the transport layer and the REPL engine.
"""

from __future__ import annotations


class DeviceLinkError(Exception):
    """Base class for all device link failures."""


class NotConnected(DeviceLinkError):
    """Raised when an operation needs an open connection and there is none."""

    def __init__(self, operation: str = "operation"):
        super().__init__(f"Cannot perform {operation}: not connected")
        self.operation = operation


class SessionAlreadyActive(DeviceLinkError):
    """Raised when a second session is requested while one is still live."""

    def __init__(self, active_reason: str, requested_reason: str):
        super().__init__(
            f"Session '{requested_reason}' rejected: session '{active_reason}' is active"
        )
        self.active_reason = active_reason
        self.requested_reason = requested_reason


class HandshakeTimeout(DeviceLinkError):
    """Raised when the raw REPL prompt was never observed."""

    def __init__(self, message: str, captured: bytes = b""):
        super().__init__(message)
        self.captured = captured


class PortIOError(DeviceLinkError):
    """Underlying transport read, write or open failure."""


class DeviceAbort(DeviceLinkError):
    """The device sent a flow-abort byte in the middle of a transfer."""

    def __init__(self, bytes_sent: int, total_bytes: int):
        super().__init__(
            f"Device aborted transfer after {bytes_sent}/{total_bytes} bytes"
        )
        self.bytes_sent = bytes_sent
        self.total_bytes = total_bytes


class TransferTimeout(DeviceLinkError):
    """No flow-control byte arrived while the send window was exhausted."""


class SessionClosed(DeviceLinkError):
    """Raised when using a session that is no longer active."""
