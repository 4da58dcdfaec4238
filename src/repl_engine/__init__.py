"""
REPL Engine Package
====================
Device session transport engine for MicroPython boards:
- Read router multiplexing console and session traffic
- Raw REPL handshake with raw-paste negotiation
- Flow-controlled bulk transfer with plain raw fallback
- Console pass-through suppressed while a session is live
"""

from .accumulator import ByteAccumulator
from .router import ReadRouter
from .negotiator import SessionNegotiator, NegotiationState
from .transfer import BulkTransferEngine
from .console import ConsoleShell
from .session import DeviceSession
from .engine import DeviceLink
from .scripts import escape_python_string, parent_dirs, make_dirs_script, write_file_script

__all__ = [
    "ByteAccumulator",
    "ReadRouter",
    "SessionNegotiator",
    "NegotiationState",
    "BulkTransferEngine",
    "ConsoleShell",
    "DeviceSession",
    "DeviceLink",
    "escape_python_string",
    "parent_dirs",
    "make_dirs_script",
    "write_file_script",
]
