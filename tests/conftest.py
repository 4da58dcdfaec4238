"""
Shared fixtures: an in-memory transport that behaves like a MicroPython
board on the other end of the wire.
"""

import asyncio
import struct
import sys
from pathlib import Path
from typing import List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from serial_link import LinkConfig, PortIOError, ProtocolTimings, SerialConfig
from repl_engine import DeviceLink

RAW_BANNER = b"raw REPL; CTRL-B to exit\r\n>"
FRIENDLY_BANNER = b"\r\nMicroPython v1.22.0 on 2024-01-01; ESP32 module\r\n>>> "
SOFT_REBOOT = b"MPY: soft reboot\r\n>>> "


def raw_paste_reply(window: int) -> bytes:
    """Probe reply of a board with raw-paste enabled."""
    return b"R\x01" + struct.pack("<H", window) + b"\x01"


class FakeTransport:
    """
    Scripted MicroPython board.

    Records every write and answers the protocol bytes it recognises.
    Replies are queued and picked up by the engine's read loop.
    """

    def __init__(
        self,
        banner: Optional[bytes] = RAW_BANNER,
        probe_reply: Optional[bytes] = b"R\x00",
        window: int = 0,
        grant: bool = True,
        abort_after_grants: Optional[int] = None,
        ack: Optional[bytes] = b"\x04",
        program_output: bytes = b"1\r\n",
    ):
        self.banner = banner
        self.probe_reply = probe_reply
        self.window = window
        self.grant = grant
        self.abort_after_grants = abort_after_grants
        self.ack = ack
        self.program_output = program_output

        self.writes: List[bytes] = []
        self.paste_chunks: List[bytes] = []
        self.control_lines = None
        self.closed = False
        self.fail_writes = False

        self.state = "friendly"
        self._received_in_window = 0
        self._grants = 0
        self._aborted = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    # --- device side ---

    def feed(self, data: bytes) -> None:
        self._incoming.put_nowait(data)

    def _respond(self, data: bytes) -> None:
        if self.state == "friendly":
            if data == b"\x01":
                self.state = "raw"
                if self.banner is not None:
                    self.feed(self.banner)
            elif data == b"\x04":
                self.feed(SOFT_REBOOT)
            return

        if self.state == "raw":
            if data == b"\x05A\x01":
                if self.probe_reply is None:
                    return
                if self.probe_reply.startswith(b"R\x01"):
                    self.state = "paste"
                    self._received_in_window = 0
                    self._grants = 0
                    self._aborted = False
                self.feed(self.probe_reply)
            elif data == b"\x04":
                self.feed(b"OK" + self.program_output + b"\x04\x04>")
            elif data == b"\x02":
                self.state = "friendly"
                self.feed(FRIENDLY_BANNER)
            return

        if self.state == "paste":
            if data == b"\x04":
                self.state = "raw"
                if self.ack is not None:
                    self.feed(self.ack + self.program_output + b"\x04\x04>")
                return
            self.paste_chunks.append(data)
            if self._aborted or not self.grant:
                return
            self._received_in_window += len(data)
            step = max(self.window, 1)
            while self._received_in_window >= step:
                self._received_in_window -= step
                self._grants += 1
                if self.abort_after_grants is not None and self._grants > self.abort_after_grants:
                    self._aborted = True
                    self.feed(b"\x04")
                    return
                self.feed(b"\x01")

    # --- Transport protocol ---

    async def read_chunk(self) -> Optional[bytes]:
        if self.closed and self._incoming.empty():
            return None
        return await self._incoming.get()

    async def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise PortIOError("simulated write failure")
        self.writes.append(bytes(data))
        self._respond(bytes(data))

    def set_control_lines(self, ready: bool, request: bool) -> None:
        self.control_lines = (ready, request)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    # --- helpers ---

    def writes_since(self, marker: bytes) -> List[bytes]:
        """Writes after the last occurrence of marker."""
        index = len(self.writes) - 1 - self.writes[::-1].index(marker)
        return self.writes[index + 1:]


FAST_TIMINGS = ProtocolTimings(
    settle_delay_s=0,
    wake_delay_s=0,
    wake_step_delay_s=0,
    poll_interval_s=0.001,
    enter_raw_timeout_s=0.2,
    probe_timeout_s=0.05,
    legacy_prompt_timeout_s=0.1,
    flow_control_timeout_s=0.2,
    ack_timeout_s=0.2,
    close_drain_delay_s=0.02,
    close_settle_delay_s=0.02,
)


def make_link(fake: FakeTransport, timings: ProtocolTimings = FAST_TIMINGS) -> DeviceLink:
    """Build a DeviceLink whose transport factory returns fake."""
    async def factory(config: SerialConfig) -> FakeTransport:
        return fake

    config = LinkConfig(serial=SerialConfig(port="fake://board"), timings=timings)
    return DeviceLink(config, transport_factory=factory)


async def settle(seconds: float = 0.02) -> None:
    """Give the read loop time to deliver queued replies."""
    await asyncio.sleep(seconds)


@pytest.fixture
def fast_timings():
    return FAST_TIMINGS


@pytest.fixture
def fake_board():
    """Board without raw-paste (declines the probe)."""
    return FakeTransport()


@pytest.fixture
def paste_board():
    """Board with raw-paste and a 64 byte window."""
    return FakeTransport(probe_reply=raw_paste_reply(64), window=64)
