"""
Tests for the read router's mode-based delivery.
"""

import pytest

from serial_link import RoutingMode
from repl_engine import ByteAccumulator, ReadRouter

from conftest import FakeTransport


class TestReadRouter:
    """Tests for chunk routing between console, session and capture."""

    def setup_method(self):
        self.router = ReadRouter(ByteAccumulator(poll_interval_s=0.001))
        self.console = []
        self.session = []
        self.router.set_console_callback(self.console.append)
        self.router.set_session_callback(self.session.append)

    @pytest.mark.asyncio
    async def test_console_mode_delivers_to_console(self):
        await self.router.feed(b">>> ")

        assert self.console == [">>> "]
        assert self.session == []
        assert len(self.router.accumulator) == 0

    @pytest.mark.asyncio
    async def test_session_mode_delivers_to_session(self):
        self.router.mode = RoutingMode.SESSION
        await self.router.feed(b"OK")

        assert self.session == ["OK"]
        assert self.console == []

    @pytest.mark.asyncio
    async def test_capture_never_reaches_text_consumers(self):
        self.router.begin_capture()
        await self.router.feed(b"R\x01")
        await self.router.feed(b"\x40\x00")

        assert self.console == []
        assert self.session == []
        assert self.router.accumulator.peek() == b"R\x01\x40\x00"
        assert self.router.bytes_captured == 4

    @pytest.mark.asyncio
    async def test_release_capture_hands_over_leftovers(self):
        """Bytes queued behind a protocol byte go to the new consumer."""
        self.router.begin_capture()
        await self.router.feed(b"\x04hello\r\n")
        assert await self.router.accumulator.take(1, 0.01) == b"\x04"

        await self.router.release_capture(RoutingMode.SESSION)

        assert self.router.mode == RoutingMode.SESSION
        assert self.session == ["hello\r\n"]
        assert len(self.router.accumulator) == 0

    @pytest.mark.asyncio
    async def test_release_capture_keeps_split_character(self):
        """A UTF-8 sequence cut between leftover and next chunk decodes whole."""
        self.router.begin_capture()
        await self.router.feed(b"\x04caf\xc3")
        assert await self.router.accumulator.take(1, 0.01) == b"\x04"

        await self.router.release_capture(RoutingMode.SESSION)
        await self.router.feed(b"\xa9\r\n")

        assert "".join(self.session) == "café\r\n"
        assert "�" not in "".join(self.session)

    @pytest.mark.asyncio
    async def test_abandon_capture_discards(self):
        self.router.begin_capture()
        await self.router.feed(b"junk")

        self.router.abandon_capture()

        assert self.router.mode == RoutingMode.CONSOLE
        assert len(self.router.accumulator) == 0
        assert self.console == []

    def test_mode_setter_refuses_capture_transitions(self):
        with pytest.raises(ValueError):
            self.router.mode = RoutingMode.PROTOCOL_CAPTURE

        self.router.begin_capture()
        with pytest.raises(ValueError):
            self.router.mode = RoutingMode.CONSOLE

    @pytest.mark.asyncio
    async def test_split_utf8_character_is_reassembled(self):
        data = "µPython".encode("utf-8")
        await self.router.feed(data[:1])
        await self.router.feed(data[1:])

        assert "".join(self.console) == "µPython"

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self):
        received = []

        async def consumer(text):
            received.append(text)

        self.router.set_console_callback(consumer)
        await self.router.feed(b"abc")

        assert received == ["abc"]

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_routing(self):
        def broken(text):
            raise RuntimeError("consumer failed")

        self.router.set_console_callback(broken)
        await self.router.feed(b"first")

        self.router.set_console_callback(self.console.append)
        await self.router.feed(b"second")

        assert self.console == ["second"]

    @pytest.mark.asyncio
    async def test_run_stops_at_end_of_input(self):
        transport = FakeTransport()
        transport.feed(b">>> ")
        await transport.close()

        await self.router.run(transport)

        assert self.console == [">>> "]
