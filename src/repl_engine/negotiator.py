"""
REPL Engine - Session Negotiator
=================================
Handshake that moves the device from the friendly prompt into raw REPL
and probes for raw-paste support.

State machine:

    IDLE -> ENTER_RAW_REPL -> PROBE_RAW_PASTE -> RAW_PASTE_CONFIRMED
                                              -> RAW_PASTE_DECLINED
                                              -> LEGACY_DEVICE
         -> ACTIVE

Only a missing raw REPL banner is fatal. Anything unexpected during the
probe falls back to plain raw mode.
"""

from __future__ import annotations

import struct
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from serial_link import HandshakeTimeout, ProtocolTimings, RoutingMode, SessionCapability, Transport

from . import constants
from .router import ReadRouter


class NegotiationState(str, Enum):
    """Negotiator progress, kept for diagnostics."""
    IDLE = "idle"
    ENTER_RAW_REPL = "enter_raw_repl"
    PROBE_RAW_PASTE = "probe_raw_paste"
    RAW_PASTE_CONFIRMED = "raw_paste_confirmed"
    RAW_PASTE_DECLINED = "raw_paste_declined"
    LEGACY_DEVICE = "legacy_device"
    ACTIVE = "active"
    FAILED = "failed"


class SessionNegotiator:
    """
    Runs the raw REPL entry and raw-paste probe over a transport.

    Protocol capture is engaged for the whole handshake. On success the
    router is handed to the session consumer; on failure it goes back to
    the console with the capture buffer discarded. Routing is left alone
    once ``owns_router`` reports the link has moved on (disconnect or a
    newer connection).
    """

    def __init__(
        self,
        transport: Transport,
        router: ReadRouter,
        timings: ProtocolTimings,
        owns_router: Optional[Callable[[], bool]] = None,
    ):
        self.transport = transport
        self.router = router
        self.timings = timings
        self.owns_router = owns_router or (lambda: True)
        self.state = NegotiationState.IDLE

    async def negotiate(self) -> SessionCapability:
        """
        Enter raw REPL and detect raw-paste support.

        Returns:
            Negotiated capability

        Raises:
            HandshakeTimeout: raw REPL banner never seen
            PortIOError: transport write failed
        """
        self.router.begin_capture(reset=True)
        try:
            await self._enter_raw_repl()
            capability = await self._probe_raw_paste()
        except BaseException:
            self.state = NegotiationState.FAILED
            if self.owns_router():
                self.router.abandon_capture(RoutingMode.CONSOLE)
            raise

        if self.owns_router():
            await self.router.release_capture(RoutingMode.SESSION)
        else:
            logger.debug("Link changed during handshake, leaving routing untouched")
        self.state = NegotiationState.ACTIVE
        return capability

    async def _enter_raw_repl(self) -> None:
        self.state = NegotiationState.ENTER_RAW_REPL
        await self.transport.write(constants.ENTER_RAW)

        banner = await self.router.accumulator.take_until(
            constants.RAW_PROMPT, self.timings.enter_raw_timeout_s
        )
        if banner is None:
            captured = self.router.accumulator.peek()
            raise HandshakeTimeout(
                f"No raw REPL prompt within {self.timings.enter_raw_timeout_s}s", captured
            )
        if constants.RAW_BANNER not in banner:
            raise HandshakeTimeout(f"Unexpected raw REPL banner: {banner!r}", banner.encode('utf-8'))

        logger.debug("Entered raw REPL")

    async def _probe_raw_paste(self) -> SessionCapability:
        self.state = NegotiationState.PROBE_RAW_PASTE
        accumulator = self.router.accumulator
        await self.transport.write(constants.RAW_PASTE_PROBE)

        response = await accumulator.take(2, self.timings.probe_timeout_s)

        if response == constants.RAW_PASTE_ACK:
            window_bytes = await accumulator.take(2, self.timings.probe_timeout_s)
            if window_bytes is None:
                logger.warning("Raw-paste acknowledged without a window size, using plain raw mode")
                self.state = NegotiationState.LEGACY_DEVICE
                return SessionCapability(use_raw_paste=False)

            window_size = struct.unpack('<H', window_bytes)[0]
            flow = await accumulator.take(1, self.timings.probe_timeout_s)
            if flow is None:
                logger.debug("No initial flow-control byte after raw-paste window")

            self.state = NegotiationState.RAW_PASTE_CONFIRMED
            logger.debug(f"Raw-paste supported, window size {window_size}")
            return SessionCapability(use_raw_paste=True, window_size=window_size)

        if response == constants.RAW_PASTE_DECLINE:
            self.state = NegotiationState.RAW_PASTE_DECLINED
            logger.debug("Raw-paste declined by device, using plain raw mode")
            return SessionCapability(use_raw_paste=False)

        if response == constants.LEGACY_PREFIX:
            # Old firmware echoes its raw REPL banner instead of answering
            await accumulator.take_until(constants.RAW_PROMPT, self.timings.legacy_prompt_timeout_s)
            self.state = NegotiationState.LEGACY_DEVICE
            logger.debug("Legacy device without raw-paste, using plain raw mode")
            return SessionCapability(use_raw_paste=False)

        if response is None:
            logger.warning(
                f"No response to raw-paste probe within {self.timings.probe_timeout_s}s, "
                "using plain raw mode"
            )
        else:
            logger.warning(f"Unrecognized raw-paste probe response {response!r}, using plain raw mode")
        self.state = NegotiationState.LEGACY_DEVICE
        return SessionCapability(use_raw_paste=False)
