"""
REPL Engine - Bulk Transfer
============================
Sends a program buffer to a device in raw REPL.

Two paths:
- Plain raw mode: write the payload, then end-of-data. Nothing is awaited.
- Raw-paste mode: write at most one window at a time and wait for the
  device's flow-control byte before refilling the window.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from loguru import logger

from serial_link import ProtocolTimings, RoutingMode, SessionCapability, TransferStats, TransferTimeout, Transport

from . import constants
from .router import ReadRouter


class BulkTransferEngine:
    """
    Flow-controlled sender.

    In raw-paste mode protocol capture stays engaged from before the first
    payload write until the compile acknowledgement, so flow-control bytes
    are never decoded as program output. Once ``owns_router`` reports the
    link has moved on, a finishing transfer leaves routing alone.
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

    async def send(self, payload: bytes, capability: SessionCapability) -> TransferStats:
        """
        Transfer one program buffer.

        Args:
            payload: Encoded program text
            capability: Result of session negotiation

        Returns:
            Transfer statistics

        Raises:
            TransferTimeout: the window ran out and no flow byte arrived
            PortIOError: transport write failed
        """
        if not capability.use_raw_paste:
            return await self._send_raw(payload)
        return await self._send_raw_paste(payload, capability.window_size)

    async def _send_raw(self, payload: bytes) -> TransferStats:
        if payload:
            await self.transport.write(payload)
        await self.transport.write(constants.END_OF_DATA)

        logger.trace(f"Raw transfer of {len(payload)} bytes written")
        return TransferStats(
            total_bytes=len(payload),
            bytes_sent=len(payload),
            chunks=1 if payload else 0,
        )

    async def _send_raw_paste(self, payload: bytes, window_size: int) -> TransferStats:
        # A zero window moves one byte per grant. The grant that trails the
        # window in the probe reply covers the first byte.
        window = max(window_size, 1)
        stats = TransferStats(total_bytes=len(payload))

        self.router.begin_capture(reset=True)
        try:
            remaining = window
            offset = 0
            while offset < len(payload):
                if remaining == 0:
                    flow = await self._wait_flow_control()
                    stats.flow_waits += 1
                    if flow == constants.FLOW_ABORT:
                        stats.aborted = True
                        logger.warning(
                            f"Device aborted raw-paste transfer after {offset}/{len(payload)} bytes"
                        )
                        break
                    remaining = window
                    continue

                chunk = payload[offset:offset + remaining]
                await self.transport.write(chunk)
                offset += len(chunk)
                remaining -= len(chunk)
                stats.chunks += 1
                logger.trace(f"Raw-paste chunk {stats.chunks}: {len(chunk)} bytes, {remaining} left in window")

            stats.bytes_sent = offset
            await self.transport.write(constants.END_OF_DATA)
            stats.acknowledged = await self._wait_acknowledgement()
        except BaseException:
            if self.owns_router():
                self.router.abandon_capture(RoutingMode.SESSION)
            raise

        if self.owns_router():
            await self.router.release_capture(RoutingMode.SESSION)
        else:
            logger.debug("Link changed during transfer, leaving routing untouched")

        logger.debug(
            f"Raw-paste transfer: {stats.bytes_sent}/{stats.total_bytes} bytes "
            f"in {stats.chunks} chunks, {stats.flow_waits} flow waits"
        )
        return stats

    async def _wait_flow_control(self) -> int:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timings.flow_control_timeout_s

        while True:
            remaining = deadline - loop.time()
            byte = await self.router.accumulator.take(1, max(remaining, 0))
            if byte is None:
                raise TransferTimeout(
                    f"No flow-control byte within {self.timings.flow_control_timeout_s}s"
                )
            value = byte[0]
            if value in (constants.FLOW_CONTINUE, constants.FLOW_ABORT):
                return value
            logger.debug(f"Ignoring unexpected flow-control byte 0x{value:02x}")

    async def _wait_acknowledgement(self) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timings.ack_timeout_s

        while True:
            remaining = deadline - loop.time()
            byte = await self.router.accumulator.take(1, max(remaining, 0))
            if byte is None:
                logger.warning(f"No raw-paste acknowledgement within {self.timings.ack_timeout_s}s")
                return False
            # Window grants that arrived after the last chunk are stale now
            if byte[0] == constants.FLOW_CONTINUE:
                continue
            if byte[0] != constants.END_OF_DATA[0]:
                logger.debug(f"Unexpected acknowledgement byte 0x{byte[0]:02x}")
            return True
