"""
MicroPython Device Link - Command Line Entry Point
===================================================
Talk to a MicroPython board over a serial port.

Commands:
- ports:    list serial ports
- console:  interactive pass-through to the friendly REPL
- run:      execute a local file on the device
- exec:     execute a code string on the device
- put:      write a local text file to the device filesystem
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

# Add src to path for imports
SRC_DIR = Path(__file__).parent
PROJECT_ROOT = SRC_DIR.parent
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from serial_link import LinkConfig, list_available_ports, load_config
from repl_engine import DeviceLink, make_dirs_script, parent_dirs, write_file_script

DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "device_link.yaml"


def write_output(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class DeviceLinkApplication:
    """
    Command-line front end around a DeviceLink.

    Loads configuration, owns the link and runs one command against it.
    """

    def __init__(self, config: LinkConfig):
        self.config = config
        self.link = DeviceLink(config)
        self._shutdown_event = asyncio.Event()

        self.link.console.on_data(write_output)
        self.link.on_busy_change(self._on_busy)

    def _on_busy(self, status) -> None:
        if status is None:
            logger.debug("Device idle")
        else:
            logger.debug(f"Device busy: {status.reason} ({status.detail})")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def start(self) -> None:
        await self.link.connect()

    async def stop(self) -> None:
        await self.link.disconnect()

    async def run_code(self, code: str, wait_s: float) -> None:
        stats = await self.link.run_code(code, on_output=write_output, wait_s=wait_s)
        logger.debug(f"Sent {stats.bytes_sent} bytes in {stats.chunks} chunks")

    async def put_file(self, local_path: Path, remote_path: str) -> None:
        content = local_path.read_text(encoding='utf-8')

        async with await self.link.open_session("sync") as session:
            session.on_data(write_output)
            for directory in parent_dirs(remote_path):
                await session.write_terminal(f"mkdir {directory}\r\n")
                await session.send(make_dirs_script(directory))
            await session.write_terminal(f"put {local_path} -> {remote_path}\r\n")
            await session.send(write_file_script(remote_path, content))

        logger.info(f"Wrote {len(content.encode('utf-8'))} bytes to {remote_path}")

    async def interactive_console(self) -> None:
        loop = asyncio.get_running_loop()
        print("Console attached. Ctrl+C or end of input to quit.")

        shutdown = asyncio.ensure_future(self._shutdown_event.wait())
        try:
            while True:
                line_future = loop.run_in_executor(None, sys.stdin.readline)
                done, _ = await asyncio.wait(
                    {line_future, shutdown}, return_when=asyncio.FIRST_COMPLETED
                )
                if shutdown in done:
                    break
                line = line_future.result()
                if not line:
                    break
                await self.link.console.send(line.rstrip('\n') + '\r')
        finally:
            shutdown.cancel()


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging."""
    logger.remove()  # Remove default handler

    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True
    )

    if log_file:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="7 days",
            level="DEBUG"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="MicroPython Device Link - run code and manage files on a board over serial"
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--port", "-p",
        default=None,
        help="Serial port or pyserial URL (overrides the config file)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("ports", help="List serial ports")
    commands.add_parser("console", help="Interactive REPL console")

    run_cmd = commands.add_parser("run", help="Run a local file on the device")
    run_cmd.add_argument("file", type=Path)
    run_cmd.add_argument("--wait", type=float, default=1.0, help="Seconds to collect output")

    exec_cmd = commands.add_parser("exec", help="Run a code string on the device")
    exec_cmd.add_argument("code")
    exec_cmd.add_argument("--wait", type=float, default=1.0, help="Seconds to collect output")

    put_cmd = commands.add_parser("put", help="Copy a text file to the device")
    put_cmd.add_argument("local", type=Path)
    put_cmd.add_argument("remote")

    return parser


async def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    if args.port:
        config.serial.port = args.port

    setup_logging("DEBUG" if args.verbose else config.log_level, config.log_file)

    if args.command == "ports":
        for port in list_available_ports():
            print(f"{port['device']:<24} {port['description']} [{port['manufacturer']}]")
        return 0

    app = DeviceLinkApplication(config)

    def signal_handler(sig, frame):
        logger.info("Received shutdown signal")
        app.request_shutdown()

    signal.signal(signal.SIGTERM, signal_handler)
    if args.command == "console":
        signal.signal(signal.SIGINT, signal_handler)

    try:
        await app.start()

        if args.command == "console":
            await app.interactive_console()
        elif args.command == "run":
            await app.run_code(args.file.read_text(encoding='utf-8'), args.wait)
        elif args.command == "exec":
            await app.run_code(args.code + "\n", args.wait)
        elif args.command == "put":
            await app.put_file(args.local, args.remote)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        await app.stop()

    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
