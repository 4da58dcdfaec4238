"""
Serial Link - Data Models
==========================
Pydantic models for link configuration and the state the engine exposes
to observers.

These models validate everything that is read from configuration files
before it reaches the serial port.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

import serial
import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator


class ConnectionStatus(str, Enum):
    """Device connection status."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class RoutingMode(str, Enum):
    """Where the read router delivers incoming bytes."""
    CONSOLE = "console"
    SESSION = "session"
    PROTOCOL_CAPTURE = "protocol_capture"


class SessionState(str, Enum):
    """Lifecycle of a device session."""
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class Parity(str, Enum):
    """Serial parity setting."""
    NONE = "none"
    EVEN = "even"
    ODD = "odd"
    MARK = "mark"
    SPACE = "space"

    @property
    def pyserial(self) -> str:
        return {
            Parity.NONE: serial.PARITY_NONE,
            Parity.EVEN: serial.PARITY_EVEN,
            Parity.ODD: serial.PARITY_ODD,
            Parity.MARK: serial.PARITY_MARK,
            Parity.SPACE: serial.PARITY_SPACE,
        }[self]


class FlowControl(str, Enum):
    """Serial flow control setting."""
    NONE = "none"
    HARDWARE = "hardware"
    SOFTWARE = "software"


# =============================================================================
# STATE MODELS
# =============================================================================

class BusyStatus(BaseModel):
    """
    Published while a session owns the wire.

    Observers (status bars, sync planners) use it to show why the device
    is unavailable for console input.
    """
    reason: str
    detail: Optional[str] = None

    model_config = {"frozen": True}


class SessionCapability(BaseModel):
    """Result of raw-paste negotiation."""
    use_raw_paste: bool = False
    window_size: int = Field(0, ge=0, le=0xFFFF, description="Raw-paste window (u16)")


class TransferStats(BaseModel):
    """Summary of one bulk transfer."""
    total_bytes: int = 0
    bytes_sent: int = 0
    chunks: int = 0
    flow_waits: int = 0
    aborted: bool = False
    acknowledged: bool = False


# =============================================================================
# CONFIGURATION MODELS
# =============================================================================

class SerialConfig(BaseModel):
    """Serial line configuration."""
    port: str = "auto"
    baudrate: int = Field(115200, gt=0)
    data_bits: int = Field(8, ge=5, le=8)
    parity: Parity = Parity.NONE
    stop_bits: float = 1
    flow_control: FlowControl = FlowControl.NONE

    read_timeout_s: float = Field(0.0, ge=0)
    write_timeout_s: float = Field(2.0, gt=0)

    @field_validator("stop_bits")
    @classmethod
    def check_stop_bits(cls, v: float) -> float:
        if v not in (1, 1.5, 2):
            raise ValueError(f"stop_bits must be 1, 1.5 or 2, got {v}")
        return v


class ProtocolTimings(BaseModel):
    """
    Delays and timeouts used by the REPL engine, in seconds.

    Defaults match what MicroPython boards need on a USB-UART bridge.
    """
    settle_delay_s: float = Field(0.1, ge=0)
    wake_delay_s: float = Field(0.2, ge=0)
    wake_step_delay_s: float = Field(0.1, ge=0)

    poll_interval_s: float = Field(0.01, gt=0)

    enter_raw_timeout_s: float = Field(2.0, gt=0)
    probe_timeout_s: float = Field(1.0, gt=0)
    legacy_prompt_timeout_s: float = Field(1.0, gt=0)
    flow_control_timeout_s: float = Field(5.0, gt=0)
    ack_timeout_s: float = Field(5.0, gt=0)

    close_drain_delay_s: float = Field(0.2, ge=0)
    close_settle_delay_s: float = Field(0.1, ge=0)


class LinkConfig(BaseModel):
    """Top-level configuration file contents."""
    serial: SerialConfig = Field(default_factory=SerialConfig)
    timings: ProtocolTimings = Field(default_factory=ProtocolTimings)

    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


def load_config(path: Optional[Path]) -> LinkConfig:
    """
    Load link configuration from a YAML file.

    Args:
        path: Path to the YAML file, or None for defaults

    Returns:
        Validated configuration; defaults if the file does not exist
    """
    if path is None:
        return LinkConfig()

    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return LinkConfig()

    with open(path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    config = LinkConfig.model_validate(raw)
    logger.info(f"Configuration loaded from {path}")
    return config
