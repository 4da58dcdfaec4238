"""
Tests for configuration and state models.
"""

import pytest
import serial
from pydantic import ValidationError

from serial_link import (
    BusyStatus,
    FlowControl,
    LinkConfig,
    Parity,
    ProtocolTimings,
    SerialConfig,
    SessionCapability,
    load_config,
)


class TestSerialConfig:
    """Serial line settings."""

    def test_defaults_match_micropython_boards(self):
        config = SerialConfig()

        assert config.baudrate == 115200
        assert config.data_bits == 8
        assert config.parity == Parity.NONE
        assert config.stop_bits == 1
        assert config.flow_control == FlowControl.NONE

    def test_invalid_stop_bits_rejected(self):
        with pytest.raises(ValidationError):
            SerialConfig(stop_bits=3)

    def test_invalid_baudrate_rejected(self):
        with pytest.raises(ValidationError):
            SerialConfig(baudrate=0)

    def test_parity_maps_to_pyserial(self):
        assert Parity.NONE.pyserial == serial.PARITY_NONE
        assert Parity.EVEN.pyserial == serial.PARITY_EVEN


class TestStateModels:
    """Busy status and negotiated capability."""

    def test_window_size_is_u16(self):
        assert SessionCapability(use_raw_paste=True, window_size=0xFFFF).window_size == 65535
        with pytest.raises(ValidationError):
            SessionCapability(use_raw_paste=True, window_size=0x10000)
        with pytest.raises(ValidationError):
            SessionCapability(window_size=-1)

    def test_busy_status_is_immutable(self):
        status = BusyStatus(reason="sync")

        assert status.detail is None
        with pytest.raises(ValidationError):
            status.reason = "run"


class TestLoadConfig:
    """YAML configuration loading."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config == LinkConfig()

    def test_none_gives_defaults(self):
        assert load_config(None).serial.port == "auto"

    def test_yaml_values_are_validated(self, tmp_path):
        path = tmp_path / "link.yaml"
        path.write_text(
            "serial:\n"
            "  port: /dev/ttyUSB0\n"
            "  baudrate: 921600\n"
            "  parity: even\n"
            "timings:\n"
            "  enter_raw_timeout_s: 3.5\n"
            "log_level: debug\n"
        )

        config = load_config(path)

        assert config.serial.port == "/dev/ttyUSB0"
        assert config.serial.baudrate == 921600
        assert config.serial.parity == Parity.EVEN
        assert config.timings.enter_raw_timeout_s == 3.5
        assert config.timings.probe_timeout_s == ProtocolTimings().probe_timeout_s
        assert config.log_level == "DEBUG"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path) == LinkConfig()

    def test_invalid_yaml_values_raise(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("serial:\n  data_bits: 9\n")

        with pytest.raises(ValidationError):
            load_config(path)
