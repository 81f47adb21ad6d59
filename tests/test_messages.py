"""Tests for printer report decoding."""

import json

import pytest

from bambu_bridge.core import (
    InfoMessage,
    PrinterModel,
    PrintTelemetry,
    UnknownMessage,
    classify_report,
    decode_report,
)


def test_info_report_detects_model():
    payload = json.dumps(
        {
            "info": {
                "command": "get_version",
                "module": [
                    {"name": "mc", "sn": "irrelevant"},
                    {"name": "ota", "sn": "03900A123456789"},
                ],
            }
        }
    )

    message = decode_report(payload.encode("utf-8"))

    assert isinstance(message, InfoMessage)
    assert message.model is PrinterModel.A1M
    assert message.ota_serial == "03900A123456789"


def test_info_report_without_ota_module_defaults():
    message = classify_report({"info": {"module": [{"name": "mc"}]}})
    assert isinstance(message, InfoMessage)
    assert message.model is PrinterModel.X1C


def test_print_report_is_normalized():
    message = classify_report(
        {
            "print": {
                "gcode_state": "RUNNING",
                "mc_percent": 42,
                "mc_remaining_time": 17,
                "gcode_file": "part.gcode",
                "bed_temper": 60.0,
                "nozzle_temper": 220.5,
                "ams": {"ams": [{"id": "0", "tray": []}]},
                "total_layer_num": 120,
                "layer_num": 50,
                "print_error": 0,
                "hw_switch_state": 1,
            }
        }
    )

    assert isinstance(message, PrintTelemetry)
    status = message.status
    assert status.state == "running"
    assert status.progress_percent == 42
    assert status.remaining_time_minutes == 17
    assert status.file_name == "part.gcode"
    assert status.ams_slots == [{"id": "0", "tray": []}]
    assert status.total_layers == 120
    assert status.current_layer == 50
    assert status.filament_sensor_triggered is True

    report = status.to_report()
    assert report["state"] == "running"
    assert report["progress"] == 42
    assert report["filament_sensor"] is True


def test_print_report_with_missing_fields():
    message = classify_report({"print": {"gcode_state": "IDLE"}})

    assert isinstance(message, PrintTelemetry)
    assert message.status.state == "idle"
    assert message.status.ams_slots == []
    assert message.status.total_layers == 0
    assert message.status.filament_sensor_triggered is False


def test_print_report_without_state_is_dropped():
    message = classify_report({"print": {"command": "push_status", "mc_percent": 5}})
    assert isinstance(message, UnknownMessage)


def test_other_reports_are_unknown():
    assert isinstance(classify_report({"system": {}}), UnknownMessage)
    assert isinstance(decode_report(b"[1, 2]"), UnknownMessage)


def test_invalid_json_raises():
    with pytest.raises(ValueError):
        decode_report(b"{not json")
