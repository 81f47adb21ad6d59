"""Decoding of printer report messages.

Printers publish two kinds of documents on ``device/{serial}/report``: the
answer to ``get_version`` (an ``info`` section listing firmware modules) and
print telemetry (a ``print`` section). Everything else is ignored.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from .models import DEFAULT_MODEL, PrinterModel, PrintStatus, detect_model


@dataclass(frozen=True, slots=True)
class InfoMessage:
    model: PrinterModel
    ota_serial: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PrintTelemetry:
    status: PrintStatus


@dataclass(frozen=True, slots=True)
class UnknownMessage:
    reason: str


ReportMessage = Union[InfoMessage, PrintTelemetry, UnknownMessage]


def decode_report(payload: bytes | str) -> ReportMessage:
    """Decode a raw report payload.

    Raises:
        ValueError: If the payload is not valid JSON.
    """

    document = json.loads(payload)
    if not isinstance(document, Mapping):
        return UnknownMessage("not an object")
    return classify_report(document)


def classify_report(document: Mapping[str, Any]) -> ReportMessage:
    info = document.get("info")
    if isinstance(info, Mapping) and isinstance(info.get("module"), list):
        return _decode_info(info)

    section = document.get("print")
    if isinstance(section, Mapping):
        if section.get("gcode_state") is None:
            return UnknownMessage("print report without gcode_state")
        return PrintTelemetry(normalize_print_status(section))

    return UnknownMessage("no info or print section")


def _decode_info(info: Mapping[str, Any]) -> InfoMessage:
    for module in info["module"]:
        if isinstance(module, Mapping) and module.get("name") == "ota":
            serial = str(module.get("sn") or "")
            return InfoMessage(model=detect_model(serial), ota_serial=serial)
    return InfoMessage(model=DEFAULT_MODEL)


def normalize_print_status(section: Mapping[str, Any]) -> PrintStatus:
    ams = section.get("ams")
    ams_slots = ams.get("ams") if isinstance(ams, Mapping) else None

    return PrintStatus(
        state=str(section["gcode_state"]).lower(),
        progress_percent=section.get("mc_percent"),
        remaining_time_minutes=section.get("mc_remaining_time"),
        file_name=section.get("gcode_file"),
        bed_temperature=section.get("bed_temper"),
        nozzle_temperature=section.get("nozzle_temper"),
        ams_slots=list(ams_slots or []),
        total_layers=section.get("total_layer_num") or 0,
        current_layer=section.get("layer_num") or 0,
        print_error=section.get("print_error"),
        filament_sensor_triggered=section.get("hw_switch_state") == 1,
    )
