"""Domain models shared by sessions and the reconciler."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class PrinterModel(str, Enum):
    X1C = "X1C"
    X1 = "X1"
    X1E = "X1E"
    P1P = "P1P"
    P1S = "P1S"
    A1 = "A1"
    A1M = "A1M"


DEFAULT_MODEL = PrinterModel.X1C

# First three characters of the OTA module serial number.
SERIAL_PREFIX_MODELS: Dict[str, PrinterModel] = {
    "00M": PrinterModel.X1C,
    "00W": PrinterModel.X1,
    "03W": PrinterModel.X1E,
    "01S": PrinterModel.P1P,
    "01P": PrinterModel.P1S,
    "030": PrinterModel.A1,
    "039": PrinterModel.A1M,
}

# Printers that only report telemetry when asked with ``pushall``.
POLL_BASED_MODELS = frozenset(
    {PrinterModel.P1S, PrinterModel.P1P, PrinterModel.A1, PrinterModel.A1M}
)

# Printers serving single JPEG frames on the snapshot port.
STATIC_IMAGE_MODELS = POLL_BASED_MODELS

# Printers exposing an RTSPS live stream.
STREAMING_MODELS = frozenset({PrinterModel.X1C, PrinterModel.X1, PrinterModel.X1E})


def detect_model(serial_number: str) -> PrinterModel:
    """Map an OTA serial number to its printer model, defaulting to X1C."""
    return SERIAL_PREFIX_MODELS.get(serial_number[:3], DEFAULT_MODEL)


def parse_model(value: Optional[str]) -> Optional[PrinterModel]:
    if not value:
        return None
    try:
        return PrinterModel(value)
    except ValueError:
        return None


class CommandKind(str, Enum):
    START = "start"
    STOP = "stop"


class CommandFormatError(ValueError):
    """Raised when a control-plane payload cannot be decoded."""


@dataclass(frozen=True, slots=True)
class PrinterDescriptor:
    """Connection details for one printer, as declared by the control plane."""

    id: str
    host: str
    access_token: str
    serial_number: str
    model_hint: Optional[str] = None

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> "PrinterDescriptor":
        try:
            options = payload.get("options") or {}
            return cls(
                id=str(payload["id"]),
                host=str(options["host"]),
                access_token=str(options["access_token"]),
                serial_number=str(options["serial_number"]),
                model_hint=payload.get("model"),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise CommandFormatError(f"Invalid printer descriptor: {exc!r}") from exc


@dataclass(slots=True)
class PrintStatus:
    """Normalized printer status built from a print telemetry report."""

    state: str
    progress_percent: Optional[float] = None
    remaining_time_minutes: Optional[float] = None
    file_name: Optional[str] = None
    bed_temperature: Optional[float] = None
    nozzle_temperature: Optional[float] = None
    ams_slots: List[Any] = field(default_factory=list)
    total_layers: int = 0
    current_layer: int = 0
    print_error: Optional[int] = None
    filament_sensor_triggered: bool = False

    def to_report(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "progress": self.progress_percent,
            "remaining_time": self.remaining_time_minutes,
            "file_name": self.file_name,
            "bed_temperature": self.bed_temperature,
            "nozzle_temperature": self.nozzle_temperature,
            "ams": list(self.ams_slots),
            "total_layers": self.total_layers,
            "current_layer": self.current_layer,
            "print_error": self.print_error,
            "filament_sensor": self.filament_sensor_triggered,
        }


@dataclass(frozen=True, slots=True)
class Command:
    kind: CommandKind
    printer_id: str
    file_name: Optional[str] = None
    file_data: Optional[str] = None
    tray_mapping: List[int] = field(default_factory=list)
    gcode_parameter: Optional[str] = None

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> "Command":
        try:
            kind = CommandKind(payload["command"])
            printer_id = str(payload["printerId"])
        except (KeyError, ValueError, TypeError) as exc:
            raise CommandFormatError(f"Invalid command: {exc!r}") from exc

        if kind is CommandKind.STOP:
            return cls(kind=kind, printer_id=printer_id)

        file_name = payload.get("fileName")
        if not file_name:
            raise CommandFormatError("Start command is missing fileName")

        trays = payload.get("trays") or []
        if not isinstance(trays, list):
            raise CommandFormatError("Start command trays must be a list")

        return cls(
            kind=kind,
            printer_id=printer_id,
            file_name=str(file_name),
            file_data=payload.get("fileData") or "",
            tray_mapping=list(trays),
            gcode_parameter=payload.get("gcodeFile"),
        )

    def decode_file(self) -> bytes:
        """Decode the base64 file payload carried by a start command."""
        try:
            return base64.b64decode(self.file_data or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CommandFormatError(f"Invalid file payload: {exc}") from exc
