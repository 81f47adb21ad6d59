"""Core primitives for bambu-bridge."""

from .messages import (
    InfoMessage,
    PrintTelemetry,
    ReportMessage,
    UnknownMessage,
    classify_report,
    decode_report,
    normalize_print_status,
)
from .models import (
    DEFAULT_MODEL,
    POLL_BASED_MODELS,
    SERIAL_PREFIX_MODELS,
    STATIC_IMAGE_MODELS,
    STREAMING_MODELS,
    Command,
    CommandFormatError,
    CommandKind,
    PrinterDescriptor,
    PrinterModel,
    PrintStatus,
    detect_model,
    parse_model,
)

__all__ = [
    "DEFAULT_MODEL",
    "POLL_BASED_MODELS",
    "SERIAL_PREFIX_MODELS",
    "STATIC_IMAGE_MODELS",
    "STREAMING_MODELS",
    "Command",
    "CommandFormatError",
    "CommandKind",
    "InfoMessage",
    "PrintStatus",
    "PrintTelemetry",
    "PrinterDescriptor",
    "PrinterModel",
    "ReportMessage",
    "UnknownMessage",
    "classify_report",
    "decode_report",
    "detect_model",
    "normalize_print_status",
    "parse_model",
]
