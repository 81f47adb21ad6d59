"""Wire protocols spoken by the printers."""

from .frames import (
    AUTH_FRAME_SIZE,
    HEADER_SIZE,
    JPEG_END,
    JPEG_START,
    FrameDecoder,
    FrameState,
    ProtocolError,
    encode_auth_frame,
    fits_auth_frame,
)

__all__ = [
    "AUTH_FRAME_SIZE",
    "HEADER_SIZE",
    "JPEG_END",
    "JPEG_START",
    "FrameDecoder",
    "FrameState",
    "ProtocolError",
    "encode_auth_frame",
    "fits_auth_frame",
]
