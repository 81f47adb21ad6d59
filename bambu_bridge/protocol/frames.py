"""Framing for the printer camera snapshot protocol.

The snapshot service on A1/P1 series printers speaks a tiny binary protocol
over TLS: the client writes an 80 byte auth frame, the printer answers with a
16 byte header whose first four bytes hold the little-endian payload length,
followed by the JPEG payload itself.
"""

from __future__ import annotations

import struct
from enum import Enum
from typing import Optional

AUTH_FRAME_SIZE = 80
HEADER_SIZE = 16
FIELD_SIZE = 32

JPEG_START = b"\xff\xd8\xff\xe0"
JPEG_END = b"\xff\xd9"

_AUTH_PREFIX = struct.Struct("<IIII")
_HEADER_LENGTH = struct.Struct("<I")


class ProtocolError(ValueError):
    """Raised when the printer sends data that does not follow the framing."""


class FrameState(str, Enum):
    AWAITING_HEADER = "awaiting_header"
    AWAITING_PAYLOAD = "awaiting_payload"
    COMPLETE = "complete"
    FAILED = "failed"


def fits_auth_frame(access_token: str) -> bool:
    """Whether ``access_token`` can be carried in the auth frame token field."""
    try:
        return len(access_token.encode("ascii")) <= FIELD_SIZE
    except UnicodeEncodeError:
        return False


def encode_auth_frame(username: str, access_token: str) -> bytes:
    """Build the auth frame sent right after the TLS handshake.

    The username is truncated to the field width. An access token that does
    not fit raises ``ValueError``; callers must validate it beforehand.
    """

    token_bytes = access_token.encode("ascii")
    if len(token_bytes) > FIELD_SIZE:
        raise ValueError(
            f"Access token must be at most {FIELD_SIZE} bytes, got {len(token_bytes)}"
        )
    user_bytes = username.encode("ascii")[:FIELD_SIZE]

    return (
        _AUTH_PREFIX.pack(0x40, 0x3000, 0, 0)
        + user_bytes.ljust(FIELD_SIZE, b"\0")
        + token_bytes.ljust(FIELD_SIZE, b"\0")
    )


class FrameDecoder:
    """Reduces the chunks of one snapshot response into a single JPEG image.

    A decoder is good for exactly one retrieval attempt. Once it reaches
    ``COMPLETE`` or ``FAILED`` any further chunk is ignored.
    """

    def __init__(self) -> None:
        self._state = FrameState.AWAITING_HEADER
        self._expected = 0
        self._buffer = bytearray()
        self._image: Optional[bytes] = None

    @property
    def state(self) -> FrameState:
        return self._state

    @property
    def expected_length(self) -> int:
        return self._expected

    @property
    def image(self) -> Optional[bytes]:
        return self._image

    @property
    def done(self) -> bool:
        return self._state in (FrameState.COMPLETE, FrameState.FAILED)

    def feed(self, chunk: bytes) -> FrameState:
        """Consume one received chunk and return the resulting state.

        Raises:
            ProtocolError: If the header chunk has the wrong size or the
                payload is not bounded by the JPEG markers.
        """

        if self.done:
            return self._state

        if self._state is FrameState.AWAITING_HEADER:
            if len(chunk) != HEADER_SIZE:
                self._fail()
                raise ProtocolError(
                    f"unexpected data format received ({len(chunk)} byte header)"
                )
            (self._expected,) = _HEADER_LENGTH.unpack_from(chunk, 0)
            self._state = FrameState.AWAITING_PAYLOAD
            if self._expected == 0:
                self._validate()
            return self._state

        self._buffer.extend(chunk)
        if len(self._buffer) >= self._expected:
            del self._buffer[self._expected :]
            self._validate()
        return self._state

    def _validate(self) -> None:
        payload = bytes(self._buffer)
        if not (payload.startswith(JPEG_START) and payload.endswith(JPEG_END)):
            self._fail()
            raise ProtocolError("format error: missing start/end markers")
        self._image = payload
        self._state = FrameState.COMPLETE
        self._buffer.clear()

    def _fail(self) -> None:
        self._state = FrameState.FAILED
        self._buffer.clear()
