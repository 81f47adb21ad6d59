"""Camera snapshot capture from printers.

Two capture paths exist:

- A1/P1 series printers serve single JPEG frames on a TLS socket using the
  framing in :mod:`bambu_bridge.protocol.frames`.
- X1 series printers only expose an RTSPS live stream; a frame extractor
  (ffmpeg by default) pulls exactly one JPEG frame from it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from typing import Awaitable, Callable, Optional

from ..protocol import (
    HEADER_SIZE,
    FrameDecoder,
    FrameState,
    ProtocolError,
    encode_auth_frame,
)
from .mqtt import DeviceConnectionError

LOGGER = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024

FrameExtractor = Callable[[str, float], Awaitable[bytes]]
"""Given a stream URL and a deadline in seconds, return one JPEG frame."""


class SnapshotTimeoutError(TimeoutError):
    """Raised when a snapshot cannot be captured within its deadline."""


def _insecure_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class StaticImageClient:
    """Fetches a single JPEG frame from the printer snapshot port."""

    def __init__(
        self,
        host: str,
        *,
        port: int,
        username: str,
        access_token: str,
        connect_timeout: float = 5.0,
        read_timeout: float = 5.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self._access_token = access_token

    async def capture(self) -> bytes:
        """Return the raw JPEG bytes of the current camera frame.

        Raises:
            DeviceConnectionError: If the socket cannot be opened or drops.
            ProtocolError: If the printer answers with malformed frames.
            SnapshotTimeoutError: If the printer stalls.
        """

        auth_frame = encode_auth_frame(self.username, self._access_token)

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, ssl=_insecure_context()),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SnapshotTimeoutError(
                f"Timed out connecting to camera on {self.host}:{self.port}"
            ) from exc
        except OSError as exc:
            raise DeviceConnectionError(
                f"Camera connection to {self.host}:{self.port} failed: {exc}"
            ) from exc

        decoder = FrameDecoder()
        try:
            writer.write(auth_frame)
            await writer.drain()

            while not decoder.done:
                chunk = await asyncio.wait_for(
                    self._read_chunk(reader, decoder), timeout=self.read_timeout
                )
                if not chunk:
                    raise DeviceConnectionError(
                        f"Camera on {self.host} closed the connection mid-frame"
                    )
                decoder.feed(chunk)
        except asyncio.TimeoutError as exc:
            raise SnapshotTimeoutError(f"Camera on {self.host} stopped sending") from exc
        except OSError as exc:
            if isinstance(exc, DeviceConnectionError):
                raise
            raise DeviceConnectionError(f"Camera read from {self.host} failed: {exc}") from exc
        finally:
            writer.close()
            with contextlib.suppress(OSError, ssl.SSLError, asyncio.TimeoutError):
                await asyncio.wait_for(writer.wait_closed(), timeout=1.0)

        assert decoder.image is not None
        LOGGER.debug("Captured %d byte frame from %s", len(decoder.image), self.host)
        return decoder.image

    @staticmethod
    async def _read_chunk(reader: asyncio.StreamReader, decoder: FrameDecoder) -> bytes:
        # The header arrives as its own 16 byte record; read it exactly so
        # payload bytes coalesced behind it are not mistaken for a bad header.
        if decoder.state is FrameState.AWAITING_HEADER:
            try:
                return await reader.readexactly(HEADER_SIZE)
            except asyncio.IncompleteReadError as exc:
                if exc.partial:
                    raise ProtocolError(
                        f"unexpected data format received ({len(exc.partial)} byte header)"
                    ) from exc
                return b""
        return await reader.read(READ_CHUNK_SIZE)


def build_stream_url(host: str, *, port: int, username: str, access_token: str) -> str:
    return f"rtsps://{username}:{access_token}@{host}:{port}/streaming/live/1"


class FfmpegFrameExtractor:
    """Pulls one frame out of an RTSP(S) stream with an ffmpeg subprocess."""

    def __init__(self, ffmpeg_path: str = "ffmpeg") -> None:
        self.ffmpeg_path = ffmpeg_path

    def build_arguments(self, url: str, timeout: float = 5.0) -> list[str]:
        return [
            self.ffmpeg_path,
            "-loglevel",
            "error",
            "-rtsp_transport",
            "tcp",
            "-timeout",
            str(int(timeout * 1_000_000)),
            "-i",
            url,
            "-frames:v",
            "1",
            "-q:v",
            "2",
            "-f",
            "mjpeg",
            "pipe:1",
        ]

    async def __call__(self, url: str, timeout: float) -> bytes:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_arguments(url, timeout),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise DeviceConnectionError(f"Unable to launch ffmpeg: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise SnapshotTimeoutError(
                f"Frame extraction did not finish within {timeout:.0f}s"
            ) from exc
        finally:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if process.returncode != 0 or not stdout:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise ProtocolError(
                f"ffmpeg exited with code {process.returncode}: {detail or 'no frame'}"
            )
        return stdout


class StreamFrameClient:
    """Captures one frame from the printer RTSPS stream via an extractor."""

    def __init__(
        self,
        host: str,
        *,
        port: int,
        username: str,
        access_token: str,
        extractor: Optional[FrameExtractor] = None,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.timeout = timeout
        self._url = build_stream_url(
            host, port=port, username=username, access_token=access_token
        )
        self._extractor: FrameExtractor = extractor or FfmpegFrameExtractor()

    async def capture(self) -> bytes:
        """Return one JPEG frame from the live stream.

        The extractor owns the deadline; a plain ``TimeoutError`` escaping it
        is reported as :class:`SnapshotTimeoutError`.
        """

        try:
            return await self._extractor(self._url, self.timeout)
        except SnapshotTimeoutError:
            raise
        except asyncio.TimeoutError as exc:
            raise SnapshotTimeoutError(
                f"Frame extraction from {self.host} timed out"
            ) from exc
