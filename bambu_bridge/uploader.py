"""Periodic camera snapshot upload for one printer."""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Optional, Protocol

from .adapters.camera import SnapshotTimeoutError
from .adapters.control_plane import ControlPlaneError
from .adapters.mqtt import DeviceConnectionError
from .adapters.snapshot_resizer import SnapshotResizer
from .protocol import ProtocolError

LOGGER = logging.getLogger(__name__)


class ImageProvider(Protocol):
    id: str

    async def get_current_image(self) -> Optional[str]: ...


class ImageSink(Protocol):
    async def upload_camera_image(self, printer_id: str, image: str) -> None: ...


class CameraImageUploader:
    """Captures a frame every ``interval`` seconds and forwards it upstream.

    The next capture is scheduled only after the previous one finished, so a
    slow camera never stacks up captures.
    """

    def __init__(
        self,
        session: ImageProvider,
        sink: ImageSink,
        *,
        interval: float = 5.0,
        resizer: Optional[SnapshotResizer] = None,
    ) -> None:
        self._session = session
        self._sink = sink
        self._interval = interval
        self._resizer = resizer
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def finish(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def upload_once(self) -> bool:
        """Run one capture/upload cycle. Returns whether an image was sent."""

        printer_id = self._session.id
        try:
            image = await self._session.get_current_image()
        except (ProtocolError, SnapshotTimeoutError, DeviceConnectionError, OSError) as exc:
            LOGGER.debug("Skipping camera upload for printer %s: %s", printer_id, exc)
            return False

        if not image:
            return False

        if self._resizer is not None:
            image = await self._shrink(image)

        try:
            await self._sink.upload_camera_image(printer_id, image)
        except ControlPlaneError as exc:
            LOGGER.debug("Camera upload for printer %s failed: %s", printer_id, exc)
            return False
        return True

    async def _shrink(self, image: str) -> str:
        assert self._resizer is not None
        raw = base64.b64decode(image)
        result = await asyncio.to_thread(self._resizer.resize, raw)
        if not result.was_resized:
            return image
        return base64.b64encode(result.image_data).decode("ascii")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.upload_once()
            except Exception:
                LOGGER.exception("Camera upload cycle failed for printer %s", self._session.id)
