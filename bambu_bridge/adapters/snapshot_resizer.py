"""Downscaling of camera snapshots before upload.

X1 series streams deliver 1080p frames, far more than a fleet dashboard
thumbnail needs. Frames wider than the configured width are resized
(preserving aspect ratio) and re-encoded as JPEG.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Tuple

from PIL import Image

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ResizeResult:
    image_data: bytes
    original_size: Tuple[int, int]
    processed_size: Tuple[int, int]
    was_resized: bool


class SnapshotResizer:
    """Shrinks JPEG frames to at most ``max_width`` pixels wide.

    Frames that are already narrow enough, or that Pillow cannot decode, are
    returned unchanged.
    """

    def __init__(self, max_width: int, jpeg_quality: int = 85) -> None:
        self._max_width = max_width
        self._jpeg_quality = jpeg_quality

    @property
    def max_width(self) -> int:
        return self._max_width

    @property
    def jpeg_quality(self) -> int:
        return self._jpeg_quality

    def resize(self, image_data: bytes) -> ResizeResult:
        try:
            img = Image.open(io.BytesIO(image_data))
            width, height = img.size

            if width <= self._max_width:
                return ResizeResult(image_data, (width, height), (width, height), False)

            new_size = (self._max_width, max(1, int(height * self._max_width / width)))
            if img.mode != "RGB":
                img = img.convert("RGB")
            resized = img.resize(new_size, Image.Resampling.LANCZOS)

            buffer = io.BytesIO()
            resized.save(buffer, format="JPEG", quality=self._jpeg_quality, optimize=True)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            LOGGER.warning("Snapshot resize failed, uploading original: %s", exc)
            return ResizeResult(image_data, (0, 0), (0, 0), False)

        processed = buffer.getvalue()
        LOGGER.debug(
            "Snapshot resized: %dx%d -> %dx%d, %d -> %d bytes",
            width,
            height,
            new_size[0],
            new_size[1],
            len(image_data),
            len(processed),
        )
        return ResizeResult(processed, (width, height), new_size, True)
