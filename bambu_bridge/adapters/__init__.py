"""Adapter modules for external integrations."""

from .camera import (
    FfmpegFrameExtractor,
    FrameExtractor,
    SnapshotTimeoutError,
    StaticImageClient,
    StreamFrameClient,
)
from .control_plane import ControlPlaneClient, ControlPlaneError, UpdateResponse
from .ftps import FTPSUploader, UploadError
from .mqtt import DeviceConnectionError, DeviceMQTTClient
from .snapshot_resizer import ResizeResult, SnapshotResizer

__all__ = [
    "ControlPlaneClient",
    "ControlPlaneError",
    "DeviceConnectionError",
    "DeviceMQTTClient",
    "FTPSUploader",
    "FfmpegFrameExtractor",
    "FrameExtractor",
    "ResizeResult",
    "SnapshotResizer",
    "SnapshotTimeoutError",
    "StaticImageClient",
    "StreamFrameClient",
    "UpdateResponse",
    "UploadError",
]
