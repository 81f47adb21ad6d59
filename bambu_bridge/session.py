"""Live protocol session for a single printer."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

from .adapters.camera import FrameExtractor, StaticImageClient, StreamFrameClient
from .adapters.ftps import FTPSUploader
from .adapters.mqtt import DeviceConnectionError, DeviceMQTTClient
from .config import DeviceConfig
from .core import (
    POLL_BASED_MODELS,
    STATIC_IMAGE_MODELS,
    STREAMING_MODELS,
    InfoMessage,
    PrinterDescriptor,
    PrinterModel,
    PrintStatus,
    PrintTelemetry,
    decode_report,
    parse_model,
)
from .protocol import fits_auth_frame

LOGGER = logging.getLogger(__name__)

StatusCallback = Callable[[str, PrintStatus], None]
DisconnectCallback = Callable[[str], None]

_STRIPPED_EXTENSIONS = (".3mf", ".gcode")


class MessageChannel(Protocol):
    def start(self) -> None: ...

    def close(self) -> None: ...

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> None: ...

    def subscribe(self, topic: str, qos: int = 0) -> None: ...

    def set_message_handler(self, handler: Optional[Callable[[str, bytes], None]]) -> None: ...

    def register_connect_handler(self, handler: Callable[[], None]) -> None: ...

    def register_disconnect_handler(self, handler: Callable[[int], None]) -> None: ...

    def is_connected(self) -> bool: ...


class ImageSource(Protocol):
    async def capture(self) -> bytes: ...


class FileUploader(Protocol):
    async def upload(self, name: str, data: bytes) -> None: ...


def display_name(file_name: str) -> str:
    """Strip the slicer file extensions from a file name."""
    name = file_name
    for extension in _STRIPPED_EXTENSIONS:
        name = name.replace(extension, "")
    return name


class DeviceSession:
    """Owns one printer's MQTT channel, poll timer and transfer helpers.

    The session only talks to the reconciler through the two callbacks it is
    given. Both run on the event loop thread, after paho's network thread has
    handed the event over.
    """

    def __init__(
        self,
        descriptor: PrinterDescriptor,
        config: Optional[DeviceConfig] = None,
        *,
        on_status: Optional[StatusCallback] = None,
        on_disconnect: Optional[DisconnectCallback] = None,
        channel: Optional[MessageChannel] = None,
        uploader: Optional[FileUploader] = None,
        static_camera: Optional[ImageSource] = None,
        stream_camera: Optional[ImageSource] = None,
        frame_extractor: Optional[FrameExtractor] = None,
    ) -> None:
        self.descriptor = descriptor
        self.config = config or DeviceConfig()
        self._on_status = on_status
        self._on_disconnect = on_disconnect

        self._report_topic = f"device/{descriptor.serial_number}/report"
        self._request_topic = f"device/{descriptor.serial_number}/request"

        self._channel: MessageChannel = channel or DeviceMQTTClient(
            descriptor.host,
            port=self.config.mqtt_port,
            username=self.config.username,
            password=descriptor.access_token,
            client_id=f"bambu-bridge-{descriptor.id}",
            keepalive=self.config.keepalive_seconds,
            connect_timeout=self.config.connect_timeout_seconds,
            reconnect_delay=self.config.reconnect_delay_seconds,
        )
        self._uploader: FileUploader = uploader or FTPSUploader(
            descriptor.host,
            port=self.config.ftps_port,
            username=self.config.username,
            password=descriptor.access_token,
            timeout=self.config.upload_timeout_seconds,
        )
        self._static_camera: Optional[ImageSource] = static_camera
        if self._static_camera is None:
            if fits_auth_frame(descriptor.access_token):
                self._static_camera = StaticImageClient(
                    descriptor.host,
                    port=self.config.camera_port,
                    username=self.config.username,
                    access_token=descriptor.access_token,
                    read_timeout=self.config.camera_read_timeout_seconds,
                )
            else:
                LOGGER.warning(
                    "Access token of printer %s does not fit the snapshot auth frame; "
                    "camera snapshots are disabled",
                    descriptor.id,
                )
        self._stream_camera: ImageSource = stream_camera or StreamFrameClient(
            descriptor.host,
            port=self.config.rtsp_port,
            username=self.config.username,
            access_token=descriptor.access_token,
            extractor=frame_extractor,
            timeout=self.config.snapshot_timeout_seconds,
        )

        self._detected_model: Optional[PrinterModel] = None
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._started = False
        self._finished = False

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def detected_model(self) -> Optional[PrinterModel]:
        return self._detected_model

    @property
    def model(self) -> Optional[PrinterModel]:
        """Detected model once the printer reported it, else the declared one."""
        return self._detected_model or parse_model(self.descriptor.model_hint)

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def finished(self) -> bool:
        return self._finished

    def is_connected(self) -> bool:
        return not self._finished and self._channel.is_connected()

    def matches(self, descriptor: PrinterDescriptor) -> bool:
        """Whether ``descriptor`` can keep using this session."""
        return self.drift_reason(descriptor) is None

    def drift_reason(self, descriptor: PrinterDescriptor) -> Optional[str]:
        """Name the first connection field that differs, if any."""
        current = self.descriptor
        if current.access_token != descriptor.access_token:
            return "access token"
        if current.host != descriptor.host:
            return "host"
        if current.serial_number != descriptor.serial_number:
            return "serial number"
        if current.model_hint != descriptor.model_hint:
            return "model"
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Open the MQTT channel. Must be called from the event loop."""

        if self._started or self._finished:
            return
        self._started = True

        self._channel.set_message_handler(self.handle_message)
        self._channel.register_connect_handler(self._handle_connected)
        self._channel.register_disconnect_handler(self._handle_disconnected)
        self._channel.start()

    def finish(self) -> None:
        """Stop polling and close the MQTT channel. Idempotent."""

        if self._finished:
            return
        self._finished = True
        self._stop_polling()
        try:
            self._channel.close()
        except (OSError, RuntimeError):
            LOGGER.warning("Error closing channel for printer %s", self.id, exc_info=True)
        LOGGER.info("Session for printer %s finished", self.id)

    # ------------------------------------------------------------------
    # Requests (best effort: delivery is only visible in later telemetry)
    # ------------------------------------------------------------------
    def request_version(self) -> bool:
        return self._publish({"info": {"command": "get_version"}})

    def request_push_all(self) -> bool:
        return self._publish({"pushing": {"command": "pushall"}})

    def print_file(
        self,
        name: str,
        tray_mapping: Optional[Sequence[int]] = None,
        gcode_parameter: Optional[str] = None,
    ) -> bool:
        """Start printing a file previously stored with :meth:`upload_file`."""

        trays = list(tray_mapping or [])
        LOGGER.info("Starting print of %s on printer %s", name, self.id)
        return self._publish(
            {
                "print": {
                    "sequence_id": "0",
                    "command": "project_file",
                    "project_id": "0",
                    "profile_id": "0",
                    "task_id": "0",
                    "subtask_id": "0",
                    "param": gcode_parameter,
                    "subtask_name": display_name(name),
                    "url": f"ftp:///{name}",
                    "timelapse": False,
                    "bed_leveling": True,
                    "use_ams": len(trays) > 0,
                    "bed_type": "auto",
                    "ams_mapping": trays,
                    "flow_cali": False,
                    "layer_inspect": False,
                }
            }
        )

    def stop(self) -> bool:
        LOGGER.info("Stopping print on printer %s", self.id)
        return self._publish(
            {
                "print": {
                    "command": "stop",
                    "param": "",
                    "sequence_id": "0",
                    "reason": "failed",
                    "result": "failed",
                }
            }
        )

    def _publish(self, document: Dict[str, Any]) -> bool:
        if self._finished:
            return False
        try:
            self._channel.publish(self._request_topic, json.dumps(document).encode("utf-8"))
        except DeviceConnectionError as exc:
            LOGGER.debug("Publish to printer %s dropped: %s", self.id, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # File transfer and camera
    # ------------------------------------------------------------------
    async def upload_file(self, name: str, data: bytes) -> None:
        """Upload a file to the printer.

        Raises:
            UploadError: If the transfer fails for any reason.
        """
        await self._uploader.upload(name, data)

    async def get_current_image(self) -> Optional[str]:
        """Capture the current camera frame as base64 encoded JPEG.

        Returns ``None`` for models without a supported camera path.
        """

        model = self.model
        if model in STATIC_IMAGE_MODELS:
            if self._static_camera is None:
                return None
            image = await self._static_camera.capture()
        elif model in STREAMING_MODELS:
            image = await self._stream_camera.capture()
        else:
            return None
        return base64.b64encode(image).decode("ascii")

    # ------------------------------------------------------------------
    # Channel events
    # ------------------------------------------------------------------
    def handle_message(self, topic: str, payload: bytes) -> None:
        if self._finished:
            return

        try:
            message = decode_report(payload)
        except ValueError:
            LOGGER.debug("Ignoring undecodable report from printer %s", self.id)
            return

        if isinstance(message, InfoMessage):
            self._handle_info(message)
        elif isinstance(message, PrintTelemetry):
            self._emit_status(message.status)

    def _handle_info(self, message: InfoMessage) -> None:
        if message.model != self._detected_model:
            LOGGER.info("Printer %s identified as %s", self.id, message.model.value)
        self._detected_model = message.model

        if message.model in POLL_BASED_MODELS:
            self._ensure_polling()
            self.request_push_all()
        else:
            self._stop_polling()

    def _emit_status(self, status: PrintStatus) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(self.id, status)
        except Exception:
            LOGGER.exception("Status callback failed for printer %s", self.id)

    def _handle_connected(self) -> None:
        if self._finished:
            return
        try:
            self._channel.subscribe(self._report_topic)
        except DeviceConnectionError as exc:
            LOGGER.warning("Subscribe failed for printer %s: %s", self.id, exc)
        self.request_version()

    def _handle_disconnected(self, rc: int = 0) -> None:
        if self._finished:
            return
        self._stop_polling()
        if self._on_disconnect is None:
            return
        try:
            self._on_disconnect(self.id)
        except Exception:
            LOGGER.exception("Disconnect callback failed for printer %s", self.id)

    # ------------------------------------------------------------------
    # Polling for printers that do not push telemetry on their own
    # ------------------------------------------------------------------
    def _ensure_polling(self) -> None:
        if self.polling:
            return
        LOGGER.debug(
            "Polling printer %s every %.0fs", self.id, self.config.poll_interval_seconds
        )
        self._poll_task = asyncio.create_task(self._poll_loop())

    def _stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.poll_interval_seconds)
            self.request_push_all()
