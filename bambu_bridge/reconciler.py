"""Fleet reconciliation between the control plane and printer sessions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Set,
)

from .adapters.camera import FfmpegFrameExtractor
from .adapters.control_plane import ControlPlaneError, UpdateResponse
from .adapters.ftps import UploadError
from .adapters.snapshot_resizer import SnapshotResizer
from .config import CameraConfig, DeviceConfig, ReconcilerConfig
from .constants import ERROR_UPLOAD_FAILED
from .core import Command, CommandFormatError, CommandKind, PrinterDescriptor, PrintStatus
from .health import CONTROL_PLANE, HealthReporter
from .session import DeviceSession, DisconnectCallback, StatusCallback
from .uploader import CameraImageUploader

LOGGER = logging.getLogger(__name__)


class ControlPlane(Protocol):
    async def init(self) -> List[PrinterDescriptor]: ...

    async def update(self, report: Mapping[str, Any]) -> UpdateResponse: ...

    async def upload_camera_image(self, printer_id: str, image: str) -> None: ...


SessionFactory = Callable[
    [PrinterDescriptor, StatusCallback, DisconnectCallback], DeviceSession
]


class FleetReconciler:
    """Keeps one live :class:`DeviceSession` per printer the control plane wants.

    The session registry, the last-known status map and the pending error map
    are owned by this instance and only mutated from the event loop thread.
    Sessions reach back in exclusively through their status and disconnect
    callbacks.
    """

    def __init__(
        self,
        client: ControlPlane,
        *,
        config: Optional[ReconcilerConfig] = None,
        device_config: Optional[DeviceConfig] = None,
        camera_config: Optional[CameraConfig] = None,
        session_factory: Optional[SessionFactory] = None,
        health: Optional[HealthReporter] = None,
    ) -> None:
        self._client = client
        self._config = config or ReconcilerConfig()
        self._device_config = device_config or DeviceConfig()
        self._camera_config = camera_config or CameraConfig()
        self._session_factory = session_factory or self._default_session
        self._health = health
        self._resizer: Optional[SnapshotResizer] = None
        if self._camera_config.max_width > 0:
            self._resizer = SnapshotResizer(
                self._camera_config.max_width, self._camera_config.jpeg_quality
            )

        self._sessions: Dict[str, DeviceSession] = {}
        self._uploaders: Dict[str, CameraImageUploader] = {}
        self._statuses: Dict[str, PrintStatus] = {}
        self._errors: Dict[str, str] = {}

        self._loop_task: Optional[asyncio.Task[None]] = None
        self._background: Set[asyncio.Task[Any]] = set()
        self._reporting = False

    @property
    def sessions(self) -> Mapping[str, DeviceSession]:
        return self._sessions

    @property
    def statuses(self) -> Mapping[str, PrintStatus]:
        return self._statuses

    @property
    def errors(self) -> Mapping[str, str]:
        return self._errors

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Fetch the initial printer set, then start the reconciliation loop."""

        await self.bootstrap()
        if not self.running:
            self._loop_task = asyncio.create_task(self._run())
        LOGGER.info(
            "Reconciler active with %d printer(s), reporting every %.0fs",
            len(self._sessions),
            self._config.update_interval_seconds,
        )

    async def stop(self) -> None:
        task = self._loop_task
        self._loop_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        pending = list(self._background)
        for background in pending:
            background.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._background.clear()

        for printer_id in list(self._sessions):
            self.remove_session(printer_id)

    async def bootstrap(self) -> None:
        delay = self._config.init_retry_seconds
        while True:
            try:
                printers = await self._client.init()
            except ControlPlaneError as exc:
                LOGGER.warning("Init request failed (%s); retrying in %.0fs", exc, delay)
                await self._report_health(False, str(exc))
                await asyncio.sleep(delay)
                continue
            break

        LOGGER.info("Init succeeded with %d printer(s)", len(printers))
        await self._report_health(True, None)
        for descriptor in printers:
            self.add_session(descriptor)

    async def _run(self) -> None:
        interval = self._config.update_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if self._reporting:
                LOGGER.debug("Previous report still in flight; skipping tick")
                continue
            self._spawn(self._tick())

    async def _tick(self) -> None:
        try:
            await self.reconcile_once()
        except Exception:
            LOGGER.exception("Reconciliation cycle failed")

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    async def reconcile_once(self) -> bool:
        """Run one report/apply/diff cycle. Returns False if it was skipped or failed."""

        if self._reporting:
            return False
        self._reporting = True
        try:
            report, pending_errors = self._take_report()
            try:
                response = await self._client.update(report)
            except ControlPlaneError as exc:
                self._restore_errors(pending_errors)
                LOGGER.warning("Status report failed: %s", exc)
                await self._report_health(False, str(exc))
                return False

            self.apply_commands(response.commands)
            self.apply_desired(response.printers)
            await self._report_health(True, None)
            return True
        finally:
            self._reporting = False

    def build_report(self) -> Dict[str, Dict[str, Any]]:
        """Merge last-known statuses with pending errors into an ``/update`` body."""

        report: Dict[str, Dict[str, Any]] = {}
        for printer_id, status in self._statuses.items():
            entry = status.to_report()
            entry["error"] = self._errors.get(printer_id)
            report[printer_id] = entry
        for printer_id, error in self._errors.items():
            if printer_id not in report:
                report[printer_id] = {"error": error}
        return report

    def _take_report(self) -> tuple[Dict[str, Dict[str, Any]], Dict[str, str]]:
        report = self.build_report()
        pending = self._errors
        self._errors = {}
        return report, pending

    def _restore_errors(self, pending: Dict[str, str]) -> None:
        # Errors recorded while the report was in flight are newer and win.
        merged = dict(pending)
        merged.update(self._errors)
        self._errors = merged

    def apply_commands(self, commands: Iterable[Command]) -> None:
        for command in commands:
            session = self._sessions.get(command.printer_id)
            if session is None:
                LOGGER.warning(
                    "Ignoring %s command for unknown printer %s",
                    command.kind.value,
                    command.printer_id,
                )
                continue

            if command.kind is CommandKind.START:
                self._spawn(self._start_print(session, command))
            elif command.kind is CommandKind.STOP:
                session.stop()

    async def _start_print(self, session: DeviceSession, command: Command) -> None:
        assert command.file_name is not None
        try:
            data = command.decode_file()
            await session.upload_file(command.file_name, data)
        except (UploadError, CommandFormatError) as exc:
            LOGGER.warning("Upload to printer %s failed: %s", command.printer_id, exc)
            self.record_error(command.printer_id, ERROR_UPLOAD_FAILED)
            return

        if session.finished:
            LOGGER.warning(
                "Printer %s was removed before %s could start",
                command.printer_id,
                command.file_name,
            )
            return
        session.print_file(
            command.file_name, command.tray_mapping, command.gcode_parameter
        )

    def record_error(self, printer_id: str, code: str) -> None:
        self._errors[printer_id] = code

    def apply_desired(self, printers: Iterable[PrinterDescriptor]) -> None:
        """Diff the desired printer set against the live sessions.

        A drifted session is only removed here; the next cycle sees it as
        missing and creates the replacement.
        """

        desired: Dict[str, PrinterDescriptor] = {}
        for descriptor in printers:
            desired[descriptor.id] = descriptor
            session = self._sessions.get(descriptor.id)
            if session is None:
                self.add_session(descriptor)
                continue

            reason = session.drift_reason(descriptor)
            if reason is not None:
                LOGGER.info("Removing printer %s due to %s change", descriptor.id, reason)
                self.remove_session(descriptor.id)

        for printer_id in list(self._sessions):
            if printer_id not in desired:
                LOGGER.info("Removing printer %s (no longer desired)", printer_id)
                self.remove_session(printer_id)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    def add_session(self, descriptor: PrinterDescriptor) -> DeviceSession:
        if descriptor.id in self._sessions:
            self.remove_session(descriptor.id)

        LOGGER.info("Creating session for printer %s (%s)", descriptor.id, descriptor.host)
        session = self._session_factory(descriptor, self._on_status, self._on_disconnect)
        self._sessions[descriptor.id] = session
        session.start()

        if self._camera_config.enabled:
            uploader = CameraImageUploader(
                session,
                self._client,
                interval=self._camera_config.interval_seconds,
                resizer=self._resizer,
            )
            self._uploaders[descriptor.id] = uploader
            uploader.start()
        return session

    def remove_session(self, printer_id: str) -> None:
        session = self._sessions.pop(printer_id, None)
        uploader = self._uploaders.pop(printer_id, None)
        if uploader is not None:
            uploader.finish()
        if session is not None:
            session.finish()
        self._statuses.pop(printer_id, None)

    def _default_session(
        self,
        descriptor: PrinterDescriptor,
        on_status: StatusCallback,
        on_disconnect: DisconnectCallback,
    ) -> DeviceSession:
        return DeviceSession(
            descriptor,
            self._device_config,
            on_status=on_status,
            on_disconnect=on_disconnect,
            frame_extractor=FfmpegFrameExtractor(self._device_config.ffmpeg_path),
        )

    def _on_status(self, printer_id: str, status: PrintStatus) -> None:
        if printer_id in self._sessions:
            self._statuses[printer_id] = status

    def _on_disconnect(self, printer_id: str) -> None:
        self._statuses.pop(printer_id, None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _report_health(self, healthy: bool, detail: Optional[str]) -> None:
        if self._health is None:
            return
        await self._health.update(CONTROL_PLANE, healthy, detail)
        await self._health.sync_printers(
            {printer_id: session.is_connected() for printer_id, session in self._sessions.items()}
        )
