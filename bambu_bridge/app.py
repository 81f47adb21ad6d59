"""Main application entry-point for bambu-bridge."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from . import constants
from .adapters import ControlPlaneClient
from .config import BridgeConfig, load_config
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .reconciler import ControlPlane, FleetReconciler

LOGGER = logging.getLogger(__name__)


class BambuBridgeApp:
    """Coordinates startup and shutdown of the bridge.

    The control-plane client can be injected for testing; by default one is
    built from the ``[control_plane]`` configuration section.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        *,
        control_plane: Optional[ControlPlane] = None,
    ) -> None:
        self._config = config or load_config()
        self._control_plane = control_plane
        self._owned_client: Optional[ControlPlaneClient] = None
        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._reconciler: Optional[FleetReconciler] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def reconciler(self) -> Optional[FleetReconciler]:
        return self._reconciler

    async def run(self) -> None:
        """Run until :meth:`request_shutdown` is called or the task is cancelled."""

        self._shutdown_event = asyncio.Event()
        LOGGER.info("bambu-bridge starting with config: %s", self._config.path)

        client = self._control_plane
        if client is None:
            self._owned_client = ControlPlaneClient(self._config.control_plane)
            client = self._owned_client

        await self._start_health_server()

        self._reconciler = FleetReconciler(
            client,
            config=self._config.reconciler,
            device_config=self._config.device,
            camera_config=self._config.camera,
            health=self._health,
        )

        try:
            await self._reconciler.start()
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("bambu-bridge received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server
            await self._health.update("health-endpoint", True, None)

    async def _stop_services(self) -> None:
        if self._reconciler is not None:
            await self._reconciler.stop()
        if self._owned_client is not None:
            await self._owned_client.close()
            self._owned_client = None
        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None
        LOGGER.info("bambu-bridge stopped")

    @classmethod
    def start(cls, config: Optional[BridgeConfig] = None) -> int:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
            max_bytes=instance._config.logging.max_bytes,
            backup_count=instance._config.logging.backup_count,
        )

        if not instance._config.control_plane.api_key:
            LOGGER.error(
                "No control-plane API key configured. Set [control_plane] api_key "
                "or the %s environment variable.",
                constants.API_KEY_ENV,
            )
            return 1

        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("bambu-bridge received shutdown signal")
        return 0
