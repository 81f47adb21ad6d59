"""Configuration loader for bambu-bridge."""

from __future__ import annotations

import os
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class ControlPlaneConfig:
    base_url: str = constants.DEFAULT_API_BASE_URL
    api_key: Optional[str] = None
    timeout_seconds: float = 5.0


@dataclass(slots=True)
class ReconcilerConfig:
    update_interval_seconds: float = 5.0
    init_retry_seconds: float = 30.0


@dataclass(slots=True)
class DeviceConfig:
    username: str = constants.DEVICE_USERNAME
    mqtt_port: int = constants.DEFAULT_MQTT_PORT
    camera_port: int = constants.DEFAULT_CAMERA_PORT
    ftps_port: int = constants.DEFAULT_FTPS_PORT
    rtsp_port: int = constants.DEFAULT_RTSP_PORT
    keepalive_seconds: int = 60
    connect_timeout_seconds: float = 2.0
    reconnect_delay_seconds: float = 1.0
    poll_interval_seconds: float = 15.0
    upload_timeout_seconds: float = 1800.0
    snapshot_timeout_seconds: float = 10.0
    camera_read_timeout_seconds: float = 5.0
    ffmpeg_path: str = "ffmpeg"


@dataclass(slots=True)
class CameraConfig:
    enabled: bool = True
    interval_seconds: float = 5.0
    max_width: int = 0
    jpeg_quality: int = 85


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH
    log_network: bool = False
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class BridgeConfig:
    control_plane: ControlPlaneConfig
    reconciler: ReconcilerConfig
    device: DeviceConfig
    camera: CameraConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def load_config(path: Optional[Path] = None) -> BridgeConfig:
    """Load configuration from disk, applying defaults where necessary.

    The control-plane API key may also come from the ``BAMBU_BRIDGE_API_KEY``
    environment variable, which takes precedence over the file.
    """

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "control_plane": {
                "base_url": constants.DEFAULT_API_BASE_URL,
                "timeout_seconds": "5.0",
            },
            "reconciler": {
                "update_interval_seconds": "5.0",
                "init_retry_seconds": "30.0",
            },
            "device": {
                "username": constants.DEVICE_USERNAME,
                "mqtt_port": str(constants.DEFAULT_MQTT_PORT),
                "camera_port": str(constants.DEFAULT_CAMERA_PORT),
                "ftps_port": str(constants.DEFAULT_FTPS_PORT),
                "rtsp_port": str(constants.DEFAULT_RTSP_PORT),
                "keepalive_seconds": "60",
                "connect_timeout_seconds": "2.0",
                "reconnect_delay_seconds": "1.0",
                "poll_interval_seconds": "15.0",
                "upload_timeout_seconds": "1800",
                "snapshot_timeout_seconds": "10.0",
                "camera_read_timeout_seconds": "5.0",
                "ffmpeg_path": "ffmpeg",
            },
            "camera": {
                "enabled": "true",
                "interval_seconds": "5.0",
                "max_width": "0",
                "jpeg_quality": "85",
            },
            "logging": {
                "level": "INFO",
                "path": str(constants.DEFAULT_LOG_PATH),
                "log_network": "false",
                "max_bytes": str(5 * 1024 * 1024),
                "backup_count": "3",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    env_api_key = os.environ.get(constants.API_KEY_ENV)
    if env_api_key:
        parser.set("control_plane", "api_key", env_api_key)

    control_plane = ControlPlaneConfig(
        base_url=parser.get("control_plane", "base_url"),
        api_key=parser.get("control_plane", "api_key", fallback=None),
        timeout_seconds=max(
            0.1, parser.getfloat("control_plane", "timeout_seconds", fallback=5.0)
        ),
    )

    reconciler = ReconcilerConfig(
        update_interval_seconds=max(
            0.1,
            parser.getfloat("reconciler", "update_interval_seconds", fallback=5.0),
        ),
        init_retry_seconds=max(
            0.1, parser.getfloat("reconciler", "init_retry_seconds", fallback=30.0)
        ),
    )

    device_defaults = DeviceConfig()

    device = DeviceConfig(
        username=parser.get("device", "username", fallback=device_defaults.username),
        mqtt_port=parser.getint(
            "device", "mqtt_port", fallback=device_defaults.mqtt_port
        ),
        camera_port=parser.getint(
            "device", "camera_port", fallback=device_defaults.camera_port
        ),
        ftps_port=parser.getint(
            "device", "ftps_port", fallback=device_defaults.ftps_port
        ),
        rtsp_port=parser.getint(
            "device", "rtsp_port", fallback=device_defaults.rtsp_port
        ),
        keepalive_seconds=max(
            1,
            parser.getint(
                "device",
                "keepalive_seconds",
                fallback=device_defaults.keepalive_seconds,
            ),
        ),
        connect_timeout_seconds=parser.getfloat(
            "device",
            "connect_timeout_seconds",
            fallback=device_defaults.connect_timeout_seconds,
        ),
        reconnect_delay_seconds=max(
            1.0,
            parser.getfloat(
                "device",
                "reconnect_delay_seconds",
                fallback=device_defaults.reconnect_delay_seconds,
            ),
        ),
        poll_interval_seconds=max(
            0.1,
            parser.getfloat(
                "device",
                "poll_interval_seconds",
                fallback=device_defaults.poll_interval_seconds,
            ),
        ),
        upload_timeout_seconds=parser.getfloat(
            "device",
            "upload_timeout_seconds",
            fallback=device_defaults.upload_timeout_seconds,
        ),
        snapshot_timeout_seconds=parser.getfloat(
            "device",
            "snapshot_timeout_seconds",
            fallback=device_defaults.snapshot_timeout_seconds,
        ),
        camera_read_timeout_seconds=parser.getfloat(
            "device",
            "camera_read_timeout_seconds",
            fallback=device_defaults.camera_read_timeout_seconds,
        ),
        ffmpeg_path=parser.get(
            "device", "ffmpeg_path", fallback=device_defaults.ffmpeg_path
        ),
    )

    camera = CameraConfig(
        enabled=parser.getboolean("camera", "enabled", fallback=True),
        interval_seconds=max(
            0.1, parser.getfloat("camera", "interval_seconds", fallback=5.0)
        ),
        max_width=max(0, parser.getint("camera", "max_width", fallback=0)),
        jpeg_quality=min(
            95, max(1, parser.getint("camera", "jpeg_quality", fallback=85))
        ),
    )

    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(
            parser.get("logging", "path", fallback=str(constants.DEFAULT_LOG_PATH))
        ).expanduser(),
        log_network=parser.getboolean("logging", "log_network", fallback=False),
        max_bytes=max(
            1024, parser.getint("logging", "max_bytes", fallback=5 * 1024 * 1024)
        ),
        backup_count=max(0, parser.getint("logging", "backup_count", fallback=3)),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return BridgeConfig(
        control_plane=control_plane,
        reconciler=reconciler,
        device=device,
        camera=camera,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )
