"""Constants used across the bambu-bridge package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "bambu-bridge"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME
DEFAULT_LOG_PATH = Path.home() / ".local" / "state" / APP_NAME / f"{APP_NAME}.log"

API_KEY_ENV = "BAMBU_BRIDGE_API_KEY"
DEFAULT_API_BASE_URL = "https://my.jetforge.app/api/bridge/bambu"

# Printer-side LAN services
DEVICE_USERNAME = "bblp"
DEFAULT_MQTT_PORT = 8883
DEFAULT_CAMERA_PORT = 6000
DEFAULT_FTPS_PORT = 990
DEFAULT_RTSP_PORT = 322

ERROR_UPLOAD_FAILED = "UPLOAD_FAILED"
