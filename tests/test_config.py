from pathlib import Path

from bambu_bridge import constants
from bambu_bridge.config import load_config


def test_load_config_defaults(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv(constants.API_KEY_ENV, raising=False)
    config_path = tmp_path / "bambu-bridge.cfg"
    config = load_config(config_path)

    assert config.control_plane.base_url == constants.DEFAULT_API_BASE_URL
    assert config.control_plane.api_key is None
    assert config.reconciler.update_interval_seconds == 5.0
    assert config.reconciler.init_retry_seconds == 30.0
    assert config.device.username == "bblp"
    assert config.device.mqtt_port == 8883
    assert config.device.camera_port == 6000
    assert config.device.ftps_port == 990
    assert config.device.rtsp_port == 322
    assert config.device.reconnect_delay_seconds == 1.0
    assert config.device.poll_interval_seconds == 15.0
    assert config.device.upload_timeout_seconds == 1800
    assert config.device.snapshot_timeout_seconds == 10
    assert config.camera.enabled is True
    assert config.camera.interval_seconds == 5.0
    assert config.health.enabled is False
    assert config.path == config_path


def test_load_config_overrides_defaults(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv(constants.API_KEY_ENV, raising=False)
    config_file = tmp_path / "bambu-bridge.cfg"
    config_file.write_text(
        """
[control_plane]
base_url = https://example.com/api/bridge/bambu
api_key = file-key

[reconciler]
update_interval_seconds = 2.5

[device]
poll_interval_seconds = 30
ffmpeg_path = /opt/ffmpeg/bin/ffmpeg

[camera]
enabled = false

[health]
enabled = true
port = 9100
""",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.control_plane.base_url == "https://example.com/api/bridge/bambu"
    assert config.control_plane.api_key == "file-key"
    assert config.reconciler.update_interval_seconds == 2.5
    assert config.device.poll_interval_seconds == 30.0
    assert config.device.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
    assert config.camera.enabled is False
    assert config.health.enabled is True
    assert config.health.port == 9100


def test_environment_api_key_wins(tmp_path: Path, monkeypatch) -> None:
    config_file = tmp_path / "bambu-bridge.cfg"
    config_file.write_text("[control_plane]\napi_key = file-key\n", encoding="utf-8")
    monkeypatch.setenv(constants.API_KEY_ENV, "env-key")

    config = load_config(config_file)

    assert config.control_plane.api_key == "env-key"


def test_intervals_are_clamped(tmp_path: Path) -> None:
    config_file = tmp_path / "bambu-bridge.cfg"
    config_file.write_text(
        "[reconciler]\nupdate_interval_seconds = 0\n\n"
        "[device]\nreconnect_delay_seconds = 0\n",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.reconciler.update_interval_seconds > 0
    assert config.device.reconnect_delay_seconds == 1.0


def test_camera_downscaling_settings(tmp_path: Path) -> None:
    config_file = tmp_path / "bambu-bridge.cfg"
    config_file.write_text(
        "[camera]\nmax_width = 960\njpeg_quality = 200\n", encoding="utf-8"
    )

    config = load_config(config_file)

    assert config.camera.max_width == 960
    assert config.camera.jpeg_quality == 95
