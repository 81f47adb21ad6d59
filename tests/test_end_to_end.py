"""Reconciler and device sessions wired together over fake channels."""

import asyncio
import json

import pytest

from bambu_bridge.adapters import UpdateResponse
from bambu_bridge.config import CameraConfig, DeviceConfig, ReconcilerConfig
from bambu_bridge.core import Command, CommandKind, PrinterDescriptor
from bambu_bridge.reconciler import FleetReconciler
from bambu_bridge.session import DeviceSession


class RecordingChannel:
    def __init__(self) -> None:
        self.published: list = []
        self.handler = None
        self.on_connect = []
        self.on_disconnect = []
        self.closed = False

    def start(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    def publish(self, topic, payload, qos=0) -> None:
        self.published.append((topic, json.loads(payload)))

    def subscribe(self, topic, qos=0) -> None:
        pass

    def set_message_handler(self, handler) -> None:
        self.handler = handler

    def register_connect_handler(self, handler) -> None:
        self.on_connect.append(handler)

    def register_disconnect_handler(self, handler) -> None:
        self.on_disconnect.append(handler)

    def is_connected(self) -> bool:
        return not self.closed

    def connect(self) -> None:
        for handler in self.on_connect:
            handler()

    def deliver(self, document) -> None:
        self.handler("device/x/report", json.dumps(document).encode())

    def commands(self):
        return [payload for _, payload in self.published]


class StaticControlPlane:
    def __init__(self, printers) -> None:
        self.printers = printers
        self.responses: list = []
        self.reports: list = []

    async def init(self):
        return list(self.printers)

    async def update(self, report):
        self.reports.append(report)
        if self.responses:
            return self.responses.pop(0)
        return UpdateResponse(printers=list(self.printers))

    async def upload_camera_image(self, printer_id, image):
        return None


X1C = PrinterDescriptor(
    id="1",
    host="h",
    access_token="t",
    serial_number="00M09A000000001",
    model_hint="X1C",
)


def _reconciler(control_plane, channels):
    def factory(descriptor, on_status, on_disconnect):
        channel = RecordingChannel()
        channels[descriptor.id] = channel
        return DeviceSession(
            descriptor,
            DeviceConfig(poll_interval_seconds=0.01),
            on_status=on_status,
            on_disconnect=on_disconnect,
            channel=channel,
        )

    return FleetReconciler(
        control_plane,
        config=ReconcilerConfig(update_interval_seconds=3600),
        camera_config=CameraConfig(enabled=False),
        session_factory=factory,
    )


@pytest.mark.asyncio
async def test_push_based_printer_is_not_polled():
    channels: dict = {}
    reconciler = _reconciler(StaticControlPlane([X1C]), channels)
    await reconciler.bootstrap()
    channel = channels["1"]

    channel.connect()
    channel.deliver(
        {"info": {"module": [{"name": "ota", "sn": "00M09A000000001"}]}}
    )
    await asyncio.sleep(0.05)
    await reconciler.reconcile_once()

    session = reconciler.sessions["1"]
    assert not session.polling
    assert channel.commands() == [{"info": {"command": "get_version"}}]
    await reconciler.stop()


@pytest.mark.asyncio
async def test_telemetry_flows_into_report():
    channels: dict = {}
    control_plane = StaticControlPlane([X1C])
    reconciler = _reconciler(control_plane, channels)
    await reconciler.bootstrap()

    channels["1"].deliver({"print": {"gcode_state": "PREPARE", "mc_percent": 0}})
    await reconciler.reconcile_once()

    assert control_plane.reports[0]["1"]["state"] == "prepare"
    for handler in channels["1"].on_disconnect:
        handler(7)
    await reconciler.reconcile_once()

    assert control_plane.reports[1] == {}
    await reconciler.stop()


@pytest.mark.asyncio
async def test_stop_command_publishes_stop_payload():
    channels: dict = {}
    control_plane = StaticControlPlane([X1C])
    reconciler = _reconciler(control_plane, channels)
    await reconciler.bootstrap()
    control_plane.responses.append(
        UpdateResponse(
            commands=[Command(kind=CommandKind.STOP, printer_id="1")],
            printers=[X1C],
        )
    )

    await reconciler.reconcile_once()

    topic, payload = channels["1"].published[-1]
    assert topic == "device/00M09A000000001/request"
    assert payload["print"]["command"] == "stop"
    await reconciler.stop()


@pytest.mark.asyncio
async def test_replaced_session_releases_channel():
    channels: dict = {}
    control_plane = StaticControlPlane([X1C])
    reconciler = _reconciler(control_plane, channels)
    await reconciler.bootstrap()
    first = channels["1"]

    control_plane.printers = [
        PrinterDescriptor(
            id="1",
            host="h2",
            access_token="t",
            serial_number="00M09A000000001",
            model_hint="X1C",
        )
    ]
    await reconciler.reconcile_once()
    await reconciler.reconcile_once()

    assert first.closed
    assert channels["1"] is not first
    assert reconciler.sessions["1"].descriptor.host == "h2"
    await reconciler.stop()
