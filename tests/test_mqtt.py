"""Tests for the printer MQTT adapter."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from bambu_bridge.adapters import DeviceConnectionError, DeviceMQTTClient

import paho.mqtt.client as mqtt


class FakeMqttClient:
    """Minimal fake paho-mqtt client speaking the VERSION2 callback API."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: dict,
        *args,
        rc_connect: int = 0,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        subscribe_rc: int = mqtt.MQTT_ERR_SUCCESS,
        **kwargs,
    ):
        self._loop = loop
        self._events = events
        self._rc_connect = rc_connect
        self._publish_rc = publish_rc
        self._subscribe_rc = subscribe_rc
        self.connect_timeout = None
        self._events["client_args"] = (args, kwargs)

        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    # paho interface -------------------------------------------------
    def enable_logger(self, logger):
        self._events.setdefault("logger_enabled", True)

    def username_pw_set(self, username, password=None):
        self._events["auth"] = (username, password)

    def tls_set(self, **kwargs):
        self._events["tls"] = kwargs

    def tls_insecure_set(self, value):
        self._events["tls_insecure"] = value

    def reconnect_delay_set(self, min_delay=1, max_delay=120):
        self._events["reconnect_delay"] = (min_delay, max_delay)

    def connect_async(self, host, port, keepalive):
        self._events["connect_args"] = (host, port, keepalive)
        if self.on_connect:
            self._loop.call_soon(
                self.on_connect, self, None, None, self._rc_connect, None
            )

    def loop_start(self):
        self._events["loop_start"] = self._events.get("loop_start", 0) + 1

    def loop_stop(self):
        self._events["loop_stop"] = self._events.get("loop_stop", 0) + 1

    def disconnect(self):
        self._events["disconnect_called"] = True

    def publish(self, topic, payload, qos=0, retain=False, properties=None):
        self._events.setdefault("published", []).append((topic, payload, qos))
        return SimpleNamespace(rc=self._publish_rc)

    def subscribe(self, topic, qos=0):
        self._events.setdefault("subscribed", []).append((topic, qos))
        return self._subscribe_rc, 1

    # test helpers ---------------------------------------------------
    def drop(self, rc: int = 7):
        self.on_disconnect(self, None, None, rc, None)

    def deliver(self, topic: str, payload: bytes):
        self.on_message(self, None, SimpleNamespace(topic=topic, payload=payload))


@pytest_asyncio.fixture
async def fake_paho(monkeypatch):
    loop = asyncio.get_running_loop()
    events: dict = {"options": {}}
    clients: list[FakeMqttClient] = []

    def factory(*args, **kwargs):
        client = FakeMqttClient(loop, events, *args, **events["options"], **kwargs)
        clients.append(client)
        return client

    monkeypatch.setattr("bambu_bridge.adapters.mqtt.mqtt.Client", factory)
    return events, clients


def _client() -> DeviceMQTTClient:
    return DeviceMQTTClient(
        "192.168.1.50",
        port=8883,
        username="bblp",
        password="12345678",
        client_id="bambu-bridge-p1",
        connect_timeout=2.0,
        reconnect_delay=1.0,
    )


async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_start_configures_tls_and_fixed_reconnect(fake_paho):
    events, clients = fake_paho
    client = _client()

    client.start()
    await _settle()

    args, kwargs = events["client_args"]
    assert args[0] is mqtt.CallbackAPIVersion.VERSION2
    assert kwargs["client_id"] == "bambu-bridge-p1"
    assert events["auth"] == ("bblp", "12345678")
    assert events["tls_insecure"] is True
    assert events["reconnect_delay"] == (1, 1)
    assert events["connect_args"] == ("192.168.1.50", 8883, 60)
    assert events["loop_start"] == 1
    assert clients[0].connect_timeout == 2.0
    assert client.is_connected()

    client.close()


@pytest.mark.asyncio
async def test_start_is_idempotent(fake_paho):
    events, clients = fake_paho
    client = _client()

    client.start()
    client.start()

    assert len(clients) == 1
    client.close()


@pytest.mark.asyncio
async def test_connect_and_disconnect_handlers_run_on_loop(fake_paho):
    _, clients = fake_paho
    client = _client()
    seen: list = []

    client.register_connect_handler(lambda: seen.append("connected"))
    client.register_disconnect_handler(lambda rc: seen.append(("disconnected", rc)))
    client.start()
    await _settle()

    clients[0].drop(rc=7)
    await _settle()

    assert seen == ["connected", ("disconnected", 7)]
    assert not client.is_connected()
    client.close()


@pytest.mark.asyncio
async def test_refused_connection_does_not_fire_connect_handlers(fake_paho):
    events, _ = fake_paho
    events["options"]["rc_connect"] = 5
    client = _client()
    seen: list = []

    client.register_connect_handler(lambda: seen.append("connected"))
    client.start()
    await _settle()

    assert seen == []
    assert not client.is_connected()
    client.close()


@pytest.mark.asyncio
async def test_messages_are_dispatched_in_order(fake_paho):
    _, clients = fake_paho
    client = _client()
    received: list = []

    client.set_message_handler(lambda topic, payload: received.append(payload))
    client.start()
    await _settle()

    for index in range(5):
        clients[0].deliver("device/x/report", str(index).encode())
    await _settle()

    assert received == [b"0", b"1", b"2", b"3", b"4"]
    client.close()


@pytest.mark.asyncio
async def test_publish_and_subscribe_failures_raise(fake_paho):
    events, _ = fake_paho
    events["options"]["publish_rc"] = mqtt.MQTT_ERR_NO_CONN
    events["options"]["subscribe_rc"] = mqtt.MQTT_ERR_NO_CONN
    client = _client()
    client.start()

    with pytest.raises(DeviceConnectionError):
        client.publish("device/x/request", b"{}")
    with pytest.raises(DeviceConnectionError):
        client.subscribe("device/x/report")

    client.close()


@pytest.mark.asyncio
async def test_publish_before_start_raises():
    client = _client()
    with pytest.raises(DeviceConnectionError):
        client.publish("device/x/request", b"{}")


@pytest.mark.asyncio
async def test_close_is_idempotent_and_silences_handlers(fake_paho):
    events, clients = fake_paho
    client = _client()
    seen: list = []
    client.register_disconnect_handler(lambda rc: seen.append(rc))
    client.start()
    await _settle()

    client.close()
    client.close()
    clients[0].drop()
    await _settle()

    assert events["disconnect_called"] is True
    assert events["loop_stop"] == 1
    assert seen == []
