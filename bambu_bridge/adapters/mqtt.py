"""MQTT adapter encapsulating paho-mqtt client usage for printer connections."""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any, Callable, List, Optional

import paho.mqtt.client as mqtt

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]


class DeviceConnectionError(ConnectionError):
    """Raised when a printer channel cannot be used."""


def _reason_value(reason_code: Any) -> int:
    return int(getattr(reason_code, "value", reason_code) or 0)


class DeviceMQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    The printer broker uses a self-signed certificate, so TLS is set up
    without verification. paho's network thread owns reconnection: a fixed
    delay, retried until :meth:`close` is called. Every paho callback is
    marshalled onto the event loop that called :meth:`start`, in arrival
    order.
    """

    def __init__(
        self,
        host: str,
        *,
        port: int,
        username: str,
        password: str,
        client_id: str,
        keepalive: int = 60,
        connect_timeout: float = 2.0,
        reconnect_delay: float = 1.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.client_id = client_id
        self.keepalive = keepalive
        self.connect_timeout = connect_timeout
        self.reconnect_delay = reconnect_delay
        self._password = password

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._message_handler: Optional[MessageHandler] = None
        self._connected = False
        self._connect_handlers: List[Callable[[], None]] = []
        self._disconnect_handlers: List[Callable[[int], None]] = []

    def start(self) -> None:
        """Begin connecting in the background; returns immediately."""

        if self._client is not None:
            return

        self._loop = asyncio.get_running_loop()

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(LOGGER)
        client.username_pw_set(self.username, self._password)
        client.tls_set(cert_reqs=ssl.CERT_NONE)
        client.tls_insecure_set(True)
        client.reconnect_delay_set(
            min_delay=max(1, int(self.reconnect_delay)),
            max_delay=max(1, int(self.reconnect_delay)),
        )
        client.connect_timeout = self.connect_timeout

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client

        LOGGER.info("Connecting to printer MQTT broker %s:%s", self.host, self.port)

        client.connect_async(self.host, self.port, self.keepalive)
        client.loop_start()

    def close(self) -> None:
        """Disconnect and stop the network thread. Safe to call repeatedly."""

        client = self._client
        if client is None:
            return

        self._client = None
        self._connected = False
        self._message_handler = None
        self._connect_handlers.clear()
        self._disconnect_handlers.clear()

        try:
            client.disconnect()
        finally:
            client.loop_stop()
        LOGGER.debug("Closed MQTT channel to %s", self.host)

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> None:
        if not self._client:
            raise DeviceConnectionError("MQTT client not started")

        info = self._client.publish(topic, payload, qos=qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise DeviceConnectionError(f"Publish failed with rc={info.rc}")

    def subscribe(self, topic: str, qos: int = 0) -> None:
        if not self._client:
            raise DeviceConnectionError("MQTT client not started")
        result, _ = self._client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise DeviceConnectionError(f"Subscribe failed with rc={result}")

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def register_connect_handler(self, handler: Callable[[], None]) -> None:
        self._connect_handlers.append(handler)

    def register_disconnect_handler(self, handler: Callable[[int], None]) -> None:
        self._disconnect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # Internal callbacks bridging the threaded paho callbacks into asyncio
    # ------------------------------------------------------------------
    def _dispatch(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        rc = _reason_value(reason_code)
        if rc != 0:
            LOGGER.warning("MQTT connection to %s refused (rc=%s)", self.host, rc)
            self._connected = False
            return

        LOGGER.info("Connected to printer %s", self.host)
        self._connected = True
        for handler in list(self._connect_handlers):
            self._dispatch(handler)

    def _on_disconnect(
        self, client, userdata, disconnect_flags, reason_code=None, properties=None
    ) -> None:
        rc = _reason_value(reason_code)
        LOGGER.info("Disconnected from printer %s (rc=%s)", self.host, rc)
        self._connected = False
        for handler in list(self._disconnect_handlers):
            self._dispatch(handler, rc)

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage) -> None:
        handler = self._message_handler
        if handler is None:
            return
        self._dispatch(handler, message.topic, message.payload)
