"""MQTT adapter encapsulating paho-mqtt client usage."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Optional

import paho.mqtt.client as mqtt

from ..config import MQTTConfig, ResilienceConfig

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]


class MQTTConnectionError(RuntimeError):
    """Raised when the MQTT client fails to establish a connection."""


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    paho's network thread owns the socket and reconnects on its own after a
    connection loss. Inbound messages are handed to the asyncio loop in the
    order they arrive, and subscriptions are re-issued on every reconnect.
    """

    def __init__(
        self,
        config: MQTTConfig,
        *,
        client_id: Optional[str] = None,
        keepalive: int = 60,
        resilience: Optional[ResilienceConfig] = None,
    ) -> None:
        self.config = config
        self.client_id = client_id or config.client_id
        self.keepalive = keepalive
        self.resilience = resilience or ResilienceConfig()

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._subscriptions: Dict[str, tuple[MessageHandler, int]] = {}
        self._last_connect_rc: Optional[object] = None
        self._connected: bool = False
        self._has_connected: bool = False
        self._stopping: bool = False

    async def connect(self, timeout: Optional[float] = None) -> None:
        """Connect to the MQTT broker and wait for acknowledgement."""

        if timeout is None:
            timeout = self.resilience.connect_timeout_seconds

        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None
        self._stopping = False

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id
        )
        client.enable_logger()
        client.reconnect_delay_set(
            min_delay=self.resilience.reconnect_min_seconds,
            max_delay=self.resilience.reconnect_max_seconds,
        )

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client

        LOGGER.info(
            "Connecting to MQTT broker %s:%s as %s",
            self.config.broker_host,
            self.config.broker_port,
            self.client_id,
        )

        client.connect_async(
            self.config.broker_host, self.config.broker_port, self.keepalive
        )
        client.loop_start()

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
            if self._last_connect_rc is None or self._last_connect_rc != 0:
                raise MQTTConnectionError(
                    f"MQTT broker rejected connection (rc={self._last_connect_rc})"
                )
        except asyncio.TimeoutError as exc:
            self._abort()
            raise MQTTConnectionError("Timed out connecting to MQTT broker") from exc
        except MQTTConnectionError:
            self._abort()
            raise

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Gracefully disconnect from the broker, waiting at most ``timeout``."""

        if not self._client:
            return

        assert self._disconnect_event is not None

        self._stopping = True
        self._disconnect_event.clear()
        self._client.disconnect()

        try:
            await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out waiting for MQTT disconnect acknowledgement")
        finally:
            self._client.loop_stop()
            self._client = None
        self._connected = False

    def subscribe(self, topic: str, handler: MessageHandler, qos: int = 1) -> None:
        """Deliver every message on ``topic`` to ``handler(topic, payload)``."""

        if not self._client:
            raise RuntimeError("MQTT client not connected")

        self._subscriptions[topic] = (handler, qos)
        result, _ = self._client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            del self._subscriptions[topic]
            raise MQTTConnectionError(f"Subscribe to {topic} failed with rc={result}")

        LOGGER.info("Subscribed to %s", topic)

    def is_connected(self) -> bool:
        return self._connected

    def _abort(self) -> None:
        if self._client is not None:
            self._client.loop_stop()
            self._client = None

    # ------------------------------------------------------------------
    # Internal callbacks bridging the threaded paho callbacks into asyncio
    # ------------------------------------------------------------------
    def _on_connect(self, client: mqtt.Client, userdata, flags, rc, properties=None) -> None:
        self._last_connect_rc = rc
        if rc == 0:
            if self._has_connected:
                LOGGER.info("Reconnected to MQTT broker")
            else:
                LOGGER.info("Connected to MQTT broker")
            self._has_connected = True
            self._connected = True
            self._resubscribe(client)
        else:
            LOGGER.error("MQTT connection failed with rc=%s", rc)
            self._connected = False

        if self._connected_event and self._loop:
            self._loop.call_soon_threadsafe(self._connected_event.set)

    def _on_disconnect(
        self, client: mqtt.Client, userdata, flags, rc, properties=None
    ) -> None:
        self._connected = False
        if self._stopping:
            LOGGER.info("Disconnected from MQTT broker (rc=%s)", rc)
        else:
            LOGGER.warning(
                "Connection to MQTT broker lost (rc=%s); reconnecting automatically",
                rc,
            )
        if self._disconnect_event and self._loop:
            self._loop.call_soon_threadsafe(self._disconnect_event.set)

    def _on_message(self, client: mqtt.Client, userdata, message: mqtt.MQTTMessage) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return

        # call_soon_threadsafe is FIFO, so broker ordering is preserved.
        loop.call_soon_threadsafe(self._deliver, message.topic, message.payload)

    def _deliver(self, topic: str, payload: bytes) -> None:
        entry = self._subscriptions.get(topic)
        if entry is None:
            entry = next(
                (
                    value
                    for pattern, value in self._subscriptions.items()
                    if mqtt.topic_matches_sub(pattern, topic)
                ),
                None,
            )
        if entry is None:
            LOGGER.debug("Dropping message on unsubscribed topic %s", topic)
            return

        handler, _ = entry
        LOGGER.debug("Delivering %d bytes from %s", len(payload), topic)
        try:
            handler(topic, payload)
        except Exception:
            LOGGER.exception("MQTT message handler raised an exception")

    def _resubscribe(self, client: mqtt.Client) -> None:
        for topic, (_, qos) in list(self._subscriptions.items()):
            result, _ = client.subscribe(topic, qos=qos)
            if result != mqtt.MQTT_ERR_SUCCESS:
                LOGGER.error("Re-subscribe to %s failed with rc=%s", topic, result)
            else:
                LOGGER.info("Re-subscribed to %s", topic)
