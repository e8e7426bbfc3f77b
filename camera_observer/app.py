"""Main application entry-point for camera-observer."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Optional

from .adapters import MQTTClient, MQTTConnectionError, SmartThingsClient
from .config import ObserverConfig
from .logging import configure_logging
from .observer import CameraObserver, CooldownRegistry, RemediationDispatcher

LOGGER = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when the service cannot reach a running state."""


class CameraObserverApp:
    """Coordinates application startup and shutdown.

    Wires the SmartThings client, the camera observer and the MQTT
    subscription together, then idles until a shutdown signal arrives.
    In-flight restarts are not awaited on shutdown.
    """

    def __init__(
        self,
        config: ObserverConfig,
        *,
        device_client: Optional[SmartThingsClient] = None,
        mqtt_client: Optional[MQTTClient] = None,
    ) -> None:
        self._config = config
        self._device_client = device_client or SmartThingsClient(
            config.smartthings.api_token,
            base_url=config.smartthings.base_url,
            timeout=config.smartthings.request_timeout_seconds,
            settle_seconds=config.observer.settle_seconds,
        )
        self._mqtt_client = mqtt_client or MQTTClient(
            config.mqtt, resilience=config.resilience
        )
        self.observer = CameraObserver(
            self._device_client,
            config.mapping,
            registry=CooldownRegistry(config.observer.cooldown_seconds),
            dispatcher=RemediationDispatcher(self._device_client),
            missing_metric=config.observer.missing_metric,
        )
        self._shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def run(self) -> None:
        """Start services, then wait for :meth:`request_shutdown` or a signal."""

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._install_signal_handlers()

        LOGGER.info("camera-observer starting with config: %s", self._config.path)
        LOGGER.info("Found %d camera-to-switch mappings", len(self._config.mapping))

        try:
            await self._start_services()
            LOGGER.info("camera-observer running; awaiting shutdown signal")
            await self._shutdown_event.wait()
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None and not self._shutdown_event.is_set():
            LOGGER.info("camera-observer received shutdown signal")
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: ObserverConfig) -> None:
        configure_logging(
            config.logging.level,
            log_path=config.logging.path,
            log_network=config.logging.log_network,
        )
        instance = cls(config)
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("camera-observer received shutdown signal")

    async def _start_services(self) -> None:
        mqtt_config = self._config.mqtt

        try:
            await self._mqtt_client.connect()
        except MQTTConnectionError as exc:
            raise StartupError(
                f"Failed to connect to MQTT broker {mqtt_config.broker_address}: {exc}"
            ) from exc

        try:
            self._mqtt_client.subscribe(mqtt_config.topic, self.observer.handle)
        except MQTTConnectionError as exc:
            raise StartupError(
                f"Failed to subscribe to topic {mqtt_config.topic}: {exc}"
            ) from exc

    async def _stop_services(self) -> None:
        LOGGER.info("Shutting down camera-observer")
        self._remove_signal_handlers()

        pending = self.observer.dispatcher.pending_count
        if pending:
            LOGGER.warning("Abandoning %d in-flight restart sequence(s)", pending)

        try:
            await self._mqtt_client.disconnect()
        except Exception as exc:  # pragma: no cover - defensive logging
            LOGGER.warning("Error while disconnecting from MQTT: %s", exc)

        await self._device_client.close()

    def _install_signal_handlers(self) -> None:
        loop = self._loop
        if loop is None:
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops.
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signum, self.request_shutdown)

    def _remove_signal_handlers(self) -> None:
        loop = self._loop
        if loop is None:
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(signum)
