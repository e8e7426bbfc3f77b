"""Constants used across the camera-observer package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "camera-observer"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path(DEFAULT_CONFIG_FILENAME)

DEFAULT_BROKER_PORT = 1883
DEFAULT_STATS_TOPIC = "frigate/stats"
DEFAULT_CLIENT_ID = APP_NAME

DEFAULT_SMARTTHINGS_URL = "https://api.smartthings.com/v1"

DEFAULT_COOLDOWN_SECONDS = 300.0
DEFAULT_SETTLE_SECONDS = 10.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0

ENV_SMARTTHINGS_TOKEN = "SMARTTHINGS_TOKEN"
ENV_MQTT_BROKER = "MQTT_BROKER"
