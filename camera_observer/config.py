"""Configuration loader for camera-observer."""

from __future__ import annotations

import os
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, MutableMapping, Optional
from urllib.parse import urlsplit

from . import constants

_BROKER_SCHEMES = {"tcp", "mqtt", ""}


class ConfigurationError(RuntimeError):
    """Raised when the configuration file is missing or invalid."""


class MissingMetricPolicy(str, Enum):
    """How a camera entry without ``camera_fps`` is interpreted."""

    ZERO = "zero"
    """Treat the missing metric as 0 FPS, i.e. a stalled feed."""

    ERROR = "error"
    """Reject the whole stats message as malformed."""


@dataclass(slots=True)
class MQTTConfig:
    broker_host: str = "localhost"
    broker_port: int = constants.DEFAULT_BROKER_PORT
    topic: str = constants.DEFAULT_STATS_TOPIC
    client_id: str = constants.DEFAULT_CLIENT_ID
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def broker_address(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"


@dataclass(slots=True)
class SmartThingsConfig:
    api_token: str = ""
    base_url: str = constants.DEFAULT_SMARTTHINGS_URL
    request_timeout_seconds: float = constants.DEFAULT_REQUEST_TIMEOUT_SECONDS


@dataclass(slots=True)
class ObserverSettings:
    cooldown_seconds: float = constants.DEFAULT_COOLDOWN_SECONDS
    settle_seconds: float = constants.DEFAULT_SETTLE_SECONDS
    missing_metric: MissingMetricPolicy = MissingMetricPolicy.ZERO


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class ResilienceConfig:
    reconnect_min_seconds: int = 1
    reconnect_max_seconds: int = 120
    connect_timeout_seconds: float = 30.0


@dataclass(slots=True)
class ObserverConfig:
    mqtt: MQTTConfig
    smartthings: SmartThingsConfig
    observer: ObserverSettings
    logging: LoggingConfig
    resilience: ResilienceConfig
    path: Path
    mapping: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


def parse_broker_address(value: str) -> tuple[str, int]:
    """Split ``tcp://host:port``, ``mqtt://host``, or ``host:port`` into parts."""

    value = value.strip()
    if not value:
        raise ConfigurationError("MQTT broker address is empty")

    target = value if "://" in value else f"//{value}"
    try:
        parts = urlsplit(target)
        port = parts.port
    except ValueError as exc:
        raise ConfigurationError(f"Invalid MQTT broker address: {value!r}") from exc

    if parts.scheme not in _BROKER_SCHEMES:
        raise ConfigurationError(
            f"Unsupported MQTT broker scheme {parts.scheme!r} in {value!r}"
        )
    if not parts.hostname:
        raise ConfigurationError(f"MQTT broker address has no host: {value!r}")

    return parts.hostname, port or constants.DEFAULT_BROKER_PORT


def load_broker_address(
    path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[str, int]:
    """Resolve only the MQTT broker, without requiring the rest of the config.

    ``MQTT_BROKER`` wins over ``[mqtt] broker``; a missing or unreadable file is
    only an error when the environment does not supply the broker either.
    """

    env = os.environ if environ is None else environ
    override = env.get(constants.ENV_MQTT_BROKER, "").strip()
    if override:
        return parse_broker_address(override)

    config_path = Path(path or constants.DEFAULT_CONFIG_PATH)
    parser = ConfigParser(interpolation=None)
    try:
        with config_path.open("r", encoding="utf-8") as stream:
            parser.read_file(stream)
    except (OSError, UnicodeDecodeError, ConfigParserError) as exc:
        raise ConfigurationError(
            f"Failed to read configuration file {config_path}: {exc}"
        ) from exc

    broker_value = parser.get("mqtt", "broker", fallback="").strip()
    if not broker_value:
        raise ConfigurationError(
            f"MQTT broker not configured (set [mqtt] broker or {constants.ENV_MQTT_BROKER})"
        )
    return parse_broker_address(broker_value)


def load_config(
    path: Optional[Path] = None,
    *,
    environ: Optional[MutableMapping[str, str]] = None,
) -> ObserverConfig:
    """Load configuration from disk and apply environment overrides."""

    config_path = Path(path or constants.DEFAULT_CONFIG_PATH)
    env = os.environ if environ is None else environ

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    parser = ConfigParser(interpolation=None)
    # Camera names are case-sensitive keys in the stats payload.
    parser.optionxform = str  # type: ignore[assignment, method-assign]
    parser.read_dict(
        {
            "mqtt": {
                "broker": "",
                "topic": constants.DEFAULT_STATS_TOPIC,
                "client_id": constants.DEFAULT_CLIENT_ID,
            },
            "smartthings": {
                "api_token": "",
                "base_url": constants.DEFAULT_SMARTTHINGS_URL,
                "request_timeout_seconds": str(
                    constants.DEFAULT_REQUEST_TIMEOUT_SECONDS
                ),
            },
            "mapping": {},
            "observer": {
                "cooldown_seconds": str(constants.DEFAULT_COOLDOWN_SECONDS),
                "settle_seconds": str(constants.DEFAULT_SETTLE_SECONDS),
                "missing_metric": MissingMetricPolicy.ZERO.value,
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
            "resilience": {
                "reconnect_min_seconds": "1",
                "reconnect_max_seconds": "120",
                "connect_timeout_seconds": "30",
            },
        }
    )

    try:
        with config_path.open("r", encoding="utf-8") as stream:
            parser.read_file(stream)
    except (OSError, UnicodeDecodeError, ConfigParserError) as exc:
        raise ConfigurationError(
            f"Failed to parse configuration file {config_path}: {exc}"
        ) from exc

    try:
        return _build_config(parser, config_path, env)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid configuration value: {exc}") from exc


def _build_config(
    parser: ConfigParser, config_path: Path, env: Mapping[str, str]
) -> ObserverConfig:
    # Environment variable overrides for container deployments.
    broker_value = env.get(constants.ENV_MQTT_BROKER) or parser.get("mqtt", "broker")
    token_value = env.get(constants.ENV_SMARTTHINGS_TOKEN) or parser.get(
        "smartthings", "api_token"
    )

    if not broker_value.strip():
        raise ConfigurationError(
            f"MQTT broker not configured (set [mqtt] broker or {constants.ENV_MQTT_BROKER})"
        )
    if not token_value.strip():
        raise ConfigurationError(
            "SmartThings API token not configured "
            f"(set [smartthings] api_token or {constants.ENV_SMARTTHINGS_TOKEN})"
        )

    broker_host, broker_port = parse_broker_address(broker_value)

    mqtt = MQTTConfig(
        broker_host=broker_host,
        broker_port=broker_port,
        topic=parser.get("mqtt", "topic"),
        client_id=parser.get("mqtt", "client_id"),
        username=parser.get("mqtt", "username", fallback=None) or None,
        password=parser.get("mqtt", "password", fallback=None) or None,
    )

    smartthings = SmartThingsConfig(
        api_token=token_value.strip(),
        base_url=parser.get("smartthings", "base_url"),
        request_timeout_seconds=max(
            0.1, parser.getfloat("smartthings", "request_timeout_seconds")
        ),
    )

    policy_value = parser.get("observer", "missing_metric").strip().lower()
    try:
        missing_metric = MissingMetricPolicy(policy_value)
    except ValueError as exc:
        raise ConfigurationError(
            f"Unknown missing_metric policy {policy_value!r} (expected 'zero' or 'error')"
        ) from exc

    observer = ObserverSettings(
        cooldown_seconds=max(0.0, parser.getfloat("observer", "cooldown_seconds")),
        settle_seconds=max(0.0, parser.getfloat("observer", "settle_seconds")),
        missing_metric=missing_metric,
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network"),
    )

    reconnect_min = max(1, parser.getint("resilience", "reconnect_min_seconds"))
    resilience = ResilienceConfig(
        reconnect_min_seconds=reconnect_min,
        reconnect_max_seconds=max(
            reconnect_min, parser.getint("resilience", "reconnect_max_seconds")
        ),
        connect_timeout_seconds=max(
            1.0, parser.getfloat("resilience", "connect_timeout_seconds")
        ),
    )

    mapping = {
        camera.strip(): device.strip()
        for camera, device in parser.items("mapping", raw=True)
        if camera.strip() and device.strip()
    }

    return ObserverConfig(
        mqtt=mqtt,
        smartthings=smartthings,
        observer=observer,
        logging=logging_config,
        resilience=resilience,
        path=config_path,
        mapping=MappingProxyType(mapping),
    )
