from pathlib import Path

import pytest

from camera_observer.config import (
    ConfigurationError,
    MissingMetricPolicy,
    load_broker_address,
    load_config,
    parse_broker_address,
)

MINIMAL = """
[mqtt]
broker = tcp://frigate.local:1884

[smartthings]
api_token = file-token

[mapping]
Front_Door = switch-1
driveway = switch-2
"""


def test_load_config_defaults(write_config):
    config = load_config(write_config(MINIMAL), environ={})

    assert config.mqtt.broker_host == "frigate.local"
    assert config.mqtt.broker_port == 1884
    assert config.mqtt.topic == "frigate/stats"
    assert config.mqtt.client_id == "camera-observer"
    assert config.smartthings.api_token == "file-token"
    assert config.smartthings.base_url == "https://api.smartthings.com/v1"
    assert config.observer.cooldown_seconds == 300.0
    assert config.observer.settle_seconds == 10.0
    assert config.observer.missing_metric is MissingMetricPolicy.ZERO
    assert config.logging.level == "INFO"
    assert config.logging.path is None
    assert config.resilience.reconnect_min_seconds == 1


def test_mapping_preserves_camera_name_case_and_is_read_only(write_config):
    config = load_config(write_config(MINIMAL), environ={})

    assert dict(config.mapping) == {"Front_Door": "switch-1", "driveway": "switch-2"}
    with pytest.raises(TypeError):
        config.mapping["garage"] = "switch-3"  # type: ignore[index]


def test_environment_overrides_token_and_broker(write_config):
    config = load_config(
        write_config(MINIMAL),
        environ={"SMARTTHINGS_TOKEN": "env-token", "MQTT_BROKER": "mqtt://10.0.0.5"},
    )

    assert config.smartthings.api_token == "env-token"
    assert config.mqtt.broker_host == "10.0.0.5"
    assert config.mqtt.broker_port == 1883


def test_environment_supplies_missing_token(write_config):
    config = load_config(
        write_config("[mqtt]\nbroker = localhost\n"),
        environ={"SMARTTHINGS_TOKEN": "env-token"},
    )

    assert config.smartthings.api_token == "env-token"
    assert dict(config.mapping) == {}


def test_load_config_overrides_observer_settings(write_config):
    config = load_config(
        write_config(
            MINIMAL
            + """
[observer]
cooldown_seconds = 60
settle_seconds = 2.5
missing_metric = ERROR

[logging]
level = DEBUG
log_network = true
"""
        ),
        environ={},
    )

    assert config.observer.cooldown_seconds == 60.0
    assert config.observer.settle_seconds == 2.5
    assert config.observer.missing_metric is MissingMetricPolicy.ERROR
    assert config.logging.level == "DEBUG"
    assert config.logging.log_network is True


def test_missing_file_is_fatal(tmp_path: Path):
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "absent.cfg", environ={})


def test_missing_token_is_fatal(write_config):
    with pytest.raises(ConfigurationError, match="token"):
        load_config(write_config("[mqtt]\nbroker = localhost\n"), environ={})


def test_missing_broker_is_fatal(write_config):
    with pytest.raises(ConfigurationError, match="broker"):
        load_config(write_config("[smartthings]\napi_token = abc\n"), environ={})


@pytest.mark.parametrize(
    "body",
    [
        "this is not an ini file",
        MINIMAL + "\n[observer]\ncooldown_seconds = soon\n",
        MINIMAL + "\n[observer]\nmissing_metric = maybe\n",
    ],
)
def test_invalid_config_is_fatal(write_config, body):
    with pytest.raises(ConfigurationError):
        load_config(write_config(body), environ={})


@pytest.mark.parametrize(
    "value, expected",
    [
        ("tcp://broker.example:1883", ("broker.example", 1883)),
        ("mqtt://broker.example", ("broker.example", 1883)),
        ("broker.example:8883", ("broker.example", 8883)),
        ("192.168.1.10", ("192.168.1.10", 1883)),
    ],
)
def test_parse_broker_address(value, expected):
    assert parse_broker_address(value) == expected


@pytest.mark.parametrize("value", ["", "ws://broker:80", "tcp://:1883", "host:notaport"])
def test_parse_broker_address_rejects_invalid(value):
    with pytest.raises(ConfigurationError):
        parse_broker_address(value)


def test_load_broker_address_ignores_missing_token(write_config):
    path = write_config("[mqtt]\nbroker = tcp://frigate.local:1886\n")

    assert load_broker_address(path, environ={}) == ("frigate.local", 1886)


def test_load_broker_address_prefers_environment(tmp_path: Path):
    assert load_broker_address(
        tmp_path / "absent.cfg", environ={"MQTT_BROKER": "mqtt.example:8883"}
    ) == ("mqtt.example", 8883)


def test_load_broker_address_requires_broker(write_config):
    with pytest.raises(ConfigurationError):
        load_broker_address(write_config("[smartthings]\napi_token = t\n"), environ={})
