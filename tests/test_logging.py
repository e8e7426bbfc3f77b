import logging

import pytest

from camera_observer.logging import ADAPTERS_LOGGER, configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    _reset_library_levels()
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    _reset_library_levels()


def _reset_library_levels():
    for name in (ADAPTERS_LOGGER, "paho", "aiohttp.client", "aiohttp.access"):
        logging.getLogger(name).setLevel(logging.NOTSET)


def test_log_network_enables_adapter_debug_output():
    configure_logging("INFO", log_network=True)

    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger(ADAPTERS_LOGGER).isEnabledFor(logging.DEBUG)
    assert logging.getLogger("paho").getEffectiveLevel() == logging.INFO


def test_default_quiets_network_libraries():
    configure_logging("DEBUG")

    assert logging.getLogger(ADAPTERS_LOGGER).level == logging.NOTSET
    assert logging.getLogger("paho").level == logging.WARNING
    assert logging.getLogger("aiohttp.client").level == logging.WARNING


def test_log_path_adds_file_handler(tmp_path):
    log_path = tmp_path / "logs" / "camera-observer.log"

    configure_logging("INFO", log_path=log_path)
    logging.getLogger("camera_observer.test").info("hello")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "camera_observer.test | hello" in log_path.read_text(encoding="utf-8")
