import logging

import pytest

from probe_monitor.config import AppSettings
from probe_monitor.logging import setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("aiomqtt").setLevel(logging.NOTSET)
    logging.getLogger("probe_monitor.tracker").setLevel(logging.NOTSET)


def test_setup_logging_levels():
    settings = AppSettings.model_validate(
        {"logging": {"level": "WARNING", "loggers": {"probe_monitor.tracker": "DEBUG"}}}
    )
    setup_logging(settings)
    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("probe_monitor.tracker").level == logging.DEBUG


def test_setup_logging_debug_mode():
    setup_logging(AppSettings(debug=True))
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("aiomqtt").level == logging.INFO
