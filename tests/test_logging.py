import logging

import pytest

from restaurant_pos.config import settings
from restaurant_pos.main import JSONFormatter, configure_logging


@pytest.fixture
def root_logger(monkeypatch):
    root = logging.getLogger()
    level = root.level
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(settings, "debug", False)
    monkeypatch.setattr(settings, "log_level", "DEBUG")
    yield root
    root.setLevel(level)


def test_configured_root_logger_is_left_alone(root_logger) -> None:
    existing = logging.NullHandler()
    root_logger.addHandler(existing)
    root_logger.setLevel(logging.WARNING)

    configure_logging()

    assert root_logger.handlers == [existing]
    assert root_logger.level == logging.WARNING


def test_bare_root_logger_gets_json_handler(root_logger) -> None:
    configure_logging()

    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)
    assert root_logger.level == logging.DEBUG
