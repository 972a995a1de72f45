"""Unit tests for CLI logging configuration."""

import logging

import pytest
import structlog

from healthrocket.config import Settings
from healthrocket.logging_setup import NOISY_LOGGERS, setup_logging


@pytest.fixture
def restore_logging():
    levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestSetupLogging:
    def test_level_from_settings(self, restore_logging):
        level = setup_logging(Settings(_env_file=None, log_level="warning"))

        assert level == logging.WARNING
        assert all(logging.getLogger(name).level == logging.WARNING for name in NOISY_LOGGERS)

    def test_unknown_level_falls_back_to_info(self, restore_logging):
        assert setup_logging(Settings(_env_file=None, log_level="chatty")) == logging.INFO

    def test_verbose_lets_transport_logs_through(self, restore_logging):
        level = setup_logging(Settings(_env_file=None, log_level="ERROR"), verbose=True)

        assert level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.DEBUG

    def test_environment_bound_as_context(self, restore_logging):
        setup_logging(Settings(_env_file=None, environment="staging", log_format="json"))
        assert structlog.contextvars.get_contextvars() == {"environment": "staging"}
