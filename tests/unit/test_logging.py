import logging

from app.core.logging import APP_LOGGERS
from app.core.logging import build_logging_config
from app.core.logging import setup_logging


def test_app_loggers_use_requested_level():
    config = build_logging_config("WARNING")
    for name in APP_LOGGERS:
        assert config["loggers"][name]["level"] == "WARNING"
        assert config["loggers"][name]["propagate"] is False


def test_httpx_request_lines_are_quieted():
    assert build_logging_config()["loggers"]["httpx"]["level"] == "WARNING"


def test_setup_logging_applies_config():
    setup_logging("INFO")
    assert logging.getLogger("app.services").level == logging.INFO
    setup_logging()
    assert logging.getLogger("app.services").level == logging.DEBUG
