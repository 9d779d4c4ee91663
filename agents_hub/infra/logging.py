"""Structured logging configuration."""

import logging
import sys
from pythonjsonlogger.json import JsonFormatter
from agents_hub.infra.config import config

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

# Chatty libraries that only get a say at WARNING and above
QUIET_LOGGERS = ("sqlalchemy", "httpx", "openai")


def build_formatter() -> JsonFormatter:
    return JsonFormatter(
        LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        rename_fields={"levelname": "level", "name": "logger"},
        static_fields={"service": "agents_hub", "region": config.REGION},
    )


def setup_logging(stream=None):
    """Install a single JSON handler on the agents_hub logger tree."""
    logger = logging.getLogger("agents_hub")
    logger.setLevel(logging.DEBUG if config.DEBUG else logging.INFO)
    logger.handlers = []

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(build_formatter())
    logger.addHandler(handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


app_logger = setup_logging()
