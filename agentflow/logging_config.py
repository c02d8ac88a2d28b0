"""Logging setup for the agentflow service.

Two named loggers carry handlers; module loggers below them propagate up:

- ``agentflow.app`` (api.log): FastAPI app and ``agentflow.app.routes.*``
- ``agentflow.engine`` (engine.log): ``agentflow.engine.*`` modules and
  background chain runs
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

# Log directory, configurable via LOG_DIR for containers
LOG_DIR = Path(os.getenv("LOG_DIR", str(Path(__file__).parent.parent / "logs")))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

FILE_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(message)s"

_configured_loggers: set[str] = set()


def setup_logger(name: str, filename: str) -> logging.Logger:
    """Attach a file handler and a console handler to a named logger.

    Idempotent per name.

    Args:
        name: Logger name (e.g., 'agentflow.app', 'agentflow.engine')
        filename: Log file name under LOG_DIR (e.g., 'api.log')
    """
    logger = logging.getLogger(name)
    if name in _configured_loggers:
        return logger

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    level = logging.getLevelName(LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO

    logger.setLevel(level)
    logger.propagate = False

    file_handler = logging.FileHandler(LOG_DIR / filename, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        logger.addHandler(handler)

    _configured_loggers.add(name)
    return logger


def get_api_logger() -> logging.Logger:
    """Logger for the HTTP service."""
    return setup_logger("agentflow.app", "api.log")


def get_engine_logger() -> logging.Logger:
    """Logger for flow and chain runs."""
    return setup_logger("agentflow.engine", "engine.log")
