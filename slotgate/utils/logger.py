# slotgate/utils/logger.py
"""
Centralised logging for the booking engine.
Console always; rotating file under LOG_DIR unless LOG_TO_FILE is off (tests, containers).
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from slotgate.config import settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DEFAULT_LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "logs")

# Chatty client libraries only surface warnings
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "geopy")

_configured = False


def _file_handler(level: str, fmt: logging.Formatter) -> logging.Handler:
    log_dir = settings.LOG_DIR or _DEFAULT_LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        filename=os.path.join(log_dir, "slotgate.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(fmt)
    return handler


def configure_logging(level: str = None):
    """Install handlers on the root logger once per process."""
    global _configured
    if _configured:
        return
    _configured = True

    level = (level or settings.LOG_LEVEL).upper()
    fmt = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(console)
    if settings.LOG_TO_FILE:
        root.addHandler(_file_handler(level, fmt))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger. Call this at the top of every module."""
    configure_logging()
    return logging.getLogger(name)
