"""Logging configuration with Rich formatting.

setup_logging() is called once by the process that hosts the engine; library
modules only call get_logger(area) with a short area name ("context",
"library", "brief", "answer", ...).
"""

import logging
from typing import Optional

from rich.logging import RichHandler

from .config import get_settings

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "mlflow", "urllib3")


def setup_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=(level or get_settings().LOG_LEVEL).upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"capture_engine.{name}")
