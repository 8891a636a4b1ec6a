"""Logging setup for node servers.

Library modules log through ``logging.getLogger(__name__)`` under the
``pypolyglot`` logger. Node server code should log through :data:`ns_logger`
so its entries are distinguishable in the shared log file.
"""

from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s: %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ns_logger = logging.getLogger("pypolyglot.ns")


def configure_logging(
    log_dir: str | Path = "./logs",
    *,
    level: int = logging.DEBUG,
    backup_count: int = 7,
) -> logging.Handler:
    """Log ``pypolyglot`` (and node server) entries to a daily rotated file.

    Returns the installed handler so callers can remove it again.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    handler = TimedRotatingFileHandler(
        directory / "debug.log",
        when="midnight",
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler.setLevel(level)

    root = logging.getLogger("pypolyglot")
    root.addHandler(handler)
    root.setLevel(level)
    return handler
