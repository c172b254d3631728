"""
Logging setup for the FizzBuzz service.

Log records go to stderr and, when ``LOG_FILE`` is set, to that file
as well, formatted as::

    2024-05-01 12:00:00 [INFO] fizzbuzz_api.app.main: Using database: off

Request lines are written by ``core.access_log`` on the
``fizzbuzz_api.access`` logger, whose level is driven by the
``http_logging`` setting rather than by ``LOG_LEVEL``.
"""

import logging
from pathlib import Path
from typing import Optional

from .access_log import ACCESS_LOGGER

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _add_handler(logger: logging.Logger, handler: logging.Handler) -> None:
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    logfile: Optional[str] = None,
    http_logging: bool = True,
) -> None:
    """Configure the root logger and the access logger.

    The root logger is only configured if it has no handler yet, so
    uvicorn's or pytest's own setup is left alone.  The access logger
    is adjusted on every call: INFO when ``http_logging`` is on,
    WARNING otherwise.

    Parameters
    ----------
    level : str
        Root level name, case insensitive.  Unknown names fall back
        to ``INFO``.
    logfile : Optional[str]
        Extra UTF-8 log file, resolved against the working directory.
    http_logging : bool
        Whether request lines are emitted.
    """
    access = logging.getLogger(ACCESS_LOGGER)
    access.setLevel(logging.INFO if http_logging else logging.WARNING)

    root = logging.getLogger()
    if root.handlers:
        return
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    _add_handler(root, logging.StreamHandler())
    if logfile:
        _add_handler(root, logging.FileHandler(Path(logfile).resolve(), encoding="utf-8"))
