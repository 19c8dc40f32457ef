"""Per-run diagnostic log (``debug.log`` in the run directory)."""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path

# Third-party loggers whose records belong in the run's debug log. httpx emits
# one INFO line per request with the method, URL and response status.
LIBRARY_LOGGERS = {"httpx": logging.INFO}

FILE_FORMAT = "[%(asctime)sZ] %(levelname)s %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname).1s %(name)s: %(message)s"


class UTCFormatter(logging.Formatter):
    converter = time.gmtime


def _attach(logger: logging.Logger, handlers: list[logging.Handler], level: int) -> None:
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.disabled = False
    logger.setLevel(level)
    for handler in handlers:
        logger.addHandler(handler)


def setup_logger(
    debug_file: Path, verbose: bool = False, logger_name: str = "skillgate"
) -> logging.Logger:
    """Send the package's diagnostics, and the HTTP client's request lines, to
    *debug_file*.

    Timestamps are UTC so they line up with the event log. With *verbose* the
    same records are mirrored to stderr in a shorter form. Calling this again
    (the next run) closes the previous run's handlers first.
    """
    debug_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(debug_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(UTCFormatter(FILE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    handlers: list[logging.Handler] = [file_handler]

    if verbose:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        handlers.append(console)

    logger = logging.getLogger(logger_name)
    _attach(logger, handlers, logging.DEBUG)

    for name, level in LIBRARY_LOGGERS.items():
        library_logger = logging.getLogger(name)
        _attach(library_logger, handlers, level)
        library_logger.propagate = False

    return logger
