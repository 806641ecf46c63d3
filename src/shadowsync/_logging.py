"""Log output for the command line: stderr, level set by ``-v`` count."""

from __future__ import annotations

import logging
import sys

LOGGER_NAME = "shadowsync"

_LEVELS = {0: logging.WARNING, 1: logging.INFO}


class HumanFormatter(logging.Formatter):
    """``LEVEL   [module] message``, coloured when stderr is a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:7}"
        if sys.stderr.isatty():
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        module = record.name.split(".")[-1]
        text = f"{level} [{module}] {record.getMessage()}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def setup_logging(verbosity: int = 0) -> None:
    """Send shadowsync logs to the current stderr.

    0 shows warnings and errors, 1 adds progress, 2 or more adds debug
    output including the SSH library's.
    """
    level = _LEVELS.get(verbosity, logging.DEBUG)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(HumanFormatter())
    logger.addHandler(handler)

    logging.getLogger("paramiko").setLevel(
        logging.DEBUG if verbosity >= 2 else logging.WARNING
    )
