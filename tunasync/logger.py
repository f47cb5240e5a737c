"""Logging set-up for the daemon and the control client."""

from __future__ import annotations

import logging
import sys

NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

LOGGER_NAMES = ("tunasync", "tunasynctl")

_RESET = "\033[0m"
_COLORS = {
    logging.CRITICAL: "\033[35m",
    logging.ERROR: "\033[31m",
    logging.WARNING: "\033[33m",
    NOTICE: "\033[32m",
    logging.INFO: "\033[37m",
    logging.DEBUG: "\033[36m",
}


class _LevelColorFormatter(logging.Formatter):
    def __init__(self, fmt: str, datefmt: str | None, colored: bool):
        super().__init__(fmt, datefmt)
        self._colored = colored

    def format(self, record: logging.LogRecord) -> str:
        record.color = _COLORS.get(record.levelno, "") if self._colored else ""
        record.reset = _RESET if self._colored else ""
        return super().format(record)


def init_logger(verbose: bool, debug: bool, with_systemd: bool) -> None:
    """Configure format, output and level of the program loggers."""
    if with_systemd:
        fmt, colored = "[%(levelname).6s] %(message)s", False
    elif debug:
        fmt = (
            "%(color)s[%(asctime)s][%(levelname).6s][%(filename)s:%(lineno)d]"
            "%(reset)s %(message)s"
        )
        colored = True
    else:
        fmt, colored = "%(color)s[%(asctime)s][%(levelname).6s]%(reset)s %(message)s", True

    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = NOTICE

    for name in LOGGER_NAMES:
        log = logging.getLogger(name)
        for handler in [h for h in log.handlers if getattr(h, "_tunasync", False)]:
            log.removeHandler(handler)
        handler = logging.StreamHandler(sys.stdout)
        handler._tunasync = True
        handler.setFormatter(_LevelColorFormatter(fmt, "%y-%m-%d %H:%M:%S", colored))
        log.addHandler(handler)
        log.setLevel(level)
        log.propagate = False