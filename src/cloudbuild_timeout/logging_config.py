"""Logging setup for the wrapper's own messages.

Records below WARNING go to stdout and everything else to stderr, both as
``LEVEL: 2006/01/02 15:04:05 message``. The wrapped command's output is never
routed through here; it writes straight to the inherited streams.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO


LOG_FORMAT = "%(levelname)s: %(asctime)s %(message)s"
DATE_FORMAT = "%Y/%m/%d %H:%M:%S"

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "google.auth", "urllib3")


class _BelowLevel(logging.Filter):
    def __init__(self, level: int):
        super().__init__()
        self._level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self._level


def setup_logging(
    level: str = "INFO",
    *,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    out = logging.StreamHandler(stdout or sys.stdout)
    out.setLevel(logging.DEBUG)
    out.addFilter(_BelowLevel(logging.WARNING))
    out.setFormatter(formatter)
    root.addHandler(out)

    err = logging.StreamHandler(stderr or sys.stderr)
    err.setLevel(logging.WARNING)
    err.setFormatter(formatter)
    root.addHandler(err)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
