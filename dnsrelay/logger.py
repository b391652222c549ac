"""Logger construction and the process-wide logger."""

from __future__ import annotations

import itertools
import json
import logging
import sys
import threading
from dataclasses import dataclass
from typing import Union

_LEVELS = {
    "": logging.INFO,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}

_CONSOLE_FORMAT = "%(asctime)s\t%(levelname)s\t%(name)s\t%(message)s"

_instance_ids = itertools.count(1)
_instance_lock = threading.Lock()


@dataclass
class LogConfig:
    """Logging settings.

    ``level`` is one of debug, info, warn, error, dpanic, panic, fatal
    (empty means info). ``file`` is the output path; empty means stderr.
    ``production`` switches to JSON output.
    """

    level: str = ""
    file: str = ""
    production: bool = False


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "level": record.levelname.lower(),
            "ts": record.created,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _parse_level(text: str) -> int:
    try:
        return _LEVELS[text.lower()]
    except KeyError:
        raise ValueError(f"invalid log level: unrecognized level: {text!r}") from None


def _make_handler(file: str) -> logging.Handler:
    if not file or file == "stderr":
        return logging.StreamHandler(sys.stderr)
    if file == "stdout":
        return logging.StreamHandler(sys.stdout)
    try:
        return logging.FileHandler(file, mode="a", encoding="utf-8")
    except OSError as e:
        raise OSError(f"open log file: {e}") from e


def new_logger(config: LogConfig) -> logging.Logger:
    """Build a new logger from ``config``.

    Raises ValueError for an unknown level and OSError if the file
    cannot be opened.
    """
    level = _parse_level(config.level)
    handler = _make_handler(config.file)
    if config.production:
        handler.setFormatter(_JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))

    with _instance_lock:
        n = next(_instance_ids)
    logger = logging.getLogger(f"dnsrelay.log{n}")
    logger.setLevel(level)
    logger.propagate = False
    logger.addHandler(handler)
    return logger


def _build_global() -> logging.Logger:
    logger = logging.getLogger("dnsrelay")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(handler)
    return logger


def _build_nop() -> logging.Logger:
    logger = logging.getLogger("dnsrelay_nop")
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    logger.disabled = True
    return logger


_global = _build_global()
_nop = _build_nop()


def global_logger() -> logging.Logger:
    """Return the process-wide logger, writing to stderr at info level."""
    return _global


def set_level(level: Union[int, str]) -> None:
    """Set the level of the process-wide logger."""
    _global.setLevel(_parse_level(level) if isinstance(level, str) else level)


def nop_logger() -> logging.Logger:
    """Return a logger that never writes anything."""
    return _nop