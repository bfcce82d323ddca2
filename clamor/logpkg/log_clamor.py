"""
log_clamor.py
Process-wide logger facade for clamor-node.

  - LogClamor wraps the stdlib 'clamor' logger; structured fields are passed as
    keyword arguments and attached to the record as `record.fields`.
  - KeyValueFormatter renders those fields as trailing key=value pairs.
  - log_to_file(logger) traces calls of the decorated function at DEBUG level.
"""

import functools
import logging
import sys
from typing import Optional

from clamor.utils.singleton import Singleton

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class KeyValueFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "fields", None)
        if not fields:
            return line
        pairs = " ".join(f"{k}={_quote(v)}" for k, v in fields.items())
        return f"{line} {pairs}"


def _quote(value) -> str:
    s = str(value)
    if not s or any(ch.isspace() for ch in s) or '"' in s:
        return '"' + s.replace('"', '\\"') + '"'
    return s


class _LogClamor:
    def __init__(self, name: str = "clamor") -> None:
        self.logger = logging.getLogger(name)
        self._handlers = []

    def configure(self, level: str = "INFO", log_file: Optional[str] = None,
                  fmt: str = DEFAULT_FORMAT) -> None:
        """
        (Re)install the stream handler and, when log_file is set, a file handler.
        Safe to call more than once; previously installed handlers are replaced.
        """
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers = []

        formatter = KeyValueFormatter(fmt)
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        self._handlers.append(stream)
        if log_file:
            fh = logging.FileHandler(log_file)
            fh.setFormatter(formatter)
            self._handlers.append(fh)

        for handler in self._handlers:
            self.logger.addHandler(handler)
        self.logger.setLevel(level.upper())

    def _log(self, level: int, msg: str, fields: dict) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, msg, extra={"fields": fields}, stacklevel=3)

    def debug(self, msg: str, **fields) -> None:
        self._log(logging.DEBUG, msg, fields)

    def info(self, msg: str, **fields) -> None:
        self._log(logging.INFO, msg, fields)

    def warning(self, msg: str, **fields) -> None:
        self._log(logging.WARNING, msg, fields)

    def error(self, msg: str, **fields) -> None:
        self._log(logging.ERROR, msg, fields)


class LogClamor(_LogClamor, metaclass=Singleton):
    pass


def log_to_file(logger: _LogClamor):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger.debug(f"calling {func.__qualname__}")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.debug(f"{func.__qualname__} raised {type(e).__name__}: {e}")
                raise
            logger.debug(f"{func.__qualname__} returned")
            return result
        return wrapper
    return decorator
