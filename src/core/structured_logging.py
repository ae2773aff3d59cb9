"""
Structured logging for kola.

Every harness and platform module logs through a StructuredLogger obtained
from get_logger(). Messages go to stderr so they never mix with the runner's
result lines, and the -v count decides how much is shown:

- 0: errors only
- 1: provisioning progress (info) and warnings
- 2: debug output and key=value context on every message
- 3: timestamps, logger names and context rendered as JSON

Context values whose key looks like a credential are masked.
"""

import json
import logging as std_logging
import shlex
import sys
import time
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Union

# minimum verbosity for each standard level
_LEVEL_VERBOSITY = {
    std_logging.ERROR: 0,
    std_logging.WARNING: 1,
    std_logging.INFO: 1,
    std_logging.DEBUG: 2,
}

_SENSITIVE_KEYS = ('password', 'secret', 'token', 'private_key', 'user_data')

_QUIET_LOGGERS = ('asyncio', 'concurrent.futures')

_loggers: Dict[str, 'StructuredLogger'] = {}
_verbose_level = 0


class StructuredLogger:
    """Logger bound to a verbosity level, with key=value context."""

    def __init__(self, name: str, verbose_level: int = 0):
        self.name = name
        self.verbose_level = verbose_level
        self.logger = std_logging.getLogger(name)
        self.logger.setLevel(std_logging.DEBUG)
        self.logger.propagate = False
        self.logger.handlers.clear()

        handler = std_logging.StreamHandler(sys.stderr)
        handler.setFormatter(self._formatter())
        self.logger.addHandler(handler)

    def _formatter(self) -> std_logging.Formatter:
        if self.verbose_level >= 3:
            return std_logging.Formatter(
                '%(asctime)s [%(name)s] %(levelname)s: %(message)s',
                datefmt='%H:%M:%S'
            )
        if self.verbose_level >= 2:
            return std_logging.Formatter('[%(name)s] %(levelname)s: %(message)s')
        return std_logging.Formatter('%(message)s')

    def _emit(self, level: int, message: str, context: Dict[str, Any]) -> None:
        if self.verbose_level < _LEVEL_VERBOSITY[level]:
            return
        if context and (self.verbose_level >= 2 or level == std_logging.DEBUG):
            message = f"{message} | {self.format_context(context)}"
        self.logger.log(level, message)

    def error(self, message: str, **context: Any) -> None:
        self._emit(std_logging.ERROR, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._emit(std_logging.WARNING, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._emit(std_logging.INFO, message, context)

    def debug(self, message: str, **context: Any) -> None:
        self._emit(std_logging.DEBUG, message, context)

    def format_context(self, context: Dict[str, Any]) -> str:
        masked = mask_sensitive(context)
        if self.verbose_level >= 3:
            return json.dumps(masked, default=str, sort_keys=True)
        return " ".join(f"{k}={v}" for k, v in masked.items())

    @contextmanager
    def timer(self, operation: str):
        """Log how long the wrapped block took, at debug level."""
        start = time.monotonic()
        self.debug(f"Starting {operation}")
        try:
            yield
        finally:
            self.debug(f"Completed {operation}", elapsed=f"{time.monotonic() - start:.1f}s")

    def log_command_execution(self, command: Union[str, List[str]],
                              host: Optional[str] = None) -> None:
        """Log a local or remote command line before it runs."""
        if not isinstance(command, str):
            command = shlex.join(str(c) for c in command)
        message = f"Executing: {command}"
        if host:
            message = f"[{host}] {message}"
        self.debug(message)


def mask_sensitive(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of data with credential-like values replaced, nested dicts included."""
    masked = {}
    for key, value in data.items():
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            masked[key] = "***MASKED***"
        elif isinstance(value, dict):
            masked[key] = mask_sensitive(value)
        else:
            masked[key] = value
    return masked


def get_logger(name: str, verbose_level: Optional[int] = None) -> StructuredLogger:
    """
    Get or create a structured logger.

    Args:
        name: Logger name (usually __name__)
        verbose_level: Verbosity level (0-3), defaults to the level passed to
            setup_logging()
    """
    if verbose_level is None:
        verbose_level = _verbose_level
    key = f"{name}:{verbose_level}"
    if key not in _loggers:
        _loggers[key] = StructuredLogger(name, verbose_level)
    return _loggers[key]


def setup_logging(verbose_level: int = 0) -> None:
    """Set the process-wide default verbosity and quiet library loggers."""
    global _verbose_level
    _verbose_level = verbose_level

    std_logging.getLogger().setLevel(std_logging.WARNING)
    for name in _QUIET_LOGGERS:
        std_logging.getLogger(name).setLevel(std_logging.ERROR)
