"""
Logging setup for the livepull command line.

Library code only ever calls ``logging.getLogger(__name__)``; handlers are
attached here. By default only warnings reach the terminal. ``--verbose``
turns on debug output, ``watch`` shows sync progress, and every command
that syncs appends to a rotating operations log in the home directory.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

# httpx logs one INFO line per request
_NOISY_LOGGERS = ("httpx", "httpcore")

OPS_LOG_NAME = "livepull-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

_FULL_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _package_logger() -> logging.Logger:
    return logging.getLogger("livepull")


def _lower_level(logger: logging.Logger, level: int) -> None:
    # Never raise a level someone else already lowered
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)


def configure_quiet_mode(quiet: bool = True):
    """Silence per-request chatter from the HTTP stack (or restore it)."""
    level = logging.WARNING if quiet else logging.NOTSET
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)
    warnings.filterwarnings("ignore" if quiet else "default", category=DeprecationWarning)


def enable_debug_mode():
    """Send everything at DEBUG to stderr."""
    warnings.filterwarnings("default")
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    already = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in root.handlers
    )
    if not already:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(_FULL_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(handler)

    _package_logger().setLevel(logging.DEBUG)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)


def enable_console_log(level: int = logging.INFO):
    """Show livepull progress on stderr, for long-running commands."""
    pkg = _package_logger()
    if any(getattr(h, "_livepull_console", False) for h in pkg.handlers):
        return
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
    console._livepull_console = True
    pkg.addHandler(console)
    _lower_level(pkg, level)


def configure_ops_log(home) -> RotatingFileHandler:
    """
    Append INFO and above from livepull to ``{home}/livepull-ops.log``.

    Active whatever the verbosity, so sync history is always on disk.
    The caller may detach the returned handler when done.
    """
    path = Path(home) / OPS_LOG_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    ops = RotatingFileHandler(path, maxBytes=OPS_LOG_MAX_BYTES, backupCount=OPS_LOG_BACKUPS)
    ops.setLevel(logging.INFO)
    ops.setFormatter(logging.Formatter(_FULL_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    pkg = _package_logger()
    pkg.addHandler(ops)
    _lower_level(pkg, logging.INFO)
    return ops
