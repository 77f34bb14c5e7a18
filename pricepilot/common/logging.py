"""Logging setup for the PricePilot CLI and embedding services."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty transport libraries, held at WARNING so DEBUG runs stay readable
NOISY_LOGGERS = ("urllib3", "charset_normalizer")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def setup_logging(
    level: int | str = logging.INFO,
    module_name: str = "pricepilot",
) -> logging.Logger:
    """Configure the package logger and return it.

    Calling again with another level adjusts the installed handler rather
    than stacking a second one, so a CLI flag can override an earlier
    default.

    Args:
        level: Logging level as an int or a name such as ``"DEBUG"``.
        module_name: Logger to configure. Loggers made with
                     ``logging.getLogger(__name__)`` in the package
                     propagate to it.

    Raises:
        ValueError: ``level`` is not a known level name.
    """
    level = _resolve_level(level)
    logger = logging.getLogger(module_name)
    logger.setLevel(level)

    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.setLevel(max(level, logging.WARNING))

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    return logger
