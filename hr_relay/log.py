"""Logging configuration."""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

APP_LOGGER = "hr_relay"
LEVEL_ENV = "HR_RELAY_LOG"


def resolve_level(configured: str, verbose: bool = False) -> str:
    """Effective level name: ``--verbose``, then ``$HR_RELAY_LOG``, then the config file."""
    if verbose:
        return "DEBUG"
    return os.environ.get(LEVEL_ENV, "").strip() or configured


def setup_logging(level: str = "INFO") -> None:
    """Send warnings from every library and ``level`` from hr_relay to stderr.

    Stdout is left to the device confirmation prompt. Unknown level names
    fall back to INFO.
    """
    name = level.upper()
    numeric_level = getattr(logging, name) if name in VALID_LEVELS else logging.INFO

    logging.basicConfig(
        level=logging.WARNING,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
        force=True,
    )

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(numeric_level)
    if name not in VALID_LEVELS:
        app_logger.warning("Unknown log level '%s', defaulting to INFO", level)
