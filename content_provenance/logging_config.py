"""Shared logging configuration for the content provenance tools.

Call ``configure_logging()`` once at any CLI entry point to ensure logs are emitted.
Handlers are only attached once; later calls just adjust the level.
"""

import logging
import os
from typing import Optional

from .errors import ConfigurationError

VERBOSITY_LEVELS = {
    "quiet": logging.ERROR,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def resolve_level(verbosity: str) -> int:
    """Map a verbosity name (quiet, info, debug) to a logging level."""
    try:
        return VERBOSITY_LEVELS[verbosity.lower()]
    except (KeyError, AttributeError):
        raise ConfigurationError(
            f"Unknown log level: {verbosity!r}. Must be one of {sorted(VERBOSITY_LEVELS)}"
        )


def configure_logging(verbosity: str = "info", log_file: Optional[str] = None) -> None:
    """Configure root logger with console + optional file handler."""
    level = resolve_level(verbosity)
    root = logging.getLogger()

    if not root.handlers:
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        formatter = logging.Formatter(fmt)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

        if log_file:
            try:
                log_dir = os.path.dirname(log_file)
                if log_dir:
                    os.makedirs(log_dir, exist_ok=True)
                fh = logging.FileHandler(log_file, mode="a")
                fh.setFormatter(formatter)
                root.addHandler(fh)
            except OSError as e:
                root.warning(f"Could not open log file {log_file}: {e}")

    root.setLevel(level)
