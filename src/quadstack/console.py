#!/usr/bin/env python3
"""Operator-facing output and logging setup."""

from __future__ import annotations

import logging

# Color codes for output
BLUE = '\033[94m'
GREEN = '\033[92m'
YELLOW = '\033[93m'
RED = '\033[91m'
BOLD = '\033[1m'
RESET = '\033[0m'

logger = logging.getLogger(__name__)


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure logging module with specified level.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR
    }

    level = level_map.get(str(log_level).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        force=True  # Reconfigure if already configured
    )
    logging.getLogger('quadstack').setLevel(level)

    if level == logging.DEBUG:
        logger.debug(f"Logging configured: {str(log_level).upper()} (command tracing enabled)")


def _emit(tag: str, msg: str, context: dict) -> None:
    print(f"{tag} {msg}", flush=True)
    for key, value in context.items():
        print(f"  {key}: {value}", flush=True)


def info(msg, **context):
    """Print info message with optional structured context."""
    _emit(f"{BLUE}[INFO]{RESET}", msg, context)


def success(msg, **context):
    """Print success message with optional structured context."""
    _emit(f"{GREEN}[SUCCESS]{RESET}", msg, context)


def warn(msg, **context):
    """Print warning message with optional structured context."""
    _emit(f"{YELLOW}[WARN]{RESET}", msg, context)


def error(msg, **context):
    """Print error message. Callers decide whether to exit."""
    _emit(f"{RED}[ERROR]{RESET}", msg, context)


def heading(msg: str) -> None:
    print(f"\n{BOLD}{msg}{RESET}", flush=True)
