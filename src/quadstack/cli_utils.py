#!/usr/bin/env python3
"""Shared CLI helpers: version lookup and the install-dir prompt."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Callable

from .config import Settings

DISTRIBUTION_NAME = 'quadstack'


def get_cli_version() -> str:
    """Installed distribution version, else the package's build-date version."""
    try:
        return package_version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        from . import __version__

        return __version__ or "unknown"


def prompt_install_dir(settings: Settings, prompt: Callable[[str], str] = input) -> Path:
    """Ask once for the {{INSTALL_DIR}} root; an empty answer keeps the current value."""
    answer = prompt(f"Install/data path [{settings.install_dir}]: ").strip()
    if answer:
        settings.install_dir = Path(answer).expanduser()
    return settings.install_dir
