#!/usr/bin/env python3
"""
Command runner used for every external process quadstack starts.

systemctl, podman and psql (through `podman exec`) are all reached through a
CommandRunner so the orchestration logic can be driven by a fake in tests.
"""

from __future__ import annotations

import logging
import subprocess
from typing import NamedTuple, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

# Conventional shell exit codes for "command not found" and "timed out"
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


class CommandResult(NamedTuple):
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    """Run one command to completion and capture its combined output."""

    def run(self, cmd: Sequence[str]) -> CommandResult:
        """Return exit status and stdout+stderr; never raise for a failing command."""


class SubprocessRunner:
    """CommandRunner backed by subprocess.run."""

    def __init__(self, timeout: Optional[float] = 300) -> None:
        self.timeout = timeout

    def run(self, cmd: Sequence[str]) -> CommandResult:
        argv = [str(part) for part in cmd]
        logger.debug(f"Running: {' '.join(argv)}")
        try:
            result = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
                check=False
            )
        except FileNotFoundError:
            logger.debug(f"  command not found: {argv[0]}")
            return CommandResult(EXIT_NOT_FOUND, f"{argv[0]}: command not found")
        except subprocess.TimeoutExpired:
            logger.debug(f"  timed out after {self.timeout}s")
            return CommandResult(EXIT_TIMEOUT, f"{argv[0]}: timed out after {self.timeout}s")

        logger.debug(f"  exit {result.returncode}")
        return CommandResult(result.returncode, result.stdout or "")
