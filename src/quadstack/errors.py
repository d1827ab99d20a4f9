"""Error types shared across quadstack."""

from __future__ import annotations


class DeploymentError(RuntimeError):
    """Fatal condition that aborts the current round before any install."""


class ProvisioningError(DeploymentError):
    """A provisioning statement failed against the database server."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output
