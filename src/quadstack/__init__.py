"""quadstack package."""

from __future__ import annotations

import os
from datetime import datetime, timezone


def _build_date_version() -> str:
	override = os.getenv("QUADSTACK_BUILD_VERSION")
	if override:
		return override
	return datetime.now(timezone.utc).strftime("%Y%m%d")


__version__ = _build_date_version()

from .config import Settings, load_config  # noqa: E402
from .deploy import DeploymentOrchestrator, DeploymentOutcome, RoundPhase, RoundReport, run_session  # noqa: E402
from .errors import DeploymentError, ProvisioningError  # noqa: E402
from .manifest import ServiceDescriptor, load_manifest  # noqa: E402
from .render_utils import render_unit, substitute_tokens  # noqa: E402
from .selection import resolve_selection  # noqa: E402
from .tokens import TokenTable, resolve_tokens  # noqa: E402

__all__ = [
	"DeploymentError",
	"DeploymentOrchestrator",
	"DeploymentOutcome",
	"ProvisioningError",
	"RoundPhase",
	"RoundReport",
	"ServiceDescriptor",
	"Settings",
	"TokenTable",
	"load_config",
	"load_manifest",
	"render_unit",
	"resolve_selection",
	"resolve_tokens",
	"run_session",
	"substitute_tokens",
]
