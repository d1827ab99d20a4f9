#!/usr/bin/env python3
"""
Round orchestration for quadstack.

A round takes a selection of manifest entries all the way to running
services. Phases run strictly in this order:

    LOADED -> SELECTED -> TOKENS_RESOLVED -> RENDERED -> INSTALLED
    -> RELOADED_PHASE1 -> PROVISIONED -> HOOKS_INJECTED
    -> RELOADED_PHASE2 -> STARTED -> REPORTED

Anything failing up to RENDERED raises DeploymentError before a single file
lands in the unit directory. From INSTALLED on, failures become per-unit or
per-round warnings so one broken unit does not block the rest.

Databases are provisioned between the two daemon reloads, which is what
keeps dependent services from starting before their database exists.
"""

from __future__ import annotations

import getpass
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

from .config import Settings
from .config_constants import (
    ALREADY_ENABLED_STATES,
    BACKUP_STAMP_FORMAT,
    GENERATED_UNIT_MARKER,
    SERVICE_SUFFIX,
)
from .console import BOLD, RESET, heading, info, success, warn
from .errors import DeploymentError, ProvisioningError
from .hooks import HookInjector
from .manifest import ServiceDescriptor, fetch_text, read_text_file
from .postgres import PostgresProvisioner, ProvisioningRequest, parse_requirement, request_provisioning
from .render_utils import RenderedUnit, render_unit, stage_template
from .runner import CommandRunner
from .selection import resolve_selection
from .tokens import TokenTable, extract_tokens_from_files, resolve_tokens

logger = logging.getLogger(__name__)

Prompt = Callable[[str], str]


class RoundPhase(Enum):
    LOADED = 1
    SELECTED = 2
    TOKENS_RESOLVED = 3
    RENDERED = 4
    INSTALLED = 5
    RELOADED_PHASE1 = 6
    PROVISIONED = 7
    HOOKS_INJECTED = 8
    RELOADED_PHASE2 = 9
    STARTED = 10
    REPORTED = 11


class EnableState(str, Enum):
    ENABLED = 'enabled'
    GENERATED_SKIP = 'generated-skip'
    FAILED = 'failed'


@dataclass
class DeploymentOutcome:
    unit_name: str
    service: str
    installed: bool = False
    started: bool = False
    enable_state: EnableState = EnableState.FAILED
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        warn(message)
        self.warnings.append(message)


@dataclass
class RoundReport:
    outcomes: list[DeploymentOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    phases: list[RoundPhase] = field(default_factory=list)
    backup_dir: Optional[Path] = None
    provisioned: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        warn(message)
        self.warnings.append(message)

    @property
    def started(self) -> list[str]:
        return [o.service for o in self.outcomes if o.started]

    def all_warnings(self) -> list[str]:
        messages = list(self.warnings)
        for outcome in self.outcomes:
            messages.extend(outcome.warnings)
        return messages


def check_host_prerequisites() -> None:
    """
    Fail fast unless running as root with systemctl and podman available.
    """
    # Allow tests to bypass host checks
    if os.getenv('QUADSTACK_SKIP_PREFLIGHT') == '1':
        return

    if os.geteuid() != 0:
        raise DeploymentError("Please run as root (e.g., sudo quadstack)")

    missing = []
    for binary in ('systemctl', 'podman'):
        if shutil.which(binary) is None:
            missing.append(binary)
    if missing:
        raise DeploymentError(f"Required command(s) not found: {', '.join(missing)}")


def ensure_network(runner: CommandRunner, network_name: str, fallback_subnet: str = '') -> bool:
    """
    Ensure the shared container network exists.

    A create failure that looks like a subnet clash is retried once with the
    fallback subnet. Failure is reported but never fatal.
    """
    if not network_name:
        return True

    if runner.run(['podman', 'network', 'inspect', network_name]).ok:
        info(f"Network '{network_name}' exists.")
        return True

    info(f"Creating network '{network_name}' ...")
    result = runner.run(['podman', 'network', 'create', network_name])
    if result.ok:
        success(f"Network '{network_name}' created")
        return True

    warn(f"Failed to create network '{network_name}': {result.output.strip()}")
    clash_markers = ('subnet', 'overlap', 'already exists', 'already defined')
    if fallback_subnet and any(marker in result.output.lower() for marker in clash_markers):
        retry = runner.run(['podman', 'network', 'create', '--subnet', fallback_subnet, network_name])
        if retry.ok:
            success(f"Network '{network_name}' created with subnet {fallback_subnet}")
            return True
        warn(f"Fallback also failed: {retry.output.strip()}")
    return False


def ensure_install_dir(install_dir: Path) -> None:
    try:
        install_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(install_dir, 0o755)
    except OSError as e:
        raise DeploymentError(f"Cannot create install directory {install_dir}: {e}") from e


def service_name_for(install_name: str, unit_suffix: str) -> str:
    short = install_name[:-len(unit_suffix)] if unit_suffix and install_name.endswith(unit_suffix) else install_name
    return f"{short}{SERVICE_SUFFIX}"


class DeploymentOrchestrator:
    """Drive rounds against one loaded manifest."""

    def __init__(
        self,
        settings: Settings,
        runner: CommandRunner,
        descriptors: Sequence[ServiceDescriptor],
        workdir: Path,
        interactive: bool = True,
        prompt: Prompt = input,
        secret_prompt: Prompt = getpass.getpass,
        sleep: Callable[[float], None] = time.sleep,
        fetch: Callable[[str], str] = fetch_text
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.descriptors = list(descriptors)
        self.workdir = workdir
        self.interactive = interactive
        self.prompt = prompt
        self.secret_prompt = secret_prompt
        self.provisioner = PostgresProvisioner(
            runner,
            container=settings.pg_container,
            admin_user=settings.pg_admin_user,
            ready_attempts=settings.pg_ready_attempts,
            ready_interval=settings.pg_ready_interval,
            sleep=sleep,
        )
        self.hooks = HookInjector(settings, fetch=fetch)
        self._report: Optional[RoundReport] = None

    # ------------------------------------------------------------------
    # Phase bookkeeping
    # ------------------------------------------------------------------

    def _enter(self, phase: RoundPhase) -> None:
        report = self._report
        if report is None:
            raise RuntimeError(f"Phase {phase.name} entered outside a round")
        expected = report.phases[-1].value + 1 if report.phases else RoundPhase.LOADED.value
        if phase.value != expected:
            previous = report.phases[-1].name if report.phases else "start"
            raise RuntimeError(f"Phase {phase.name} entered out of order after {previous}")
        report.phases.append(phase)
        logger.debug(f"Phase: {phase.name}")

    # ------------------------------------------------------------------
    # Pre-install steps (fatal on failure)
    # ------------------------------------------------------------------

    def print_entries(self) -> None:
        heading("Discovered Quadlet entries:")
        for idx, descriptor in enumerate(self.descriptors, start=1):
            print(f"  [{idx}] {descriptor.display_label}", flush=True)

    def select(self, expression: Optional[str]) -> list[ServiceDescriptor]:
        self.print_entries()
        if self.interactive and not expression:
            expression = self.prompt(
                "\nSelect by number/comma, ranges (e.g. 1,3-4), filenames, or 'all': "
            )
        indices = resolve_selection(self.descriptors, expression or '')
        return [self.descriptors[idx] for idx in indices]

    def collect_requests(self, selected: Sequence[ServiceDescriptor]) -> list[ProvisioningRequest]:
        heading("Checking if any selected services need a PostgreSQL database...")
        db_requests: list[ProvisioningRequest] = []
        for descriptor in selected:
            short = descriptor.short_name(self.settings.unit_suffix)
            requirement = parse_requirement(read_text_file(descriptor.path), short)
            if requirement is None:
                continue
            print(f"\n-> {BOLD}{short}{RESET} indicates it needs PostgreSQL.", flush=True)
            request = request_provisioning(
                short,
                requirement,
                interactive=self.interactive,
                prompt=self.prompt,
                secret_prompt=self.secret_prompt,
            )
            if request is not None:
                db_requests.append(request)
        if not db_requests:
            info("No PostgreSQL requirements detected in selected units.")
        return db_requests

    # ------------------------------------------------------------------
    # Install and activation (warnings only)
    # ------------------------------------------------------------------

    def _backup_dir(self, report: RoundReport) -> Path:
        """Create this round's backup dir on first use; never reuse another round's."""
        if report.backup_dir is None:
            stamp = datetime.now().strftime(BACKUP_STAMP_FORMAT)
            unit_dir = self.settings.unit_dir
            candidate = unit_dir.parent / f"{unit_dir.name}.bak-{stamp}"
            counter = 1
            while True:
                try:
                    candidate.mkdir(parents=True)
                    break
                except FileExistsError:
                    counter += 1
                    candidate = unit_dir.parent / f"{unit_dir.name}.bak-{stamp}-{counter}"
            report.backup_dir = candidate
        return report.backup_dir

    def install_unit(self, unit: RenderedUnit, outcome: DeploymentOutcome, report: RoundReport) -> None:
        """Move any existing unit into the round's backup dir, then install."""
        dest = self.settings.unit_dir / unit.install_name
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if dest.exists():
                backup = self._backup_dir(report) / unit.install_name
                info(f"  Backing up existing {unit.install_name} -> {backup}")
                shutil.move(str(dest), str(backup))
            shutil.copyfile(unit.file_path, dest)
            os.chmod(dest, 0o644)
            outcome.installed = True
            logger.debug(f"Installed {dest}")
        except OSError as e:
            outcome.warn(f"Failed to install {unit.install_name}: {e}")

    def daemon_reload(self, report: RoundReport, label: str) -> None:
        info(f"Reloading systemd daemon ({label}) ...")
        result = self.runner.run(['systemctl', 'daemon-reload'])
        if not result.ok:
            report.warn(f"systemctl daemon-reload ({label}) failed: {result.output.strip()}")

    def start_database_server(self) -> None:
        pg_service = self.settings.pg_service
        listing = self.runner.run(['systemctl', 'list-unit-files', pg_service])
        if listing.ok and pg_service in listing.output:
            info(f"Starting {pg_service} (PostgreSQL) ...")
            self.runner.run(['systemctl', 'start', pg_service])

    def provision_all(self, db_requests: Sequence[ProvisioningRequest], report: RoundReport) -> None:
        if not db_requests:
            return

        self.start_database_server()
        if not self.provisioner.wait_ready():
            report.warn(
                "PostgreSQL not running/ready; skipping DB provisioning "
                "(app units may fail until PG is up)."
            )
            return

        heading("Provisioning PostgreSQL database(s) before starting app services...")
        for request in db_requests:
            info(f"  -> {request.service_label}: {request.database} / {request.username}")
            try:
                self.provisioner.provision(request)
                report.provisioned.append(request.database)
            except ProvisioningError as e:
                report.warn(f"Provisioning failed for {request.database}: {e}")

    def inject_hooks(self, db_requests: Sequence[ProvisioningRequest], table: TokenTable, report: RoundReport) -> None:
        for request in db_requests:
            service = f"{request.service_label}{SERVICE_SUFFIX}"
            try:
                self.hooks.inject(request, service, table)
            except (DeploymentError, OSError) as e:
                report.warn(f"Failed to add schema hook for {request.service_label}: {e}")

    def start_and_enable(self, outcome: DeploymentOutcome) -> None:
        svc = outcome.service

        if self.runner.run(['systemctl', 'start', svc]).ok:
            outcome.started = True
        else:
            outcome.warn(f"Failed to start {svc} (check logs: journalctl -u {svc}). Continuing...")

        state = self.runner.run(['systemctl', 'is-enabled', svc]).output.strip()
        if state in ALREADY_ENABLED_STATES:
            info(f"{svc} already enabled/state={state}; skipping enable.")
            outcome.enable_state = EnableState.GENERATED_SKIP if state == 'generated' else EnableState.ENABLED
            return

        result = self.runner.run(['systemctl', 'enable', svc])
        if result.ok:
            outcome.enable_state = EnableState.ENABLED
        elif GENERATED_UNIT_MARKER in result.output.lower():
            info(f"{svc} is a generated unit; enable not applicable. Continuing.")
            outcome.enable_state = EnableState.GENERATED_SKIP
        else:
            outcome.enable_state = EnableState.FAILED
            outcome.warn(f"Failed to enable {svc}: {result.output.strip()}")

    # ------------------------------------------------------------------
    # Round
    # ------------------------------------------------------------------

    def run_round(self, table: TokenTable, selection: Optional[str] = None) -> RoundReport:
        """
        Run one full round. Raises DeploymentError for pre-install failures.
        """
        report = RoundReport()
        self._report = report
        staged: list[Path] = []

        try:
            self._enter(RoundPhase.LOADED)

            selected = self.select(selection)
            db_requests = self.collect_requests(selected)
            self._enter(RoundPhase.SELECTED)

            for descriptor in selected:
                staged.append(stage_template(descriptor, self.workdir))
            resolve_tokens(
                extract_tokens_from_files(staged),
                table,
                defaults=self.settings.token_defaults,
                interactive=self.interactive,
                prompt=self.prompt,
            )
            self._enter(RoundPhase.TOKENS_RESOLVED)

            heading(f"Injecting variables, ensuring host paths exist, and installing to {self.settings.unit_dir} ...")
            units = [
                render_unit(descriptor.install_name, path, table)
                for descriptor, path in zip(selected, staged)
            ]
            self._enter(RoundPhase.RENDERED)

            for unit in units:
                outcome = DeploymentOutcome(
                    unit_name=unit.install_name,
                    service=service_name_for(unit.install_name, self.settings.unit_suffix),
                )
                report.outcomes.append(outcome)
                self.install_unit(unit, outcome, report)
            self._enter(RoundPhase.INSTALLED)

            self.daemon_reload(report, 'phase 1')
            self._enter(RoundPhase.RELOADED_PHASE1)

            self.provision_all(db_requests, report)
            self._enter(RoundPhase.PROVISIONED)

            self.inject_hooks(db_requests, table, report)
            self._enter(RoundPhase.HOOKS_INJECTED)

            self.daemon_reload(report, 'phase 2')
            self._enter(RoundPhase.RELOADED_PHASE2)

            heading("Starting, then enabling services ...")
            for outcome in report.outcomes:
                if not outcome.installed:
                    continue
                self.start_and_enable(outcome)
            self._enter(RoundPhase.STARTED)

            print_round_summary(report)
            self._enter(RoundPhase.REPORTED)
            return report
        finally:
            for path in staged:
                path.unlink(missing_ok=True)
            self._report = None


def print_round_summary(report: RoundReport) -> None:
    heading("Round complete.")
    if report.backup_dir is not None:
        info(f"Previous unit files backed up to {report.backup_dir}")

    print("Services started (attempted) and enabled/skipped as appropriate:", flush=True)
    for outcome in report.outcomes:
        status = 'started' if outcome.started else 'NOT started'
        print(f"  - {outcome.service}: {status}, enable={outcome.enable_state.value}", flush=True)

    messages = report.all_warnings()
    if messages:
        print("\nWarnings:", flush=True)
        for message in messages:
            print(f"  - {message}", flush=True)

    if report.started:
        print("\nManage with:", flush=True)
        for svc in report.started:
            print(f"  systemctl status {svc}", flush=True)
    print("", flush=True)


def run_session(
    orchestrator: DeploymentOrchestrator,
    table: TokenTable,
    selection: Optional[str] = None
) -> list[RoundReport]:
    """
    Run rounds until the operator is done; unattended runs do one round.
    """
    reports = []
    while True:
        reports.append(orchestrator.run_round(table, selection))
        if not orchestrator.interactive:
            break
        again = orchestrator.prompt(
            "\nDo you want to install/configure more items from this manifest? [y/N]: "
        ).strip().lower()
        if again not in ('y', 'yes'):
            info("All done.")
            break
        table = table.carry_forward()
        selection = None
    return reports
