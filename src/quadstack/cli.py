#!/usr/bin/env python3
"""
quadstack CLI entry point.

Installs Quadlet container units listed in a manifest, provisions their
PostgreSQL databases, and starts/enables the resulting services.
"""

from __future__ import annotations

import argparse
import logging
import sys
import tempfile
from pathlib import Path
from typing import Optional

from .cli_utils import get_cli_version, prompt_install_dir
from .config import Settings, load_config, set_nested_value, write_rendered_toml
from .console import configure_logging, error, info, success
from .deploy import (
    DeploymentOrchestrator,
    check_host_prerequisites,
    ensure_install_dir,
    ensure_network,
    run_session,
)
from .errors import DeploymentError
from .manifest import load_manifest
from .runner import SubprocessRunner
from .tokens import TokenTable, parse_var_overrides

logger = logging.getLogger(__name__)


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments for quadstack.

    Supports arguments:
    1. --manifest <url|path> - Manifest listing unit templates
    2. --install-dir <path> - Value of {{INSTALL_DIR}} (default: /opt/containers)
    3. --non-interactive - No prompts; requires --select and every needed --var
    4. --select <expr> - Numbers, ranges, install names, or 'all'
    5. --var KEY=VALUE - Template token value (repeatable)
    6. --config <path> - TOML settings file
    7. --render-config <path> - Write effective settings as TOML and exit
    8. --list - Print manifest entries and exit
    9. --log-level <level> - DEBUG, INFO, WARNING or ERROR
    """
    parser = argparse.ArgumentParser(
        prog='quadstack',
        description='Quadlet installer: manifest-driven container units with PostgreSQL provisioning',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Interactive install from the default manifest
  %(prog)s

  # Unattended install of two entries with token values
  %(prog)s --manifest ./container-manifest.txt --non-interactive \\
      --select 1,3-4 --var GATEWAY_HOST_PORT=8080 --var APP_HOST_PORT=5100

  # Show what a manifest offers
  %(prog)s --manifest https://example.com/manifest.txt --list

Environment:
  APPNET_NAME         Podman network ensured at start (default: appnet)
  PG_CONTAINER_NAME   PostgreSQL container name (default: postgresql)
  GUAC_INIT_SQL_URL   Init SQL for the guacamole schema hook

Unit metadata (for PostgreSQL prompting):
  # RequiresPostgres: db=<name> user=<name>
        '''
    )

    parser.add_argument(
        '--manifest',
        type=str,
        default=None,
        metavar='URL_OR_PATH',
        help='URL (raw) or local path to a manifest of unit sources'
    )

    parser.add_argument(
        '--install-dir',
        type=Path,
        default=None,
        metavar='PATH',
        help='Path injected into templates as {{INSTALL_DIR}} (default: /opt/containers)'
    )

    parser.add_argument(
        '--non-interactive',
        action='store_true',
        help='Run without prompts (requires --select and any needed --var)'
    )

    parser.add_argument(
        '--select',
        type=str,
        default=None,
        metavar='EXPR',
        help="Comma-separated numbers/ranges/install names (or 'all')"
    )

    parser.add_argument(
        '--var',
        action='append',
        default=[],
        metavar='KEY=VALUE',
        help='Template token value (repeatable)'
    )

    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        metavar='PATH',
        help='TOML settings file (default: /etc/quadstack/quadstack.toml if present)'
    )

    parser.add_argument(
        '--render-config',
        type=Path,
        default=None,
        metavar='PATH',
        help='Write the effective settings as TOML and exit'
    )

    parser.add_argument(
        '--list',
        action='store_true',
        help='Print manifest entries and exit'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Diagnostic log level (default: deploy.log_level or INFO)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {get_cli_version()}'
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> dict:
    """Merge settings file, environment and command-line flags."""
    config = load_config(args.config)
    if args.manifest:
        set_nested_value(config, 'deploy.manifest', args.manifest)
    if args.install_dir:
        set_nested_value(config, 'deploy.install_dir', str(args.install_dir))
    if args.log_level:
        set_nested_value(config, 'deploy.log_level', args.log_level)
    return config


def execute(args: argparse.Namespace) -> int:
    config = build_config(args)
    configure_logging(config['deploy'].get('log_level', 'INFO'))

    if args.render_config:
        write_rendered_toml(args.render_config, config)
        success(f"Rendered settings to {args.render_config}")
        return 0

    settings = Settings.from_config(config)
    overrides = parse_var_overrides(args.var)
    interactive = not args.non_interactive

    if not args.manifest:
        info(f"No --manifest provided; using default: {settings.manifest}")

    if args.list:
        with tempfile.TemporaryDirectory(prefix='quadstack-') as workdir:
            descriptors = load_manifest(settings.manifest, Path(workdir), settings.unit_suffix)
            for idx, descriptor in enumerate(descriptors, start=1):
                print(f"  [{idx}] {descriptor.display_label}", flush=True)
        return 0

    if not interactive and not args.select:
        raise DeploymentError("--non-interactive requires --select")

    check_host_prerequisites()
    runner = SubprocessRunner()
    ensure_network(runner, settings.network_name, settings.network_fallback_subnet)

    if interactive:
        prompt_install_dir(settings)
    ensure_install_dir(settings.install_dir)

    with tempfile.TemporaryDirectory(prefix='quadstack-') as workdir:
        descriptors = load_manifest(settings.manifest, Path(workdir), settings.unit_suffix)
        orchestrator = DeploymentOrchestrator(
            settings,
            runner,
            descriptors,
            Path(workdir),
            interactive=interactive,
        )
        table = TokenTable(settings.install_dir, overrides)
        run_session(orchestrator, table, args.select)

    return 0


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)
    try:
        return execute(args)
    except DeploymentError as e:
        error(str(e))
        return 1
    except KeyboardInterrupt:
        print("\n[WARN] Interrupted by user", flush=True)
        return 130


if __name__ == '__main__':
    sys.exit(main())
