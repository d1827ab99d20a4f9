#!/usr/bin/env python3
"""
One-shot schema load hooks.

Some services need an external SQL schema loaded once after their database
is provisioned. For every provisioned service whose label matches a
configured schema hook, this writes:

- <unit_dir>/<label>-db.env               credentials, mode 0600
- <init_sql_dir>/<label>-init.sql         downloaded schema script
- <systemd_dir>/<label>-db-init.service   guarded oneshot unit
- <systemd_dir>/<service>.d/10-dbinit.conf  ordering drop-in

The oneshot touches <install_dir>/<label>/.schema_loaded when done and is
conditioned on that file being absent, so re-triggering it is a no-op.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from jinja2 import Template, TemplateError

from .config import SchemaHook, Settings
from .console import info
from .errors import DeploymentError
from .manifest import fetch_text
from .postgres import ProvisioningRequest
from .render_utils import find_unresolved, substitute_tokens
from .tokens import TokenTable

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'
DROPIN_NAME = '10-dbinit.conf'


@dataclass
class InjectedHook:
    init_unit: str
    unit_path: Path
    dropin_path: Path
    env_path: Path
    sql_path: Path


def render_template(name: str, context: dict) -> str:
    """
    Render a packaged Jinja2 template with the given context.
    """
    template_file = TEMPLATE_DIR / name
    if not template_file.exists():
        raise FileNotFoundError(f"Template file not found: {template_file}")

    try:
        template = Template(template_file.read_text(encoding='utf-8'), keep_trailing_newline=True)
        return template.render(**context)
    except TemplateError as e:
        raise DeploymentError(f"Failed to render template {name}: {e}") from e


def match_schema_hook(label: str, hooks: list[SchemaHook]) -> Optional[SchemaHook]:
    for hook in hooks:
        if fnmatch.fnmatch(label.lower(), hook.pattern.lower()):
            return hook
    return None


class HookInjector:
    """Write schema-load hook artifacts for matching provisioned services."""

    def __init__(self, settings: Settings, fetch: Callable[[str], str] = fetch_text) -> None:
        self.settings = settings
        self.fetch = fetch

    def inject(self, request: ProvisioningRequest, service_name: str, table: TokenTable) -> Optional[InjectedHook]:
        """
        Return the injected hook, or None when no hook applies. A schema
        script that cannot be fetched raises DeploymentError.
        """
        hook = match_schema_hook(request.service_label, self.settings.schema_hooks)
        if hook is None:
            return None

        settings = self.settings
        label = request.service_label
        init_unit = f"{label}-db-init.service"
        sql_path = settings.init_sql_dir / f"{label}-init.sql"
        env_path = settings.unit_dir / f"{label}-db.env"
        unit_path = settings.systemd_dir / init_unit
        dropin_path = settings.systemd_dir / f"{service_name}.d" / DROPIN_NAME

        for directory in (settings.init_sql_dir, settings.unit_dir, dropin_path.parent, Path(table.install_dir) / label):
            directory.mkdir(parents=True, exist_ok=True)

        info(f"Fetching {label} init SQL from: {hook.init_sql_url}")
        try:
            sql_path.write_text(self.fetch(hook.init_sql_url), encoding='utf-8')
        except DeploymentError as e:
            raise DeploymentError(f"Could not fetch {hook.init_sql_url}; skipping {label} schema load hook ({e})") from e

        env_text = render_template('db.env.j2', {
            'database': request.database,
            'username': request.username,
            'password': request.password,
        })
        fd = os.open(env_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(env_text)
        os.chmod(env_path, 0o600)

        unit_text = render_template('db-init.service.j2', {
            'label': label,
            'pg_service': settings.pg_service,
            'pg_container': settings.pg_container,
            'admin_user': settings.pg_admin_user,
            'sql_path': sql_path,
            'env_path': env_path,
        })
        unit_text = substitute_tokens(unit_text, table)
        leftover = find_unresolved(unit_text)
        if leftover:
            raise DeploymentError(f"Unresolved tokens remain in {init_unit}: {', '.join(leftover)}")
        unit_path.write_text(unit_text, encoding='utf-8')

        dropin_path.write_text(render_template('dbinit-dropin.conf.j2', {'init_unit': init_unit}), encoding='utf-8')

        info(f"Added one-shot schema hook {init_unit} for {service_name}")
        logger.debug(f"  hook files: {unit_path}, {dropin_path}, {env_path}, {sql_path}")
        return InjectedHook(
            init_unit=init_unit,
            unit_path=unit_path,
            dropin_path=dropin_path,
            env_path=env_path,
            sql_path=sql_path,
        )
