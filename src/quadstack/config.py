#!/usr/bin/env python3
"""
Layered settings for quadstack.

Precedence (lowest to highest):
1. Built-in defaults (DEFAULT_CONFIG)
2. TOML settings file (--config, else /etc/quadstack/quadstack.toml if present)
3. Environment overrides (APPNET_NAME, PG_CONTAINER_NAME, GUAC_INIT_SQL_URL)
4. Command-line flags (applied by the CLI on top of the merged dict)

Merging is key-level (deep merge); scalars and lists replace, tables merge.
"""

from __future__ import annotations

import copy
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .config_constants import (
    DEFAULT_INSTALL_DIR,
    DEFAULT_MANIFEST_URL,
    DEFAULT_NETWORK_NAME,
    GUAC_INIT_SQL_URL,
    INIT_SQL_DIR,
    NETWORK_FALLBACK_SUBNET,
    PG_ADMIN_USER,
    PG_CONTAINER_NAME,
    PG_READY_ATTEMPTS,
    PG_READY_INTERVAL,
    SYSTEM_CONFIG_PATH,
    SYSTEMD_DIR,
    UNIT_DIR,
    UNIT_SUFFIX,
)
from .errors import DeploymentError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    'deploy': {
        'install_dir': DEFAULT_INSTALL_DIR,
        'manifest': DEFAULT_MANIFEST_URL,
        'unit_dir': UNIT_DIR,
        'systemd_dir': SYSTEMD_DIR,
        'unit_suffix': UNIT_SUFFIX,
        'network_name': DEFAULT_NETWORK_NAME,
        'network_fallback_subnet': NETWORK_FALLBACK_SUBNET,
        'log_level': 'INFO',
    },
    'postgres': {
        'container_name': PG_CONTAINER_NAME,
        'admin_user': PG_ADMIN_USER,
        'ready_attempts': PG_READY_ATTEMPTS,
        'ready_interval': PG_READY_INTERVAL,
        'init_sql_dir': INIT_SQL_DIR,
    },
    'tokens': {
        # Offered as the prompt default; an empty answer accepts it
        'defaults': {
            'PWP__OVERRIDE_BASE_URL': 'https://pwpush.example.com',
            'GATEWAY_HOST_PORT': '8080',
            'APP_HOST_PORT': '5100',
            'HOST_PORT': '8080',
        },
    },
    'schema_hooks': {
        'guacamole': {
            'pattern': 'guacamole*',
            'init_sql_url': GUAC_INIT_SQL_URL,
        },
    },
}

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    'APPNET_NAME': 'deploy.network_name',
    'PG_CONTAINER_NAME': 'postgres.container_name',
    'GUAC_INIT_SQL_URL': 'schema_hooks.guacamole.init_sql_url',
}


def deep_merge_configs(base: dict, override: dict) -> dict:
    """
    Deep merge two config dicts (key-level merge). Neither input is mutated.
    """
    result = copy.deepcopy(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge_configs(result[key], value)
        else:
            if key in result:
                logger.debug(f"  Override: {key} = {value!r} (was: {result[key]!r})")
            result[key] = copy.deepcopy(value)
    return result


def set_nested_value(config: dict, dotted_path: str, value: Any) -> None:
    """Set a nested dict value using a dotted path."""
    keys = dotted_path.split('.')
    cursor = config
    for key in keys[:-1]:
        if key not in cursor or not isinstance(cursor[key], dict):
            cursor[key] = {}
        cursor = cursor[key]
    cursor[keys[-1]] = value


def parse_toml(file_path: Path) -> dict:
    """
    Parse a TOML settings file with fail-fast error context.
    """
    path = Path(file_path)
    if not path.exists():
        raise DeploymentError(f"Config file not found: {path}")

    try:
        with open(path, 'rb') as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise DeploymentError(f"Failed to parse TOML from {path}: {e}") from e


def apply_env_overrides(config: dict, environ: Optional[Mapping[str, str]] = None) -> dict:
    env = os.environ if environ is None else environ
    for var_name, dotted_path in ENV_OVERRIDES.items():
        value = env.get(var_name)
        if value is None:
            continue
        logger.debug(f"  Env override: {var_name} -> {dotted_path}")
        set_nested_value(config, dotted_path, value)
    return config


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None
) -> dict:
    """
    Build the merged settings dict from defaults, settings file and environment.

    An explicit config_path must exist; the system-wide file is optional.
    """
    merged = copy.deepcopy(DEFAULT_CONFIG)

    if config_path is not None:
        merged = deep_merge_configs(merged, parse_toml(config_path))
    elif Path(SYSTEM_CONFIG_PATH).exists():
        logger.debug(f"Loading system config: {SYSTEM_CONFIG_PATH}")
        merged = deep_merge_configs(merged, parse_toml(Path(SYSTEM_CONFIG_PATH)))

    return apply_env_overrides(merged, environ)


def write_rendered_toml(output_path: Path, config: dict) -> None:
    """
    Write rendered TOML to disk using tomli_w.
    """
    import tomli_w

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'wb') as f:
        tomli_w.dump(config, f)


@dataclass(frozen=True)
class SchemaHook:
    """One-time schema load for services whose label matches `pattern`."""
    name: str
    pattern: str
    init_sql_url: str


@dataclass
class Settings:
    """Typed view over the merged settings dict."""
    install_dir: Path
    manifest: str
    unit_dir: Path
    systemd_dir: Path
    unit_suffix: str
    network_name: str
    network_fallback_subnet: str
    log_level: str
    pg_container: str
    pg_admin_user: str
    pg_ready_attempts: int
    pg_ready_interval: float
    init_sql_dir: Path
    token_defaults: Dict[str, str] = field(default_factory=dict)
    schema_hooks: list[SchemaHook] = field(default_factory=list)

    @property
    def pg_service(self) -> str:
        return f"{self.pg_container}.service"

    @classmethod
    def from_config(cls, config: dict) -> "Settings":
        deploy = config.get('deploy', {})
        postgres = config.get('postgres', {})

        try:
            hooks = [
                SchemaHook(
                    name=name,
                    pattern=str(hook.get('pattern') or f"{name}*"),
                    init_sql_url=str(hook['init_sql_url']),
                )
                for name, hook in config.get('schema_hooks', {}).items()
            ]
            return cls(
                install_dir=Path(deploy['install_dir']),
                manifest=str(deploy['manifest']),
                unit_dir=Path(deploy['unit_dir']),
                systemd_dir=Path(deploy['systemd_dir']),
                unit_suffix=str(deploy['unit_suffix']),
                network_name=str(deploy.get('network_name') or ''),
                network_fallback_subnet=str(deploy.get('network_fallback_subnet') or ''),
                log_level=str(deploy.get('log_level', 'INFO')),
                pg_container=str(postgres['container_name']),
                pg_admin_user=str(postgres['admin_user']),
                pg_ready_attempts=int(postgres['ready_attempts']),
                pg_ready_interval=float(postgres['ready_interval']),
                init_sql_dir=Path(postgres['init_sql_dir']),
                token_defaults={
                    str(k): str(v)
                    for k, v in config.get('tokens', {}).get('defaults', {}).items()
                },
                schema_hooks=hooks,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DeploymentError(f"Invalid configuration: {e!r}") from e
