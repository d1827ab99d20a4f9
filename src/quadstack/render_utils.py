#!/usr/bin/env python3
"""Unit rendering: token substitution and host path creation."""

from __future__ import annotations

import logging
import os
import re
import secrets
from dataclasses import dataclass, field
from pathlib import Path

from .console import info
from .errors import DeploymentError
from .manifest import ServiceDescriptor, read_text_file
from .tokens import LEGACY_TOKEN_PATTERN, TOKEN_PATTERN, TokenTable

logger = logging.getLogger(__name__)

MOUNT_LINE_PATTERN = re.compile(r'^\s*(Volume|Bind(ReadOnly)?)=')


@dataclass
class RenderedUnit:
    install_name: str
    file_path: Path
    host_paths: set[Path] = field(default_factory=set)


def substitute_tokens(text: str, table: TokenTable) -> str:
    """
    Replace every {{NAME}} and %%NAME%% with its resolved value.

    Single pass over the closed set of known names; replaced values are not
    scanned again.
    """
    def _replace(match: re.Match) -> str:
        value = table.get(match.group(1))
        return match.group(0) if value is None else value

    text = TOKEN_PATTERN.sub(_replace, text)
    return LEGACY_TOKEN_PATTERN.sub(_replace, text)


def find_unresolved(text: str) -> list[str]:
    names = set(TOKEN_PATTERN.findall(text)) | set(LEGACY_TOKEN_PATTERN.findall(text))
    return sorted(names)


def extract_mount_host_paths(text: str) -> list[Path]:
    """
    Collect absolute host paths from Volume=/Bind=/BindReadOnly= lines.

    Only the host side (before the first ':') is considered; `~` is expanded
    and anything still not absolute (named volumes) is ignored.
    """
    paths: list[Path] = []
    for raw in text.splitlines():
        if not MOUNT_LINE_PATTERN.match(raw):
            continue
        line = raw.split('#', 1)[0].strip()
        _, _, value = line.partition('=')
        for item in value.split():
            host = os.path.expanduser(item.split(':', 1)[0])
            if not host.startswith('/'):
                continue
            paths.append(Path(host))
    return paths


def ensure_host_paths(paths: list[Path]) -> set[Path]:
    """
    Create missing host paths referenced by mounts.

    A basename with an extension is treated as a file the service creates
    later, so only its parent directory is made.
    """
    created: set[Path] = set()
    for path in paths:
        if path.exists():
            continue
        target = path.parent if '.' in path.name else path
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DeploymentError(f"Failed to create host path {target}: {e}") from e
        info(f"  Created: {target}")
        created.add(target)
    return created


def stage_template(descriptor: ServiceDescriptor, workdir: Path) -> Path:
    """Copy a template into the working directory for rendering."""
    text = read_text_file(descriptor.path)
    staged = workdir / f"{descriptor.install_name}.tmp.{secrets.token_hex(4)}"
    try:
        staged.write_text(text, encoding='utf-8')
    except OSError as e:
        raise DeploymentError(f"Cannot stage {descriptor.install_name}: {e}") from e
    return staged


def render_unit(install_name: str, staged_path: Path, table: TokenTable) -> RenderedUnit:
    """
    Substitute tokens in a staged template and ensure its host paths exist.
    """
    text = substitute_tokens(read_text_file(staged_path), table)

    leftover = find_unresolved(text)
    if leftover:
        raise DeploymentError(
            f"Unresolved tokens remain in {install_name}: {', '.join(leftover)}"
        )

    staged_path.write_text(text, encoding='utf-8')
    host_paths = set(extract_mount_host_paths(text))
    ensure_host_paths(sorted(host_paths))
    logger.debug(f"Rendered {install_name} ({len(host_paths)} host paths)")
    return RenderedUnit(install_name=install_name, file_path=staged_path, host_paths=host_paths)
