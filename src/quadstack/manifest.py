#!/usr/bin/env python3
"""
Manifest loading.

A manifest lists unit templates, separated by newlines or whitespace:

    https://example.com/units/postgresql.container
    ./local/pwpush.container|pwpush.container   # optional install name
    https://example.com/units/gateway|gw         # suffix appended -> gw.container

Text after `#` is a comment. Remote templates are downloaded once into the
working directory; local templates are referenced in place.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import requests

from .config_constants import UNIT_SUFFIX
from .console import info, warn
from .errors import DeploymentError

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r'^https?://')
FETCH_TIMEOUT = 30


@dataclass(frozen=True)
class ServiceDescriptor:
    """One manifest entry before rendering."""
    source: str
    path: Path
    install_name: str
    display_label: str

    def short_name(self, suffix: str = UNIT_SUFFIX) -> str:
        if suffix and self.install_name.endswith(suffix):
            return self.install_name[:-len(suffix)]
        return self.install_name


def is_remote(locator: str) -> bool:
    return bool(URL_PATTERN.match(locator))


def fetch_text(url: str) -> str:
    """Download a text document, raising DeploymentError on any failure."""
    try:
        response = requests.get(url, timeout=FETCH_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise DeploymentError(f"Failed to download {url}: {e}") from e
    return response.text


def read_text_file(path: Path) -> str:
    """Read a manifest or template, mapping I/O and decoding failures to DeploymentError."""
    try:
        return Path(path).read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        raise DeploymentError(f"Cannot read {path}: {e}") from e


def normalize_install_name(label: str, suffix: str = UNIT_SUFFIX) -> str:
    label = label.strip()
    if suffix and not label.endswith(suffix):
        label = f"{label}{suffix}"
    return label


def iter_manifest_entries(text: str):
    """Yield (locator, label) pairs; label is '' when the entry has none."""
    for raw in text.splitlines():
        line = raw.replace('\r', '').split('#', 1)[0].strip()
        if not line:
            continue
        for token in line.split():
            locator, _, label = token.partition('|')
            if not locator:
                continue
            yield locator.strip(), label.strip()


def read_manifest(locator: str) -> str:
    """Fetch a remote manifest or read a local one."""
    if is_remote(locator):
        return fetch_text(locator)

    path = Path(locator).expanduser()
    if not path.is_file():
        raise DeploymentError(f"Manifest not found: {locator}")
    return read_text_file(path)


def parse_manifest(text: str, workdir: Path, suffix: str = UNIT_SUFFIX) -> list[ServiceDescriptor]:
    """
    Turn manifest text into ordered descriptors.

    Remote entries are cached as `<NN>_<basename>` under workdir. Missing
    local entries are skipped with a warning.
    """
    descriptors: list[ServiceDescriptor] = []
    fetched = 0

    for locator, label in iter_manifest_entries(text):
        if is_remote(locator):
            base = locator.rstrip('/').rsplit('/', 1)[-1]
            install_name = normalize_install_name(label or base, suffix)
            fetched += 1
            dest = workdir / f"{fetched:02d}_{base}"
            info(f"Fetching {base} ...")
            dest.write_text(fetch_text(locator), encoding='utf-8')
            descriptors.append(ServiceDescriptor(
                source=locator,
                path=dest,
                install_name=install_name,
                display_label=f"{install_name}  (from URL: {base})",
            ))
            continue

        local = Path(locator.removeprefix('./')).expanduser()
        if not local.is_file():
            warn(f"Missing local file in manifest: {locator}")
            continue
        full = local.resolve()
        install_name = normalize_install_name(label or full.name, suffix)
        descriptors.append(ServiceDescriptor(
            source=locator,
            path=full,
            install_name=install_name,
            display_label=f"{install_name}  (from local: {full.name})",
        ))

    logger.debug(f"Parsed {len(descriptors)} manifest entries")
    return descriptors


def load_manifest(locator: str, workdir: Path, suffix: str = UNIT_SUFFIX) -> list[ServiceDescriptor]:
    """
    Load a manifest by URL or path. An empty result is fatal.
    """
    info(f"Using manifest: {locator}")
    descriptors = parse_manifest(read_manifest(locator), workdir, suffix)
    if not descriptors:
        raise DeploymentError(
            f"No valid {suffix} entries found in manifest {locator} (check manifest formatting)."
        )
    return descriptors
