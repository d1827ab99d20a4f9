#!/usr/bin/env python3
"""
Template tokens.

Templates reference values as `{{UPPERCASE_NAME}}` (or the legacy
`%%UPPERCASE_NAME%%` spelling). All templates of a round share one flat
namespace, so two templates asking for HOST_PORT get the same value.

Resolution order for each token found in the round's templates:
1. value already in the table (seeded from --var or an earlier round)
2. INSTALL_DIR is reserved and never prompted
3. unattended mode: anything else missing is fatal
4. prompt, offering the built-in default when one exists
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, Optional

from .config_constants import INSTALL_DIR_TOKEN
from .errors import DeploymentError
from .manifest import read_text_file

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r'\{\{([A-Z0-9_]+)\}\}')
LEGACY_TOKEN_PATTERN = re.compile(r'%%([A-Z0-9_]+)%%')

Prompt = Callable[[str], str]


class TokenTable:
    """Resolved token values for one round."""

    def __init__(self, install_dir: Path | str, values: Optional[Mapping[str, str]] = None) -> None:
        self.values: Dict[str, str] = dict(values or {})
        self.values[INSTALL_DIR_TOKEN] = str(install_dir)

    @property
    def install_dir(self) -> str:
        return self.values[INSTALL_DIR_TOKEN]

    def get(self, name: str) -> Optional[str]:
        return self.values.get(name)

    def has(self, name: str) -> bool:
        return bool(self.values.get(name))

    def set(self, name: str, value: str) -> None:
        self.values[name] = value

    def carry_forward(self) -> "TokenTable":
        """Start a new round pre-seeded with everything resolved so far."""
        return TokenTable(self.install_dir, self.values)

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __repr__(self) -> str:
        return f"TokenTable({sorted(self.values)})"


def parse_var_overrides(pairs: Iterable[str]) -> Dict[str, str]:
    """Parse repeated KEY=VALUE arguments."""
    overrides: Dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition('=')
        key = key.strip()
        if not sep or not key:
            raise DeploymentError(f"Bad --var format (KEY=VALUE): {pair}")
        overrides[key] = value
    return overrides


def extract_tokens(texts: Iterable[str]) -> list[str]:
    """Return the sorted, unique token names referenced by the given texts."""
    found: set[str] = set()
    for text in texts:
        found.update(TOKEN_PATTERN.findall(text))
        found.update(LEGACY_TOKEN_PATTERN.findall(text))
    return sorted(found)


def extract_tokens_from_files(paths: Iterable[Path]) -> list[str]:
    return extract_tokens(read_text_file(p) for p in paths)


def resolve_tokens(
    names: Iterable[str],
    table: TokenTable,
    defaults: Optional[Mapping[str, str]] = None,
    interactive: bool = True,
    prompt: Prompt = input
) -> TokenTable:
    """
    Fill `table` with a value for every name, prompting where allowed.
    """
    defaults = defaults or {}

    for name in names:
        if table.has(name) or name == INSTALL_DIR_TOKEN:
            continue

        if not interactive:
            raise DeploymentError(
                f"Missing value for {{{{{name}}}}} while --non-interactive. "
                f"Provide --var {name}=VALUE"
            )

        default = defaults.get(name, '')
        if default:
            answer = prompt(f"Value for {{{{{name}}}}} [{default}]: ").strip()
            table.set(name, answer or default)
        else:
            answer = prompt(f"Value for {{{{{name}}}}}: ").strip()
            if not answer:
                raise DeploymentError(f"No value entered for {{{{{name}}}}}")
            table.set(name, answer)
        logger.debug(f"Resolved token {name}")

    return table
