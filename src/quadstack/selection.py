#!/usr/bin/env python3
"""Resolve a selection expression against the loaded manifest."""

from __future__ import annotations

import re
from typing import Sequence

from .errors import DeploymentError
from .manifest import ServiceDescriptor

RANGE_PATTERN = re.compile(r'^(\d+)-(\d+)$')
NUMBER_PATTERN = re.compile(r'^\d+$')


def resolve_selection(descriptors: Sequence[ServiceDescriptor], expression: str) -> list[int]:
    """
    Map a selection expression onto 0-based descriptor indices.

    Terms are comma separated: `all`, a 1-based number, an inclusive range
    `a-b`, or an exact install name. Out-of-range numbers and unknown names
    contribute nothing. The result keeps first-occurrence order without
    duplicates.
    """
    expression = (expression or '').strip()
    if not expression:
        raise DeploymentError("Nothing selected.")

    count = len(descriptors)
    terms = [term.strip() for term in expression.split(',') if term.strip()]

    if 'all' in terms:
        return list(range(count))

    picked: list[int] = []
    ignored: list[str] = []

    for term in terms:
        matched: list[int] = []

        range_match = RANGE_PATTERN.match(term)
        if range_match:
            start, end = int(range_match.group(1)), int(range_match.group(2))
            matched = [n - 1 for n in range(start, end + 1) if 0 < n <= count]
        elif NUMBER_PATTERN.match(term):
            n = int(term)
            if 0 < n <= count:
                matched = [n - 1]
        else:
            for idx, descriptor in enumerate(descriptors):
                if descriptor.install_name == term:
                    matched = [idx]
                    break

        if not matched:
            ignored.append(term)
        picked.extend(matched)

    if not picked:
        hint = f" Unmatched terms: {', '.join(ignored)}" if ignored else ""
        raise DeploymentError(f"Selection matched nothing.{hint}")

    seen: set[int] = set()
    unique: list[int] = []
    for idx in picked:
        if idx in seen:
            continue
        seen.add(idx)
        unique.append(idx)
    return unique
