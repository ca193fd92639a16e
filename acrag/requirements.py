"""
Requirement document scanning.

An acceptance criterion (AC) starts at a bullet line (``-`` or ``*``).
Following non-blank, non-bullet lines continue it, joined with one space.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterator, List, Tuple, Union

LOG = logging.getLogger("acrag.requirements")

REQUIREMENT_SUFFIXES = (".md", ".txt")

_BULLET_RE = re.compile(r"^\s*[-*]\s+")


def parse_requirements(content: str) -> List[str]:
    """Split a document into trimmed AC texts, in document order."""
    acs: List[str] = []
    current = ""

    for line in content.splitlines():
        if _BULLET_RE.match(line):
            if current.strip():
                acs.append(current.strip())
            current = _BULLET_RE.sub("", line, count=1).strip()
        elif line.strip() and current:
            current += " " + line.strip()

    if current.strip():
        acs.append(current.strip())

    return acs


def iter_requirement_files(directory: Union[str, Path]) -> Iterator[Tuple[str, str]]:
    """Yield ``(filename, content)`` for each requirement document, sorted by name."""
    root = Path(directory)
    for path in sorted(root.iterdir(), key=lambda p: p.name):
        if not path.is_file() or path.suffix.lower() not in REQUIREMENT_SUFFIXES:
            continue
        LOG.debug("Reading requirements from %s", path)
        yield path.name, path.read_text(encoding="utf-8")
