"""Map request targets onto files inside the project root."""

from __future__ import annotations

import os
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlsplit

from config import INDEX_FILENAME

_MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


@dataclass(frozen=True, slots=True)
class NormalizedTarget:
    relative_path: str
    directory_style: bool


def _target_path(raw_target: str) -> str | None:
    if raw_target.startswith("/"):
        return raw_target.split("?", 1)[0].split("#", 1)[0]
    try:
        return urlsplit(raw_target).path or "/"
    except ValueError:
        return None


def decode_target_path(raw_target: str) -> str | None:
    """Percent-decode the path component, or return None if it is malformed."""
    encoded_path = _target_path(raw_target)
    if encoded_path is None:
        return None
    if _MALFORMED_ESCAPE.search(encoded_path):
        return None
    try:
        decoded_path = unquote(encoded_path, errors="strict")
    except UnicodeDecodeError:
        return None
    if "\x00" in decoded_path:
        return None
    return decoded_path


def normalize_target(decoded_path: str) -> NormalizedTarget | None:
    """Collapse dot segments lexically and reject paths that climb above the root."""
    relative = decoded_path.lstrip("/")
    directory_style = decoded_path.endswith("/")
    if relative:
        relative = posixpath.normpath(relative)
        if relative == ".":
            relative = ""

    if relative == posixpath.pardir or relative.startswith(posixpath.pardir + "/"):
        return None
    return NormalizedTarget(relative_path=relative, directory_style=directory_style)


def is_within_root(candidate: Path, project_root: Path) -> bool:
    """Check the joined path against the root using the platform's own path rules."""
    try:
        relative = os.path.relpath(candidate, project_root)
    except ValueError:
        return False
    if os.path.isabs(relative):
        return False
    return relative != os.pardir and not relative.startswith(os.pardir + os.sep)


def resolve_request_path(
    raw_target: str,
    project_root: Path,
    index_filename: str = INDEX_FILENAME,
) -> Path | None:
    """Resolve a raw request target to a contained file path, or None if rejected.

    Directory targets, the root, and targets ending in ``/`` are mapped to the
    directory's index file. No filesystem access happens until both
    containment checks have passed.
    """
    decoded_path = decode_target_path(raw_target)
    if decoded_path is None:
        return None

    normalized = normalize_target(decoded_path)
    if normalized is None:
        return None

    candidate = project_root / normalized.relative_path
    if not is_within_root(candidate, project_root):
        return None

    if os.path.isdir(candidate):
        candidate = candidate / index_filename

    if not normalized.relative_path or normalized.directory_style:
        candidate = project_root / normalized.relative_path / index_filename

    return candidate
