"""Name and destination validation."""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from refstore.errors import InvalidNameError

NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
RESERVED_NAMES = {".", ".."}


def validate_name(name: str) -> None:
    """Raise InvalidNameError unless ``name`` is a valid reference/bundle/registry name.

    Allowed characters: ASCII letters and digits, hyphen, underscore, dot.
    """
    if not name:
        raise InvalidNameError(name, "name cannot be empty")
    if name in RESERVED_NAMES:
        raise InvalidNameError(name, "name cannot be '.' or '..'")
    if not NAME_PATTERN.match(name):
        raise InvalidNameError(
            name,
            "name must contain only alphanumeric characters, hyphens, underscores, or dots",
        )


def is_valid_name(name: str) -> bool:
    try:
        validate_name(name)
    except InvalidNameError:
        return False
    return True


def normalize_destination(path: str) -> str | None:
    """Normalize a destination relative to the output root.

    Returns the cleaned POSIX path, or None when it is absolute, climbs out
    of the output root with ``..``, or points at the root itself.
    """
    candidate = PurePosixPath(path.replace("\\", "/"))
    if candidate.is_absolute():
        return None

    parts: list[str] = []
    for part in candidate.parts:
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                return None
            parts.pop()
            continue
        parts.append(part)

    if not parts:
        return None
    return "/".join(parts)
