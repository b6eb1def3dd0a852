"""Include/exclude glob filtering of a reference's files.

Patterns are matched against POSIX paths relative to the reference root.
``*`` may span directory separators, and ``**/`` additionally matches zero
directories, so ``**/*.md`` selects top-level ``README.md`` too.
"""

from __future__ import annotations

import fnmatch


def _expand(pattern: str) -> list[str]:
    """Every variant of ``pattern`` with some ``**/`` segments collapsed."""
    head, sep, tail = pattern.partition("**/")
    if not sep:
        return [pattern]
    variants = []
    for rest in _expand(tail):
        variants.append(head + sep + rest)
        variants.append(head + rest)
    return variants


def glob_match(pattern: str, path: str) -> bool:
    return any(fnmatch.fnmatchcase(path, p) for p in _expand(pattern))


def matches_any(patterns: list[str], path: str) -> bool:
    return any(glob_match(p, path) for p in patterns)


def is_selected(path: str, include: list[str] | None = None, exclude: list[str] | None = None) -> bool:
    """Includes first (empty means everything), then excludes."""
    if include and not matches_any(include, path):
        return False
    if exclude and matches_any(exclude, path):
        return False
    return True


def apply_filters(
    files: dict[str, bytes],
    include: list[str] | None = None,
    exclude: list[str] | None = None,
) -> dict[str, bytes]:
    return {
        path: data
        for path, data in sorted(files.items())
        if is_selected(path, include, exclude)
    }
