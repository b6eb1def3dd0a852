"""Walk content directories and read files for sync and search."""

from pathlib import Path

# Directories to always skip
SKIP_DIRS = {".git"}

# How much of a file to sniff for NUL bytes
BINARY_SNIFF_BYTES = 8192


def scan_files(root: Path, skip: list[str] | None = None) -> list[str]:
    """Recursively list files under ``root`` as sorted POSIX relative paths.

    A file ``root`` yields its own name. Paths under any of the relative
    directories in ``skip`` are left out.
    """
    if root.is_file():
        return [root.name]
    if not root.is_dir():
        return []

    files = []
    for item in root.rglob("*"):
        relative = item.relative_to(root)
        if item.is_file() and _should_include(relative, skip or []):
            files.append(relative.as_posix())
    return sorted(files)


def read_tree(root: Path, skip: list[str] | None = None) -> dict[str, bytes]:
    """Read every file under ``root`` into a ``{relative path: bytes}`` map."""
    if root.is_file():
        return {root.name: root.read_bytes()}
    return {rel: (root / rel).read_bytes() for rel in scan_files(root, skip)}


def _should_include(relative: Path, skip: list[str]) -> bool:
    if any(part in SKIP_DIRS for part in relative.parts):
        return False
    posix = relative.as_posix()
    return not any(posix == s or posix.startswith(s + "/") for s in skip)


def remove_empty_dirs(root: Path, keep: list[str] | None = None) -> None:
    """Delete empty directories below ``root`` (never ``root`` itself).

    Directories named in ``keep`` (relative to ``root``), their parents and
    everything inside them are left in place even when empty.
    """
    if not root.is_dir():
        return
    for item in sorted(root.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if not item.is_dir() or item.is_symlink() or any(item.iterdir()):
            continue
        posix = item.relative_to(root).as_posix()
        if any(_overlaps(posix, k) for k in keep or []):
            continue
        item.rmdir()


def _overlaps(path: str, kept: str) -> bool:
    return path == kept or kept.startswith(path + "/") or path.startswith(kept + "/")


def is_binary(data: bytes) -> bool:
    """Heuristic: NUL bytes in the first block, or not valid UTF-8."""
    if b"\0" in data[:BINARY_SNIFF_BYTES]:
        return True
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False
