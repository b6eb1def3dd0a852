"""Classify source strings and fetch their content into the cache."""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

from refstore.errors import SourceFetchError, VersionControlError
from refstore.registry.models import Reference, ReferenceKind, ReferenceSource, SourceType
from refstore.utils import git_ops

logger = logging.getLogger(__name__)

GIT_URL_PREFIXES = ("https://", "http://", "git@", "git://", "ssh://", "file://")


def looks_like_git_url(source: str) -> bool:
    return source.startswith(GIT_URL_PREFIXES) or source.endswith(".git")


def parse_source(
    source: str,
    git_ref: str | None = None,
    subpath: str | None = None,
    cwd: str | Path | None = None,
) -> tuple[ReferenceKind, ReferenceSource]:
    """Classify a source string as a git URL, a file, or a directory.

    Relative paths are resolved against ``cwd`` (default: the process cwd).

    Raises:
        SourceFetchError: If a local path does not exist.
    """
    if looks_like_git_url(source):
        return ReferenceKind.GIT_REPO, ReferenceSource(
            type=SourceType.GIT, url=source, ref=git_ref, subpath=subpath
        )

    path = Path(source).expanduser()
    if not path.is_absolute():
        path = Path(cwd or Path.cwd()) / path
    path = path.resolve()

    if path.is_file():
        kind = ReferenceKind.FILE
    elif path.is_dir():
        kind = ReferenceKind.DIRECTORY
    else:
        raise SourceFetchError(source, f"source path does not exist: {path}")

    return kind, ReferenceSource(type=SourceType.LOCAL, path=str(path))


def fetch_content(reference: Reference, dest: Path, depth: int = 1) -> str:
    """Fetch a reference's content into ``dest`` (which must not exist yet).

    Files land as ``dest/<file name>``; directories and git repositories as
    the tree under ``dest`` without any ``.git`` directory.

    Returns:
        The upstream commit id for git sources, empty string otherwise.

    Raises:
        SourceFetchError: If the source cannot be read or cloned.
    """
    source = reference.source
    if source.type == SourceType.LOCAL:
        _copy_local(reference.name, Path(source.path), dest)
        return ""
    return _clone(reference.name, source, dest, depth)


def _copy_local(name: str, path: Path, dest: Path) -> None:
    try:
        if path.is_file():
            dest.mkdir(parents=True)
            shutil.copy2(path, dest / path.name)
        elif path.is_dir():
            shutil.copytree(path, dest, ignore=shutil.ignore_patterns(".git"))
        else:
            raise SourceFetchError(name, f"source path does not exist: {path}")
    except OSError as e:
        raise SourceFetchError(name, str(e)) from e


def _clone(name: str, source: ReferenceSource, dest: Path, depth: int) -> str:
    with tempfile.TemporaryDirectory(prefix="refstore_clone_") as tmp:
        checkout = Path(tmp) / "repo"
        try:
            revision = git_ops.clone_shallow(source.url, checkout, ref=source.ref, depth=depth)
        except VersionControlError as e:
            raise SourceFetchError(name, e.reason) from e

        root = checkout
        if source.subpath:
            root = checkout / source.subpath
            if not root.exists():
                raise SourceFetchError(
                    name, f"subpath '{source.subpath}' not found in {source.url}"
                )

        try:
            if root.is_file():
                dest.mkdir(parents=True)
                shutil.copy2(root, dest / root.name)
            else:
                shutil.copytree(root, dest, ignore=shutil.ignore_patterns(".git"))
        except OSError as e:
            raise SourceFetchError(name, str(e)) from e

    logger.debug("Fetched %s at %s", source.url, revision[:8])
    return revision
