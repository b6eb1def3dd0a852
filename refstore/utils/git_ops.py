"""Git operations — commit, tag, log, historical reads, clones and submodules.

Everything the stores persist goes through these functions. Any git failure
is raised as ``VersionControlError``; nothing is swallowed. Historical reads
(``snapshot``, ``read_at``) go through tree and blob objects, so the working
tree and HEAD of the repository are never changed.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName, BadObject

from refstore.errors import AlreadyExistsError, VersionControlError

logger = logging.getLogger(__name__)

COMMITTER_NAME = "refstore"
COMMITTER_EMAIL = "refstore@local"

# Needed for file:// submodule URLs (local registries, tests).
_FILE_PROTOCOL = "protocol.file.allow=always"


@dataclass(frozen=True)
class LogEntry:
    """A single commit from ``git log``."""

    revision: str
    message: str
    timestamp: datetime

    @property
    def short(self) -> str:
        return self.revision[:8]


class CommitLog:
    """Lazy, restartable view over ``git log``.

    Each iteration starts a fresh walk from ``ref``, so the same object can
    be consumed more than once.
    """

    def __init__(self, repo_path: str | Path, ref: str = "HEAD", paths: list[str] | None = None):
        self.repo_path = Path(repo_path)
        self.ref = ref
        self.paths = paths or []

    def __iter__(self) -> Iterator[LogEntry]:
        repo = open_repo(self.repo_path)
        if head_revision(self.repo_path) is None:
            return
        with _git_errors("log"):
            for commit in repo.iter_commits(self.ref, paths=self.paths):
                summary = commit.summary
                if isinstance(summary, bytes):
                    summary = summary.decode("utf-8", errors="replace")
                yield LogEntry(
                    revision=commit.hexsha,
                    message=summary,
                    timestamp=commit.committed_datetime,
                )


@contextmanager
def _git_errors(operation: str):
    try:
        yield
    except GitCommandError as e:
        raise VersionControlError(operation, str(e.stderr or e)) from e
    except (BadName, BadObject, ValueError) as e:
        raise VersionControlError(operation, str(e)) from e


def is_git_repo(path: str | Path) -> bool:
    # ``.git`` is a file inside submodule checkouts
    return (Path(path) / ".git").exists()


def open_repo(path: str | Path) -> Repo:
    try:
        return Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise VersionControlError("open", f"not a git repository: {path}") from e


def init(path: str | Path) -> None:
    """Initialize a repository at ``path`` unless one already exists.

    A local committer identity is configured so commits work without any
    global git configuration.
    """
    path = Path(path)
    if is_git_repo(path):
        return

    path.mkdir(parents=True, exist_ok=True)
    with _git_errors("init"):
        repo = Repo.init(path)
        with repo.config_writer() as cw:
            cw.set_value("user", "name", COMMITTER_NAME)
            cw.set_value("user", "email", COMMITTER_EMAIL)
    logger.debug("Initialized git repository at %s", path)


def commit(repo_path: str | Path, message: str, paths: list[str] | None = None) -> str | None:
    """Stage all changes (including deletions) under ``paths`` and commit.

    Args:
        repo_path: Repository root.
        message: Commit message.
        paths: Paths relative to the root; the whole tree when omitted.

    Returns:
        The new commit id, or None when there was nothing to commit.
    """
    repo = open_repo(repo_path)
    pathspecs = _existing_pathspecs(repo, paths) if paths else ["."]

    with _git_errors("commit"):
        if pathspecs:
            repo.git.add("-A", "--", *pathspecs)
        if not repo.git.diff("--cached", "--name-only").strip():
            logger.debug("Nothing to commit in %s (%s)", repo_path, message)
            return None
        repo.git.commit("-m", message)
        revision = repo.head.commit.hexsha

    logger.info("Committed %s: %s", revision[:8], message)
    return revision


def _existing_pathspecs(repo: Repo, paths: list[str]) -> list[str]:
    """Keep paths that exist on disk or are still tracked (deletions)."""
    root = Path(repo.working_dir)
    kept = []
    for p in paths:
        if (root / p).exists() or repo.git.ls_files("--", p):
            kept.append(p)
    return kept


def tag(repo_path: str | Path, name: str, message: str | None = None) -> None:
    """Create an annotated tag when ``message`` is given, else a lightweight one."""
    repo = open_repo(repo_path)
    if name in [t.name for t in repo.tags]:
        raise AlreadyExistsError("tag", name, str(repo_path))
    with _git_errors("tag"):
        if message:
            repo.create_tag(name, message=message)
        else:
            repo.create_tag(name)
    logger.info("Created tag %s in %s", name, repo_path)


def list_tags(repo_path: str | Path) -> list[str]:
    """List tags, newest first."""
    repo = open_repo(repo_path)
    with _git_errors("tag"):
        output = repo.git.tag("--sort=-creatordate")
    return [line for line in output.splitlines() if line.strip()]


def log(repo_path: str | Path, ref: str = "HEAD", paths: list[str] | None = None) -> CommitLog:
    return CommitLog(repo_path, ref=ref, paths=paths)


def head_revision(repo_path: str | Path) -> str | None:
    """Return the HEAD commit id, or None for a repository with no commits."""
    repo = open_repo(repo_path)
    try:
        return repo.head.commit.hexsha
    except ValueError:
        return None


def last_revision(repo_path: str | Path, subpath: str) -> str | None:
    """Return the newest commit that touched ``subpath``, if any."""
    for entry in log(repo_path, paths=[subpath]):
        return entry.revision
    return None


def ref_exists(repo_path: str | Path, ref: str) -> bool:
    """Check whether a tag, branch or commit id resolves to a commit."""
    repo = open_repo(repo_path)
    try:
        repo.commit(ref)
        return True
    except (BadName, BadObject, ValueError, GitCommandError):
        return False


def resolve_revision(repo_path: str | Path, ref: str) -> str:
    repo = open_repo(repo_path)
    with _git_errors("rev-parse"):
        return repo.commit(ref).hexsha


def snapshot(repo_path: str | Path, revision: str, subpath: str) -> dict[str, bytes] | None:
    """Read a file or directory tree as it existed at ``revision``.

    Returns a mapping of paths relative to ``subpath`` (POSIX style) to file
    bytes, or None when ``subpath`` did not exist at that revision. A single
    file is keyed by its base name.
    """
    repo = open_repo(repo_path)
    with _git_errors("snapshot"):
        tree = repo.commit(revision).tree
        try:
            obj = tree / subpath
        except KeyError:
            return None

        if obj.type == "blob":
            return {PurePosixPath(obj.path).name: obj.data_stream.read()}

        files: dict[str, bytes] = {}
        for item in obj.traverse():
            if item.type != "blob":
                continue
            rel = PurePosixPath(item.path).relative_to(subpath)
            files[str(rel)] = item.data_stream.read()
        return files


def read_at(repo_path: str | Path, revision: str, file_path: str) -> bytes | None:
    """Return one file's bytes at ``revision``, or None when it did not exist."""
    repo = open_repo(repo_path)
    with _git_errors("show"):
        try:
            blob = repo.commit(revision).tree / file_path
        except KeyError:
            return None
        return blob.data_stream.read()


def clone_shallow(url: str, target: str | Path, ref: str | None = None, depth: int = 1) -> str:
    """Clone ``url`` into ``target`` and return the checked-out commit id.

    ``depth`` 0 means a full clone.
    """
    options: dict = {"single_branch": True}
    if depth > 0:
        options["depth"] = depth
    if ref:
        options["branch"] = ref

    logger.debug("Cloning %s (ref=%s, depth=%s) into %s", url, ref, depth, target)
    with _git_errors("clone"):
        repo = Repo.clone_from(url, str(target), **options)
        return repo.head.commit.hexsha


def ensure_gitignore(repo_path: str | Path, patterns: list[str]) -> bool:
    """Make sure ``.gitignore`` at the root lists every pattern.

    Returns True when the file had to be changed.
    """
    path = Path(repo_path) / ".gitignore"
    existing = path.read_text() if path.exists() else ""
    lines = {line.strip() for line in existing.splitlines()}
    missing = [p for p in patterns if p not in lines]
    if not missing:
        return False

    content = existing
    if content and not content.endswith("\n"):
        content += "\n"
    content += "".join(f"{p}\n" for p in missing)
    path.write_text(content)
    return True


# --- Submodules ---


def add_submodule(repo_path: str | Path, url: str, subpath: str) -> None:
    repo = open_repo(repo_path)
    with _git_errors("submodule add"):
        repo.git(c=_FILE_PROTOCOL).submodule("add", url, subpath)
    logger.info("Added submodule %s from %s", subpath, url)


def update_submodule(repo_path: str | Path, subpath: str | None = None) -> None:
    """Pull the latest upstream commit for one submodule, or all of them."""
    repo = open_repo(repo_path)
    args = ["update", "--init", "--remote"]
    if subpath:
        args += ["--", subpath]
    with _git_errors("submodule update"):
        repo.git(c=_FILE_PROTOCOL).submodule(*args)


def submodule_paths(repo_path: str | Path) -> dict[str, str]:
    """Map submodule path -> section name, as recorded in ``.gitmodules``."""
    root = Path(repo_path)
    if not (root / ".gitmodules").exists():
        return {}

    repo = open_repo(root)
    try:
        output = repo.git.config("-f", ".gitmodules", "--get-regexp", r"^submodule\..*\.path$")
    except GitCommandError:
        # exit status 1: no matching keys
        return {}

    result = {}
    for line in output.splitlines():
        key, _, value = line.partition(" ")
        section = key[len("submodule."):-len(".path")]
        result[value.strip()] = section
    return result


def remove_submodule(repo_path: str | Path, subpath: str, force: bool = False) -> None:
    """Deinitialize and remove a submodule.

    Each step only runs if its effect is still missing, so repeating a
    removal that failed halfway succeeds instead of failing on a path that
    is already gone.
    """
    root = Path(repo_path)
    repo = open_repo(root)
    registered = submodule_paths(root)

    with _git_errors("submodule remove"):
        if subpath in registered and is_git_repo(root / subpath):
            args = ["deinit"]
            if force:
                args.append("-f")
            repo.git.submodule(*args, "--", subpath)

        if repo.git.ls_files("--", subpath):
            repo.git.rm("-f", "--", subpath)
        elif subpath in registered:
            repo.git.config("-f", ".gitmodules", "--remove-section", f"submodule.{registered[subpath]}")
            repo.git.add("--", ".gitmodules")

    modules_dir = Path(repo.git_dir) / "modules" / subpath
    if modules_dir.exists():
        shutil.rmtree(modules_dir)
    leftover = root / subpath
    if leftover.exists():
        shutil.rmtree(leftover)
    logger.info("Removed submodule %s", subpath)


def abort_submodule_add(repo_path: str | Path, subpath: str) -> None:
    """Undo an ``add_submodule`` that has not been committed yet.

    ``.gitmodules`` goes back to its committed state (or away, if HEAD has
    none).
    """
    remove_submodule(repo_path, subpath, force=True)
    repo = open_repo(repo_path)
    gitmodules = Path(repo_path) / ".gitmodules"
    with _git_errors("submodule abort"):
        repo.git.reset("-q", "HEAD", "--", ".gitmodules")
        if repo.git.ls_tree("HEAD", "--", ".gitmodules"):
            repo.git.checkout("HEAD", "--", ".gitmodules")
        elif gitmodules.exists():
            gitmodules.unlink()
    logger.info("Aborted submodule add at %s", subpath)
