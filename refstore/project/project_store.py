"""Project store — a project's manifest, its output directory, and manifest resolution."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from refstore.errors import (
    AlreadyExistsError,
    ManifestError,
    NotFoundError,
    RefstoreError,
    ResolutionFailedError,
)
from refstore.project.manifest import (
    MANIFEST_FILE,
    BundleEntry,
    Manifest,
    ManifestEntry,
    load_manifest,
    save_manifest,
)
from refstore.registry.models import Resolved
from refstore.utils import git_ops
from refstore.utils.file_scanner import remove_empty_dirs, scan_files
from refstore.utils.validator import normalize_destination, validate_name

if TYPE_CHECKING:
    from refstore.registry.repository import RepositoryStore

logger = logging.getLogger(__name__)

REFERENCES_DIR = ".references"
EXPLICIT = "explicit"


@dataclass
class SyncJob:
    """One reference to materialize, with its filters, pin and destination.

    ``destination`` is relative to the project's ``.references/``;
    ``origin`` is ``explicit`` or ``bundle:<name>``.
    """

    name: str
    resolved: Resolved
    destination: str
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    pin: str | None = None
    origin: str = EXPLICIT

    @property
    def registry(self) -> str:
        return self.resolved.registry

    @property
    def kind(self) -> str:
        return self.resolved.reference.kind.value


class ProjectStore:
    """A project directory holding ``refstore.yaml`` and ``.references/``."""

    def __init__(self, root: str | Path, manifest: Manifest):
        self.root = Path(root)
        self.manifest = manifest

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    @property
    def references_dir(self) -> Path:
        return self.root / REFERENCES_DIR

    @classmethod
    def init(cls, root: str | Path, gitignore: bool = True) -> ProjectStore:
        """Create a manifest and output directory in ``root``.

        Raises:
            AlreadyExistsError: If ``root`` already has a manifest.
        """
        root = Path(root)
        if (root / MANIFEST_FILE).exists():
            raise AlreadyExistsError("manifest", str(root / MANIFEST_FILE))

        root.mkdir(parents=True, exist_ok=True)
        project = cls(root, Manifest(gitignore_references=gitignore))
        project.references_dir.mkdir(exist_ok=True)
        project.save()
        if gitignore:
            git_ops.ensure_gitignore(root, [f"{REFERENCES_DIR}/"])
        logger.info("Initialized project at %s", root)
        return project

    @classmethod
    def open(cls, start: str | Path | None = None) -> ProjectStore:
        """Find the nearest ``refstore.yaml`` at or above ``start`` (default: cwd)."""
        start_dir = Path(start or Path.cwd()).resolve()
        for directory in [start_dir, *start_dir.parents]:
            if (directory / MANIFEST_FILE).is_file():
                return cls(directory, load_manifest(directory / MANIFEST_FILE))
        raise NotFoundError("manifest", MANIFEST_FILE, f"{start_dir} or any parent directory")

    def save(self) -> None:
        save_manifest(self.manifest_path, self.manifest)

    # --- Entries ---

    def add_reference(self, name: str, entry: ManifestEntry | None = None) -> ManifestEntry:
        validate_name(name)
        if self.manifest.has_entry(name):
            raise AlreadyExistsError("manifest entry", name)
        entry = entry or ManifestEntry()
        if entry.path is not None:
            entry.path = _checked_destination(name, entry.path)

        self.manifest.references[name] = entry
        self.save()
        return entry

    def add_bundle(self, name: str, entry: BundleEntry | None = None) -> BundleEntry:
        validate_name(name)
        if self.manifest.has_entry(name):
            raise AlreadyExistsError("manifest entry", name)
        entry = entry or BundleEntry(name=name)
        entry.name = name
        if entry.path is not None:
            entry.path = _checked_destination(name, entry.path)

        self.manifest.bundles.append(entry)
        self.save()
        return entry

    def remove_entry(
        self,
        name: str,
        purge: bool = False,
        repository: RepositoryStore | None = None,
    ) -> ManifestEntry | BundleEntry:
        """Drop a reference or bundle entry from the manifest.

        With ``purge`` the destinations it was responsible for are deleted
        too, except where another remaining entry still syncs to them. A
        bundle's members are only known through ``repository``; without it
        only the bundle's own prefix directory can be purged.
        """
        before: set[str] = set()
        if purge:
            before = self._destinations_of(name, repository)

        if name in self.manifest.references:
            removed: ManifestEntry | BundleEntry = self.manifest.references.pop(name)
        else:
            bundle = self.manifest.get_bundle(name)
            if bundle is None:
                raise NotFoundError("manifest entry", name)
            self.manifest.bundles.remove(bundle)
            removed = bundle
        self.save()

        if purge:
            if repository is not None:
                jobs, _ = self.resolve_entries(repository)
                remaining = {job.destination for job in jobs.values()}
            else:
                remaining = {entry.path or n for n, entry in self.manifest.references.items()}
            before = {d for d in map(normalize_destination, before) if d}
            for destination in sorted(before - remaining):
                self._purge(destination, remaining)
        return removed

    def _destinations_of(self, name: str, repository: RepositoryStore | None) -> set[str]:
        if name in self.manifest.references:
            return {self.manifest.references[name].path or name}
        bundle = self.manifest.get_bundle(name)
        if bundle is None:
            return set()
        if repository is None:
            return {bundle.path} if bundle.path else set()
        try:
            members = repository.resolve_bundle(name).bundle.references
        except RefstoreError:
            return set()
        return {_member_destination(bundle, member) for member in members}

    def _purge(self, destination: str, keep: set[str]) -> None:
        path = self.references_dir / destination
        if not path.exists() or path == self.references_dir:
            return
        nested = [d[len(destination) + 1:] for d in keep if d.startswith(destination + "/")]
        if not nested:
            shutil.rmtree(path)
        else:
            for rel in scan_files(path, skip=nested):
                (path / rel).unlink()
            remove_empty_dirs(path, keep=nested)
        logger.info("Purged %s", path)

    # --- Resolution ---

    def resolve_entries(self, repository: RepositoryStore) -> tuple[dict[str, SyncJob], dict[str, str]]:
        """Resolve every entry, collecting failures instead of raising.

        Returns the jobs by reference name and the failure reason by entry
        name. Bundles are expanded in name order, the first bundle claiming
        a member wins, and an explicit entry replaces any bundle-derived
        job of the same name.
        """
        jobs: dict[str, SyncJob] = {}
        failures: dict[str, str] = {}

        for bundle_entry in sorted(self.manifest.bundles, key=lambda b: b.name):
            try:
                bundle = repository.resolve_bundle(bundle_entry.name).bundle
            except RefstoreError as e:
                failures[bundle_entry.name] = str(e)
                continue

            for member in bundle.references:
                if member in jobs or member in failures:
                    continue
                try:
                    resolved = repository.resolve_reference(member)
                except RefstoreError as e:
                    failures[member] = f"member of bundle '{bundle_entry.name}': {e}"
                    continue
                jobs[member] = SyncJob(
                    name=member,
                    resolved=resolved,
                    destination=_member_destination(bundle_entry, member),
                    include=list(bundle_entry.include),
                    exclude=list(bundle_entry.exclude),
                    pin=bundle_entry.version,
                    origin=f"bundle:{bundle_entry.name}",
                )

        for name in sorted(self.manifest.references):
            entry = self.manifest.references[name]
            jobs.pop(name, None)
            failures.pop(name, None)
            try:
                resolved = repository.resolve_reference(name)
            except RefstoreError as e:
                failures[name] = str(e)
                continue
            jobs[name] = SyncJob(
                name=name,
                resolved=resolved,
                destination=entry.path or name,
                include=list(entry.include),
                exclude=list(entry.exclude),
                pin=entry.version,
            )

        claimed: dict[str, str] = {}
        for name in sorted(jobs):
            job = jobs[name]
            destination = normalize_destination(job.destination)
            if destination is None:
                failures[name] = f"destination '{job.destination}' must be a directory inside {REFERENCES_DIR}/"
                del jobs[name]
            elif destination in claimed:
                failures[name] = f"destination '{destination}' is already used by '{claimed[destination]}'"
                del jobs[name]
            else:
                job.destination = destination
                claimed[destination] = name

        return jobs, failures

    def resolve_all_references(self, repository: RepositoryStore) -> list[SyncJob]:
        """Resolve the manifest into sync jobs ordered by name.

        Raises:
            ResolutionFailedError: Listing every entry that failed; no
                partial result is returned.
        """
        jobs, failures = self.resolve_entries(repository)
        if failures:
            raise ResolutionFailedError(failures)
        return [jobs[name] for name in sorted(jobs)]

    def declared_destinations(self) -> set[str]:
        """Top-level output directories the manifest could write to."""
        tops = {(entry.path or name).split("/")[0] for name, entry in self.manifest.references.items()}
        tops.update(b.path.split("/")[0] for b in self.manifest.bundles if b.path)
        return tops


def _member_destination(bundle: BundleEntry, member: str) -> str:
    return f"{bundle.path.rstrip('/')}/{member}" if bundle.path else member


def _checked_destination(name: str, path: str) -> str:
    destination = normalize_destination(path)
    if destination is None:
        raise ManifestError(f"destination '{path}' for '{name}' must be a directory inside {REFERENCES_DIR}/")
    return destination
