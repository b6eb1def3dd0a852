"""Sync engine — materialize resolved references into a project's ``.references/``.

For every sync job the expected file set is computed (current registry
content, or a historical snapshot when pinned), filtered, and compared with
what the destination holds. Identical destinations are skipped; otherwise
changed files are written and files that are no longer expected are removed.
Only the job's own destination is touched: never the output root, another
job's (nested) destination, or the registry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from refstore.errors import DestinationError, NotFoundError, RefstoreError
from refstore.project.manifest import BundleEntry, ManifestEntry
from refstore.project.project_store import ProjectStore, SyncJob
from refstore.registry.repository import RepositoryStore
from refstore.sync.filters import apply_filters
from refstore.sync.status import EntryState, EntryStatus, classify, diff_files
from refstore.utils.file_scanner import read_tree, remove_empty_dirs

logger = logging.getLogger(__name__)


class SyncAction:
    SYNCED = "synced"  # Files were written or removed
    UP_TO_DATE = "up_to_date"  # Destination already matched


@dataclass
class SyncResult:
    """Outcome of one sync job."""

    name: str
    action: str
    destination: str
    revision: str | None = None
    written: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    def summary(self) -> str:
        if self.action == SyncAction.UP_TO_DATE:
            return f"{self.name}: up to date"
        return f"{self.name}: synced ({len(self.written)} written, {len(self.removed)} removed)"


@dataclass
class SyncReport:
    results: list[SyncResult] = field(default_factory=list)

    @property
    def synced(self) -> list[SyncResult]:
        return [r for r in self.results if r.action == SyncAction.SYNCED]

    @property
    def up_to_date(self) -> list[SyncResult]:
        return [r for r in self.results if r.action == SyncAction.UP_TO_DATE]

    def summary(self) -> str:
        return f"{len(self.synced)} synced, {len(self.up_to_date)} up to date"


class SyncEngine:
    """Executes a project's sync jobs against a repository."""

    def __init__(self, project: ProjectStore, repository: RepositoryStore):
        self.project = project
        self.repository = repository

    def expected_files(self, job: SyncJob) -> dict[str, bytes]:
        """The filtered files a job's destination should hold."""
        if job.pin:
            content = self.repository.snapshot(job.resolved, job.pin)
        else:
            content = self.repository.current_content(job.resolved)
        return apply_filters(content, job.include, job.exclude)

    def sync(self, name: str | None = None, force: bool = False) -> SyncReport:
        """Sync every resolved job, or only the jobs selected by ``name``.

        Raises:
            ResolutionFailedError: If any manifest entry fails to resolve.
            NotFoundError: If ``name`` selects no job.
            PinNotFoundError: If a pinned revision is missing.
            DestinationError: If a destination cannot be written, e.g. a
                parent path under ``.references/`` is a regular file.
        """
        jobs = self.project.resolve_all_references(self.repository)
        destinations = [job.destination for job in jobs]

        report = SyncReport()
        for job in self._select(jobs, name):
            report.results.append(self._sync_job(job, force, destinations))
        logger.info("Sync finished: %s", report.summary())
        return report

    def _select(self, jobs: list[SyncJob], name: str | None) -> list[SyncJob]:
        if name is None:
            return jobs

        bundle = self.project.manifest.get_bundle(name)
        if bundle is not None and name not in self.project.manifest.references:
            members = set(self.repository.resolve_bundle(name).bundle.references)
            selected = [job for job in jobs if job.name in members]
        else:
            selected = [job for job in jobs if job.name == name]

        if not selected:
            raise NotFoundError("manifest entry", name)
        return selected

    def _nested(self, job: SyncJob, destinations: list[str]) -> list[str]:
        prefix = job.destination + "/"
        return [d[len(prefix):] for d in destinations if d.startswith(prefix)]

    def _sync_job(self, job: SyncJob, force: bool, destinations: list[str]) -> SyncResult:
        dest_dir = self.project.references_dir / job.destination
        nested = self._nested(job, destinations)
        expected = self.expected_files(job)
        current = read_tree(dest_dir, skip=nested) if dest_dir.is_dir() else {}
        revision = self.repository.revision_of(job.resolved, job.pin)

        result = SyncResult(
            name=job.name,
            action=SyncAction.UP_TO_DATE,
            destination=job.destination,
            revision=revision,
        )
        if not force and dest_dir.is_dir() and diff_files(expected, current).is_empty:
            logger.debug("%s is up to date", job.name)
            return result

        try:
            if _occupied_by_file(dest_dir):
                logger.warning("Replacing stray file at %s", dest_dir)
                dest_dir.unlink()
            dest_dir.mkdir(parents=True, exist_ok=True)

            for rel in sorted(set(current) - set(expected)):
                (dest_dir / rel).unlink()
                result.removed.append(rel)
            remove_empty_dirs(dest_dir, keep=nested)

            for rel, data in expected.items():
                if force or current.get(rel) != data:
                    target = dest_dir / rel
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(data)
                    result.written.append(rel)
        except OSError as e:
            raise DestinationError(job.name, job.destination, e.strerror or str(e)) from e

        result.action = SyncAction.SYNCED
        logger.info(
            "Synced %s into %s (%d written, %d removed)",
            job.name, dest_dir, len(result.written), len(result.removed),
        )
        return result

    def status(self) -> list[EntryStatus]:
        """Report every entry's state without writing anything.

        Entries are resolved one by one, so one broken entry shows up as
        unresolved without hiding the others.
        """
        jobs, failures = self.project.resolve_entries(self.repository)
        destinations = [job.destination for job in jobs.values()]
        statuses = []

        for name, job in jobs.items():
            status = EntryStatus(
                name=name,
                state=EntryState.UNRESOLVED,
                destination=job.destination,
                registry=job.registry,
                pin=job.pin,
                origin=job.origin,
            )
            try:
                expected = self.expected_files(job)
                status.revision = self.repository.revision_of(job.resolved, job.pin)
            except RefstoreError as e:
                status.detail = str(e)
                statuses.append(status)
                continue

            dest_dir = self.project.references_dir / job.destination
            if _occupied_by_file(dest_dir):
                status.state, status.detail = EntryState.STALE, "destination is not a directory"
                statuses.append(status)
                continue
            exists = dest_dir.is_dir()
            current = read_tree(dest_dir, skip=self._nested(job, destinations)) if exists else {}
            status.state, status.detail = classify(expected, current, exists)
            statuses.append(status)

        for name, reason in failures.items():
            entry = self.project.manifest.references.get(name) or self.project.manifest.get_bundle(name)
            statuses.append(
                EntryStatus(
                    name=name,
                    state=EntryState.UNRESOLVED,
                    pin=entry.version if entry else None,
                    detail=reason,
                )
            )
        return sorted(statuses, key=lambda s: s.name)

    def orphans(self) -> list[str]:
        """Directories directly under ``.references/`` that no entry claims."""
        root = self.project.references_dir
        if not root.is_dir():
            return []

        jobs, _ = self.project.resolve_entries(self.repository)
        claimed = {job.destination.split("/")[0] for job in jobs.values()}
        claimed |= self.project.declared_destinations()
        return sorted(p.name for p in root.iterdir() if p.is_dir() and p.name not in claimed)

    def remove(self, name: str, purge: bool = False) -> ManifestEntry | BundleEntry:
        return self.project.remove_entry(name, purge=purge, repository=self.repository)



def _occupied_by_file(path) -> bool:
    """True when something other than a directory sits at ``path``."""
    return (path.exists() or path.is_symlink()) and not path.is_dir()
