"""Git-backed registry store.

A registry is a directory holding an ``index.yaml`` (reference and bundle
definitions) and a ``content/`` cache keyed by reference name, under git.
The local registry is writable; remote registries (submodule checkouts) are
opened read-only. Every mutation writes the index and produces one commit.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

import yaml

from refstore.errors import (
    AlreadyExistsError,
    DependentExistsError,
    ManifestError,
    NotFoundError,
    RefstoreError,
    RegistryReadOnlyError,
)
from refstore.registry.models import (
    Bundle,
    Reference,
    ReferenceKind,
    RegistryIndex,
    dict_to_index,
    dict_to_reference,
    index_to_dict,
    reference_to_dict,
    utcnow,
)
from refstore.registry.sources import fetch_content
from refstore.utils import git_ops
from refstore.utils.validator import validate_name

logger = logging.getLogger(__name__)


class RegistryStore:
    """One registry: an index plus its content cache."""

    INDEX_FILE = "index.yaml"
    CONTENT_DIR = "content"

    def __init__(self, root: str | Path, name: str = "local", writable: bool = True):
        self.root = Path(root)
        self.name = name
        self.writable = writable
        self.index_path = self.root / self.INDEX_FILE
        self.index: RegistryIndex = self._load_index()

    @classmethod
    def open(cls, root: str | Path, name: str = "local", writable: bool = True) -> RegistryStore:
        return cls(root, name=name, writable=writable)

    @classmethod
    def init_new(cls, path: str | Path) -> RegistryStore:
        """Scaffold a standalone registry that can be published on its own."""
        root = Path(path)
        if (root / cls.INDEX_FILE).exists():
            raise AlreadyExistsError("registry", str(root))

        (root / cls.CONTENT_DIR).mkdir(parents=True, exist_ok=True)
        store = cls(root)
        store.save_index()
        git_ops.init(root)
        git_ops.ensure_gitignore(root, ["config.yaml", ".refstore-*"])
        git_ops.commit(root, "Initialize registry")
        logger.info("Initialized registry at %s", root)
        return store

    def content_path(self, name: str) -> Path:
        return self.root / self.CONTENT_DIR / name

    def _content_rel(self, name: str) -> str:
        return f"{self.CONTENT_DIR}/{name}"

    # --- Read operations ---

    def get(self, name: str) -> Reference | None:
        return self.index.references.get(name)

    def get_bundle(self, name: str) -> Bundle | None:
        return self.index.bundles.get(name)

    def list(self, tag: str | None = None, kind: ReferenceKind | str | None = None) -> list[Reference]:
        """List references, optionally filtered by tag and kind."""
        if isinstance(kind, str):
            kind = ReferenceKind(kind)

        results = []
        for name in sorted(self.index.references):
            ref = self.index.references[name]
            if tag and tag not in ref.tags:
                continue
            if kind and ref.kind != kind:
                continue
            results.append(ref)
        return results

    def list_bundles(self, tag: str | None = None) -> list[Bundle]:
        return [
            self.index.bundles[name]
            for name in sorted(self.index.bundles)
            if not tag or tag in self.index.bundles[name].tags
        ]

    def find_dependents(self, name: str) -> list[str]:
        """Names of bundles in this registry that list ``name`` as a member."""
        return [b.name for b in self.list_bundles() if name in b.references]

    def tags(self) -> list[str]:
        return git_ops.list_tags(self.root)

    def history(self, name: str) -> list[git_ops.LogEntry]:
        """Commits that touched this reference's content or index entry, newest first."""
        content_rel = self._content_rel(name)
        content_commits = {e.revision for e in git_ops.log(self.root, paths=[content_rel])}

        candidates = list(git_ops.log(self.root, paths=[content_rel, self.INDEX_FILE]))
        entries = [self._entry_at(e.revision, name) for e in candidates]

        result = []
        for i, commit in enumerate(candidates):
            older = entries[i + 1] if i + 1 < len(entries) else None
            if commit.revision in content_commits or entries[i] != older:
                result.append(commit)
        return result

    def _entry_at(self, revision: str, name: str) -> dict | None:
        raw = git_ops.read_at(self.root, revision, self.INDEX_FILE)
        if raw is None:
            return None
        data = yaml.safe_load(raw) or {}
        return (data.get("references") or {}).get(name)

    # --- Write operations ---

    def _require_writable(self) -> None:
        if not self.writable:
            raise RegistryReadOnlyError(self.name)

    def _check_free(self, name: str) -> None:
        # References and bundles share one namespace per registry
        if name in self.index.references:
            raise AlreadyExistsError("reference", name, f"registry '{self.name}'")
        if name in self.index.bundles:
            raise AlreadyExistsError("bundle", name, f"registry '{self.name}'")

    def add(self, reference: Reference, depth: int = 1, fetch: bool = True) -> Reference:
        """Fetch a new reference's content into the cache and record it.

        With ``fetch`` false only the index entry is recorded.

        Raises:
            InvalidNameError, AlreadyExistsError, SourceFetchError,
            VersionControlError
        """
        self._require_writable()
        validate_name(reference.name)
        self._check_free(reference.name)

        if fetch:
            checksum = self._fetch_into_cache(reference, depth)
            if checksum:
                reference.checksum = checksum

        self.index.references[reference.name] = reference
        self.save_index()
        self._commit(
            f"Add reference: {reference.name}",
            [self._content_rel(reference.name), self.INDEX_FILE],
        )
        logger.info("Added reference %s (%s) to %s", reference.name, reference.kind.value, self.name)
        return reference

    def update(self, name: str, depth: int = 1) -> Reference:
        """Re-fetch a reference from its recorded source, replacing cached content."""
        self._require_writable()
        reference = self.get(name)
        if reference is None:
            raise NotFoundError("reference", name, f"registry '{self.name}'")

        checksum = self._fetch_into_cache(reference, depth)
        reference.updated_at = utcnow()
        if checksum:
            reference.checksum = checksum

        self.save_index()
        self._commit(
            f"Update reference: {name}",
            [self._content_rel(name), self.INDEX_FILE],
        )
        logger.info("Updated reference %s", name)
        return reference

    def update_all(self, depth: int = 1) -> dict[str, RefstoreError | None]:
        """Update every reference; failures are collected per name, not raised."""
        outcomes: dict[str, RefstoreError | None] = {}
        for ref in self.list():
            try:
                self.update(ref.name, depth)
                outcomes[ref.name] = None
            except RefstoreError as e:
                logger.warning("Update of %s failed: %s", ref.name, e)
                outcomes[ref.name] = e
        return outcomes

    def remove(self, name: str, force: bool = False, prune_bundles: bool = False) -> Reference:
        """Delete a reference and its cached content.

        ``force`` records that the caller already confirmed the removal; the
        store itself never prompts. Removal is refused while bundles still
        list the name unless ``prune_bundles`` is set, in which case the name
        is dropped from those bundles in the same commit.
        """
        self._require_writable()
        reference = self.get(name)
        if reference is None:
            raise NotFoundError("reference", name, f"registry '{self.name}'")

        dependents = self.find_dependents(name)
        if dependents and not prune_bundles:
            raise DependentExistsError(name, dependents)
        for bundle_name in dependents:
            bundle = self.index.bundles[bundle_name]
            bundle.references = [r for r in bundle.references if r != name]

        del self.index.references[name]
        content = self.content_path(name)
        if content.exists():
            shutil.rmtree(content)

        self.save_index()
        self._commit(f"Remove reference: {name}", [self._content_rel(name), self.INDEX_FILE])
        logger.info("Removed reference %s from %s", name, self.name)
        return reference

    def push(self, name: str, target_path: str | Path, overwrite: bool = False) -> Reference:
        """Copy one reference (index entry and content) into another registry.

        The reference stays in this registry.
        """
        reference = self.get(name)
        if reference is None:
            raise NotFoundError("reference", name, f"registry '{self.name}'")

        target_root = Path(target_path)
        if not (target_root / self.INDEX_FILE).exists():
            raise NotFoundError("registry", str(target_root))
        target = RegistryStore(target_root, name=target_root.name)

        if target.get_bundle(name) is not None:
            raise AlreadyExistsError("bundle", name, f"registry '{target_root}'")
        if target.get(name) is not None and not overwrite:
            raise AlreadyExistsError("reference", name, f"registry '{target_root}'")

        source_dir = self.content_path(name)
        with tempfile.TemporaryDirectory(dir=target_root, prefix=".refstore-push-") as tmp:
            staged = Path(tmp) / name
            if source_dir.exists():
                shutil.copytree(source_dir, staged)
            else:
                staged.mkdir()
            dest = target.content_path(name)
            if dest.exists():
                shutil.rmtree(dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(staged), str(dest))

        target.index.references[name] = dict_to_reference(reference_to_dict(reference))
        target.save_index()
        git_ops.init(target_root)
        target._commit(f"Push reference: {name}", [target._content_rel(name), self.INDEX_FILE])
        logger.info("Pushed %s to %s", name, target_root)
        return reference

    def tag(self, name: str, message: str | None = None) -> None:
        self._require_writable()
        git_ops.tag(self.root, name, message)

    # --- Bundles ---

    def bundle_create(self, bundle: Bundle) -> Bundle:
        """Record a new bundle. Members are checked at expansion time, not here."""
        self._require_writable()
        validate_name(bundle.name)
        self._check_free(bundle.name)
        for member in bundle.references:
            validate_name(member)

        bundle.references = list(dict.fromkeys(bundle.references))
        self.index.bundles[bundle.name] = bundle
        self.save_index()
        self._commit(f"Add bundle: {bundle.name}", [self.INDEX_FILE])
        return bundle

    def bundle_update(
        self,
        name: str,
        add: list[str] | None = None,
        remove: list[str] | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> Bundle:
        self._require_writable()
        bundle = self.bundle_info(name)
        for member in add or []:
            validate_name(member)
            if member not in bundle.references:
                bundle.references.append(member)
        if remove:
            bundle.references = [r for r in bundle.references if r not in remove]
        if description is not None:
            bundle.description = description
        if tags is not None:
            bundle.tags = list(tags)

        self.save_index()
        self._commit(f"Update bundle: {name}", [self.INDEX_FILE])
        return bundle

    def bundle_remove(self, name: str) -> Bundle:
        self._require_writable()
        bundle = self.bundle_info(name)
        del self.index.bundles[name]
        self.save_index()
        self._commit(f"Remove bundle: {name}", [self.INDEX_FILE])
        return bundle

    def bundle_list(self, tag: str | None = None) -> list[Bundle]:
        return self.list_bundles(tag)

    def bundle_info(self, name: str) -> Bundle:
        bundle = self.get_bundle(name)
        if bundle is None:
            raise NotFoundError("bundle", name, f"registry '{self.name}'")
        return bundle

    # --- Persistence ---

    def save_index(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = self.index_path.with_suffix(".yaml.tmp")
        with open(tmp, "w") as f:
            yaml.safe_dump(index_to_dict(self.index), f, sort_keys=False)
        os.replace(tmp, self.index_path)

    def _load_index(self) -> RegistryIndex:
        if not self.index_path.exists():
            return RegistryIndex()
        try:
            with open(self.index_path) as f:
                return dict_to_index(yaml.safe_load(f) or {})
        except (yaml.YAMLError, KeyError, ValueError) as e:
            raise ManifestError(f"failed to parse {self.index_path}: {e}") from e

    def _commit(self, message: str, paths: list[str]) -> str | None:
        return git_ops.commit(self.root, message, paths)

    def _fetch_into_cache(self, reference: Reference, depth: int) -> str:
        """Fetch into a scratch directory first so a failed fetch leaves the cache as it was."""
        dest = self.content_path(reference.name)
        with tempfile.TemporaryDirectory(dir=self.root, prefix=".refstore-fetch-") as tmp:
            staged = Path(tmp) / reference.name
            checksum = fetch_content(reference, staged, depth)
            if dest.exists():
                shutil.rmtree(dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(staged), str(dest))
        return checksum
