"""Repository store — the local registry composed with remote registries.

The data directory is itself the local registry (``index.yaml``,
``content/``) and holds remote registries as git submodules under
``registries/<name>/``. Names resolve against the local registry first, then
the remotes in lexicographic order, so results are the same on every run.
"""

from __future__ import annotations

import logging
from pathlib import Path

from refstore.config import GlobalConfig, RegistryInfo, default_data_dir, load_config, save_config
from refstore.errors import (
    AlreadyExistsError,
    InvalidNameError,
    ManifestError,
    NotFoundError,
    PinNotFoundError,
    RefstoreError,
)
from refstore.registry.models import (
    Bundle,
    ListedBundle,
    ListedReference,
    Reference,
    ReferenceKind,
    Resolved,
    ResolvedKind,
    SearchHit,
    SourceType,
)
from refstore.registry.registry_store import RegistryStore
from refstore.registry.search import search_references
from refstore.registry.sources import parse_source
from refstore.utils import git_ops
from refstore.utils.file_scanner import read_tree
from refstore.utils.validator import validate_name

logger = logging.getLogger(__name__)

LOCAL_REGISTRY = "local"
REGISTRIES_DIR = "registries"
IGNORED_PATTERNS = ["config.yaml", ".refstore-*"]


class RepositoryStore:
    """Resolvable view over the local registry plus loaded remote registries."""

    def __init__(
        self,
        root: Path,
        config: GlobalConfig,
        local: RegistryStore,
        remotes: list[RegistryStore],
        load_errors: dict[str, str],
    ):
        self.root = root
        self.config = config
        self.local = local
        self.remotes = remotes
        self.load_errors = load_errors

    @classmethod
    def open(cls, data_dir: str | Path | None = None, config: GlobalConfig | None = None) -> RepositoryStore:
        """Open (initializing on first use) the repository at ``data_dir``.

        Safe to call repeatedly: every initialization step is skipped when
        already done. Remote registries that fail to load are left out and
        reported in ``load_errors``.
        """
        root = Path(data_dir) if data_dir else default_data_dir()
        root.mkdir(parents=True, exist_ok=True)
        (root / RegistryStore.CONTENT_DIR).mkdir(exist_ok=True)

        git_ops.init(root)
        gitignore_changed = git_ops.ensure_gitignore(root, IGNORED_PATTERNS)
        local = RegistryStore(root, name=LOCAL_REGISTRY, writable=True)
        if git_ops.head_revision(root) is None:
            if not local.index_path.exists():
                local.save_index()
            git_ops.commit(root, "Initialize refstore repository")
        elif gitignore_changed:
            git_ops.commit(root, "Update .gitignore", [".gitignore"])

        remotes, load_errors = _load_remote_registries(root)
        return cls(
            root=root,
            config=config if config is not None else load_config(root),
            local=local,
            remotes=remotes,
            load_errors=load_errors,
        )

    def save_config(self) -> None:
        save_config(self.root, self.config)

    def stores(self) -> list[RegistryStore]:
        """All loaded registries in resolution order."""
        return [self.local, *self.remotes]

    def store_for(self, registry: str) -> RegistryStore:
        for store in self.stores():
            if store.name == registry:
                return store
        raise NotFoundError("registry", registry)

    def content_path(self, name: str) -> Path:
        return self.local.content_path(name)

    # --- Resolution ---

    def resolve(self, name: str) -> Resolved:
        """Resolve a reference or bundle name; local first, then remotes by name.

        Raises:
            NotFoundError: If no loaded registry defines the name.
        """
        for store in self.stores():
            resolved = _resolve_in(store, name)
            if resolved is not None:
                return resolved
        raise NotFoundError("reference or bundle", name, "any registry")

    def resolve_reference(self, name: str) -> Resolved:
        for store in self.stores():
            if store.get(name) is not None:
                return _resolve_in(store, name)
        raise NotFoundError("reference", name, "any registry")

    def resolve_bundle(self, name: str) -> Resolved:
        for store in self.stores():
            if store.get_bundle(name) is not None:
                return _resolve_in(store, name)
        raise NotFoundError("bundle", name, "any registry")

    def get(self, name: str) -> Reference | None:
        try:
            return self.resolve_reference(name).reference
        except NotFoundError:
            return None

    def get_bundle(self, name: str) -> Bundle | None:
        try:
            return self.resolve_bundle(name).bundle
        except NotFoundError:
            return None

    # --- Listing and search ---

    def list(self, tag: str | None = None, kind: ReferenceKind | str | None = None) -> list[ListedReference]:
        """References from every loaded registry, each tagged with its registry."""
        return [
            ListedReference(reference=ref, registry=store.name)
            for store in self.stores()
            for ref in store.list(tag, kind)
        ]

    def list_bundles(self, tag: str | None = None) -> list[ListedBundle]:
        return [
            ListedBundle(bundle=bundle, registry=store.name)
            for store in self.stores()
            for bundle in store.list_bundles(tag)
        ]

    def search(self, query: str, scope: str | None = None, limit: int | None = None) -> list[SearchHit]:
        """Search metadata and text content, across all registries or one reference."""
        if scope:
            targets = [self.resolve_reference(scope)]
        else:
            targets = [
                _resolve_in(store, ref.name)
                for store in self.stores()
                for ref in store.list()
            ]
        return search_references(targets, query, limit)

    # --- Content ---

    def current_content(self, resolved: Resolved) -> dict[str, bytes]:
        """The reference's cached content as it is on disk now."""
        if resolved.content_path is None or not resolved.content_path.exists():
            return {}
        return read_tree(resolved.content_path)

    def snapshot(self, resolved: Resolved, revision: str) -> dict[str, bytes]:
        """The reference's content as of ``revision`` in its own registry.

        Raises:
            PinNotFoundError: If the revision does not exist there, or the
                reference had no content at that revision.
        """
        root = resolved.registry_root
        if not git_ops.ref_exists(root, revision):
            raise PinNotFoundError(resolved.name, revision, resolved.registry)

        files = git_ops.snapshot(root, revision, f"{RegistryStore.CONTENT_DIR}/{resolved.name}")
        if files is None:
            raise PinNotFoundError(
                resolved.name, revision, resolved.registry, "reference has no content at that revision"
            )
        return files

    def revision_of(self, resolved: Resolved, pin: str | None = None) -> str | None:
        """Commit id the reference's content comes from (the pin when given)."""
        root = resolved.registry_root
        if pin:
            if not git_ops.ref_exists(root, pin):
                raise PinNotFoundError(resolved.name, pin, resolved.registry)
            return git_ops.resolve_revision(root, pin)
        return git_ops.last_revision(root, f"{RegistryStore.CONTENT_DIR}/{resolved.name}")

    # --- Local registry writes ---

    def add(
        self,
        name: str,
        source: str,
        description: str = "",
        tags: list[str] | None = None,
        git_ref: str | None = None,
        subpath: str | None = None,
        cwd: str | Path | None = None,
    ) -> Reference:
        """Add a reference from a local path or git URL to the local registry.

        Git sources without an explicit ref use the configured default
        branch, and are cloned at the configured depth.
        """
        validate_name(name)
        kind, ref_source = parse_source(source, git_ref, subpath, cwd=cwd)
        if ref_source.type == SourceType.GIT and not ref_source.ref:
            ref_source.ref = self.config.default_branch

        reference = Reference(
            name=name,
            kind=kind,
            source=ref_source,
            description=description,
            tags=list(tags or []),
        )
        return self.local.add(reference, depth=self.config.git_depth)

    def update(self, name: str) -> Reference:
        return self.local.update(name, depth=self.config.git_depth)

    def update_all(self) -> dict[str, RefstoreError | None]:
        return self.local.update_all(depth=self.config.git_depth)

    def remove(self, name: str, force: bool = False, prune_bundles: bool = False) -> Reference:
        return self.local.remove(name, force=force, prune_bundles=prune_bundles)

    def find_dependents(self, name: str) -> list[str]:
        return self.local.find_dependents(name)

    def push(self, name: str, target: str | Path, overwrite: bool = False) -> Reference:
        return self.local.push(name, target, overwrite=overwrite)

    def tag(self, name: str, message: str | None = None) -> None:
        self.local.tag(name, message)

    def tags(self) -> list[str]:
        return self.local.tags()

    def history(self, name: str) -> list[git_ops.LogEntry]:
        """Version history of a reference in the registry it resolves to."""
        resolved = self.resolve_reference(name)
        return self.store_for(resolved.registry).history(name)

    # --- Bundles (local registry) ---

    def bundle_create(
        self,
        name: str,
        references: list[str],
        description: str = "",
        tags: list[str] | None = None,
    ) -> Bundle:
        bundle = Bundle(name=name, references=list(references), description=description, tags=list(tags or []))
        return self.local.bundle_create(bundle)

    def bundle_update(
        self,
        name: str,
        add: list[str] | None = None,
        remove: list[str] | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> Bundle:
        return self.local.bundle_update(name, add=add, remove=remove, description=description, tags=tags)

    def bundle_remove(self, name: str) -> Bundle:
        return self.local.bundle_remove(name)

    def bundle_list(self, tag: str | None = None) -> list[ListedBundle]:
        return self.list_bundles(tag)

    def bundle_info(self, name: str) -> Resolved:
        return self.resolve_bundle(name)

    # --- Remote registries ---

    def registries(self) -> list[RegistryStore]:
        return list(self.remotes)

    def registry_add(self, name: str, url: str) -> RegistryStore:
        """Add a remote registry as a git submodule and load it read-only."""
        validate_name(name)
        if name == LOCAL_REGISTRY:
            raise InvalidNameError(name, "'local' is reserved for the local registry")

        subpath = f"{REGISTRIES_DIR}/{name}"
        if (self.root / subpath).exists() or subpath in git_ops.submodule_paths(self.root):
            raise AlreadyExistsError("registry", name)

        (self.root / REGISTRIES_DIR).mkdir(exist_ok=True)
        git_ops.add_submodule(self.root, url, subpath)
        try:
            if not (self.root / subpath / RegistryStore.INDEX_FILE).exists():
                raise ManifestError(f"'{url}' is not a registry: no {RegistryStore.INDEX_FILE} at its root")
            store = RegistryStore.open(self.root / subpath, name=name, writable=False)
        except RefstoreError:
            git_ops.abort_submodule_add(self.root, subpath)
            raise
        git_ops.commit(self.root, f"Add registry: {name}", [".gitmodules", subpath])

        self.remotes = sorted([*self.remotes, store], key=lambda s: s.name)
        self.load_errors.pop(name, None)

        self.config.registries = [r for r in self.config.registries if r.name != name]
        self.config.registries.append(RegistryInfo(name=name, url=url))
        self.save_config()
        logger.info("Added registry %s from %s", name, url)
        return store

    def registry_update(self, name: str | None = None) -> None:
        """Pull the latest commit of one remote registry, or of all of them."""
        if name:
            subpath = f"{REGISTRIES_DIR}/{name}"
            if subpath not in git_ops.submodule_paths(self.root):
                raise NotFoundError("registry", name)
            git_ops.update_submodule(self.root, subpath)
            git_ops.commit(self.root, f"Update registry: {name}", [subpath])
        else:
            git_ops.update_submodule(self.root)
            git_ops.commit(self.root, "Update all registries", [REGISTRIES_DIR])

        self.remotes, self.load_errors = _load_remote_registries(self.root)

    def registry_remove(self, name: str, force: bool = False) -> None:
        """Deinitialize and remove a remote registry.

        A removal that previously stopped halfway can simply be repeated.
        """
        subpath = f"{REGISTRIES_DIR}/{name}"
        known = (
            subpath in git_ops.submodule_paths(self.root)
            or (self.root / subpath).exists()
            or any(r.name == name for r in self.config.registries)
        )
        if not known:
            raise NotFoundError("registry", name)

        git_ops.remove_submodule(self.root, subpath, force=force)
        git_ops.commit(self.root, f"Remove registry: {name}", [".gitmodules", subpath])

        self.remotes = [s for s in self.remotes if s.name != name]
        self.load_errors.pop(name, None)
        self.config.registries = [r for r in self.config.registries if r.name != name]
        self.save_config()
        logger.info("Removed registry %s", name)

    def registry_init(self, path: str | Path) -> RegistryStore:
        return RegistryStore.init_new(path)


def _resolve_in(store: RegistryStore, name: str) -> Resolved | None:
    reference = store.get(name)
    if reference is not None:
        return Resolved(
            kind=ResolvedKind.REFERENCE,
            item=reference,
            registry=store.name,
            registry_root=store.root,
            content_path=store.content_path(name),
        )
    bundle = store.get_bundle(name)
    if bundle is not None:
        return Resolved(
            kind=ResolvedKind.BUNDLE,
            item=bundle,
            registry=store.name,
            registry_root=store.root,
        )
    return None


def _load_remote_registries(root: Path) -> tuple[list[RegistryStore], dict[str, str]]:
    """Load every registry under ``registries/``, sorted by name.

    A directory that is not a loadable registry is skipped and its failure
    recorded instead of aborting the whole open.
    """
    registries_dir = root / REGISTRIES_DIR
    if not registries_dir.is_dir():
        return [], {}

    stores: list[RegistryStore] = []
    errors: dict[str, str] = {}
    for path in sorted(p for p in registries_dir.iterdir() if p.is_dir()):
        name = path.name
        if not (path / RegistryStore.INDEX_FILE).exists():
            errors[name] = f"no {RegistryStore.INDEX_FILE} (not a registry, or submodule not checked out)"
            logger.warning("Skipping registry %s: %s", name, errors[name])
            continue
        try:
            stores.append(RegistryStore.open(path, name=name, writable=False))
        except RefstoreError as e:
            errors[name] = str(e)
            logger.warning("Skipping registry %s: %s", name, e)
    return stores, errors
