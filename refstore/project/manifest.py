"""The project manifest (``refstore.yaml``): which references and bundles a project wants."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from refstore.errors import ManifestError

MANIFEST_FILE = "refstore.yaml"
MANIFEST_VERSION = 1


@dataclass
class ManifestEntry:
    """Options for one explicitly listed reference."""

    path: str | None = None  # Destination under .references/, defaults to the name
    version: str | None = None  # Pin: tag or commit id
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)


@dataclass
class BundleEntry:
    """A bundle listed in the manifest; its options apply to every member."""

    name: str
    path: str | None = None  # Prefix directory for the members' destinations
    version: str | None = None
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)

    @property
    def has_options(self) -> bool:
        return bool(self.path or self.version or self.include or self.exclude)


@dataclass
class Manifest:
    version: int = MANIFEST_VERSION
    gitignore_references: bool = True
    references: dict[str, ManifestEntry] = field(default_factory=dict)
    bundles: list[BundleEntry] = field(default_factory=list)

    def get_bundle(self, name: str) -> BundleEntry | None:
        for entry in self.bundles:
            if entry.name == name:
                return entry
        return None

    def has_entry(self, name: str) -> bool:
        return name in self.references or self.get_bundle(name) is not None


def load_manifest(path: str | Path) -> Manifest:
    """Load a manifest file.

    Raises:
        ManifestError: If the file is not valid YAML or has malformed entries.
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ManifestError(f"failed to parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"{path}: expected a mapping at the top level")

    references = {}
    for name, entry in (data.get("references") or {}).items():
        entry = entry or {}
        if not isinstance(entry, dict):
            raise ManifestError(f"{path}: reference '{name}' must be a mapping")
        references[str(name)] = ManifestEntry(
            path=entry.get("path"),
            version=_optional_str(entry.get("version")),
            include=_patterns(path, name, entry.get("include")),
            exclude=_patterns(path, name, entry.get("exclude")),
        )

    bundles = []
    for item in data.get("bundles") or []:
        if isinstance(item, str):
            bundles.append(BundleEntry(name=item))
        elif isinstance(item, dict) and item.get("name"):
            name = str(item["name"])
            bundles.append(
                BundleEntry(
                    name=name,
                    path=item.get("path"),
                    version=_optional_str(item.get("version")),
                    include=_patterns(path, name, item.get("include")),
                    exclude=_patterns(path, name, item.get("exclude")),
                )
            )
        else:
            raise ManifestError(f"{path}: bundle entries must be a name or a mapping with 'name'")

    return Manifest(
        version=data.get("version", MANIFEST_VERSION),
        gitignore_references=bool(data.get("gitignore_references", True)),
        references=references,
        bundles=bundles,
    )


def save_manifest(path: str | Path, manifest: Manifest) -> None:
    data: dict = {
        "version": manifest.version,
        "gitignore_references": manifest.gitignore_references,
        "references": {
            name: _entry_to_dict(manifest.references[name])
            for name in sorted(manifest.references)
        },
        "bundles": [_bundle_to_yaml(b) for b in manifest.bundles],
    }
    with open(path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False)


def _entry_to_dict(entry: ManifestEntry | BundleEntry) -> dict:
    data: dict = {}
    if entry.path:
        data["path"] = entry.path
    if entry.version:
        data["version"] = entry.version
    if entry.include:
        data["include"] = list(entry.include)
    if entry.exclude:
        data["exclude"] = list(entry.exclude)
    return data


def _bundle_to_yaml(entry: BundleEntry) -> str | dict:
    if not entry.has_options:
        return entry.name
    return {"name": entry.name, **_entry_to_dict(entry)}


def _optional_str(value) -> str | None:
    # YAML reads `version: 1.0` as a float
    return None if value is None else str(value)


def _patterns(path: Path, name, value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ManifestError(f"{path}: '{name}' filters must be a list of glob patterns")
    return list(value)
