"""Registry data models: references, bundles, the index, and resolution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

INDEX_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class ReferenceKind(Enum):
    """What kind of content a reference holds."""

    FILE = "file"
    DIRECTORY = "directory"
    GIT_REPO = "git_repo"


class SourceType(Enum):
    LOCAL = "local"  # A file or directory on disk
    GIT = "git"  # A git repository URL


@dataclass
class ReferenceSource:
    """Where a reference's content is fetched from."""

    type: SourceType
    path: str = ""  # LOCAL: absolute path
    url: str = ""  # GIT: clone URL
    ref: str | None = None  # GIT: branch or tag
    subpath: str | None = None  # GIT: directory inside the repo

    def __str__(self) -> str:
        if self.type == SourceType.LOCAL:
            return self.path
        text = self.url
        if self.ref:
            text += f" (ref: {self.ref})"
        if self.subpath:
            text += f" [{self.subpath}]"
        return text


@dataclass
class Reference:
    """A named unit of content in a registry."""

    name: str
    kind: ReferenceKind
    source: ReferenceSource
    description: str = ""
    tags: list[str] = field(default_factory=list)
    added_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None
    checksum: str = ""  # Upstream commit for git_repo references


@dataclass
class Bundle:
    """A named set of reference names."""

    name: str
    references: list[str] = field(default_factory=list)
    description: str = ""
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class RegistryIndex:
    """The durable document of one registry: references and bundles by name."""

    version: int = INDEX_VERSION
    references: dict[str, Reference] = field(default_factory=dict)
    bundles: dict[str, Bundle] = field(default_factory=dict)


class ResolvedKind(Enum):
    REFERENCE = "reference"
    BUNDLE = "bundle"


@dataclass
class Resolved:
    """Result of resolving a name across registries.

    ``kind`` says whether ``item`` is a Reference or a Bundle; ``registry``
    names the registry it came from (``local`` or a remote name).
    """

    kind: ResolvedKind
    item: Reference | Bundle
    registry: str
    registry_root: Path
    content_path: Path | None = None

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def is_bundle(self) -> bool:
        return self.kind == ResolvedKind.BUNDLE

    @property
    def reference(self) -> Reference:
        if not isinstance(self.item, Reference):
            raise TypeError(f"'{self.name}' is a bundle, not a reference")
        return self.item

    @property
    def bundle(self) -> Bundle:
        if not isinstance(self.item, Bundle):
            raise TypeError(f"'{self.name}' is a reference, not a bundle")
        return self.item


@dataclass
class ListedReference:
    """A reference tagged with the registry it was listed from."""

    reference: Reference
    registry: str


@dataclass
class ListedBundle:
    bundle: Bundle
    registry: str


@dataclass
class SearchHit:
    """One search match.

    Metadata matches have no ``path``; content matches carry the file path
    relative to the reference root, the 1-based line number and the line.
    """

    registry: str
    reference: str
    path: str | None = None
    line_number: int = 0
    line: str = ""

    @property
    def is_metadata(self) -> bool:
        return self.path is None

    def format(self) -> str:
        if self.is_metadata:
            return f"{self.reference} ({self.registry}): metadata match"
        return f"{self.reference}:{self.path}:{self.line_number}: {self.line}"


# --- Serialization ---


def reference_to_dict(ref: Reference) -> dict:
    source: dict = {"type": ref.source.type.value}
    if ref.source.type == SourceType.LOCAL:
        source["path"] = ref.source.path
    else:
        source["url"] = ref.source.url
        if ref.source.ref:
            source["ref"] = ref.source.ref
        if ref.source.subpath:
            source["subpath"] = ref.source.subpath

    data: dict = {
        "name": ref.name,
        "kind": ref.kind.value,
        "source": source,
    }
    if ref.description:
        data["description"] = ref.description
    if ref.tags:
        data["tags"] = list(ref.tags)
    data["added_at"] = ref.added_at.isoformat()
    if ref.updated_at:
        data["updated_at"] = ref.updated_at.isoformat()
    if ref.checksum:
        data["checksum"] = ref.checksum
    return data


def dict_to_reference(data: dict) -> Reference:
    source_data = data.get("source", {})
    source = ReferenceSource(
        type=SourceType(source_data.get("type", "local")),
        path=source_data.get("path", ""),
        url=source_data.get("url", ""),
        ref=source_data.get("ref"),
        subpath=source_data.get("subpath"),
    )
    return Reference(
        name=data["name"],
        kind=ReferenceKind(data["kind"]),
        source=source,
        description=data.get("description", ""),
        tags=list(data.get("tags", [])),
        added_at=_parse_time(data.get("added_at")) or utcnow(),
        updated_at=_parse_time(data.get("updated_at")),
        checksum=data.get("checksum", ""),
    )


def bundle_to_dict(bundle: Bundle) -> dict:
    data: dict = {"name": bundle.name}
    if bundle.description:
        data["description"] = bundle.description
    if bundle.tags:
        data["tags"] = list(bundle.tags)
    data["references"] = list(bundle.references)
    data["created_at"] = bundle.created_at.isoformat()
    return data


def dict_to_bundle(data: dict) -> Bundle:
    return Bundle(
        name=data["name"],
        references=list(data.get("references", [])),
        description=data.get("description", ""),
        tags=list(data.get("tags", [])),
        created_at=_parse_time(data.get("created_at")) or utcnow(),
    )


def index_to_dict(index: RegistryIndex) -> dict:
    return {
        "version": index.version,
        "references": {
            name: reference_to_dict(index.references[name])
            for name in sorted(index.references)
        },
        "bundles": {
            name: bundle_to_dict(index.bundles[name]) for name in sorted(index.bundles)
        },
    }


def dict_to_index(data: dict) -> RegistryIndex:
    return RegistryIndex(
        version=data.get("version", INDEX_VERSION),
        references={
            name: dict_to_reference({"name": name, **(entry or {})})
            for name, entry in (data.get("references") or {}).items()
        },
        bundles={
            name: dict_to_bundle({"name": name, **(entry or {})})
            for name, entry in (data.get("bundles") or {}).items()
        },
    )


def _parse_time(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
