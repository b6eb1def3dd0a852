"""Cross-registry search over reference metadata and cached text content."""

from __future__ import annotations

from refstore.registry.models import Reference, Resolved, SearchHit
from refstore.utils.file_scanner import is_binary, scan_files


def matches_metadata(reference: Reference, query: str) -> bool:
    """Case-insensitive substring match on name, description and tags."""
    needle = query.lower()
    haystack = " ".join([reference.name, reference.description, *reference.tags]).lower()
    return needle in haystack


def search_references(
    targets: list[Resolved], query: str, limit: int | None = None
) -> list[SearchHit]:
    """Search metadata and file content of the given resolved references.

    Binary files are skipped. Results keep the order of ``targets``; within a
    reference, the metadata hit comes first, then content hits by path and
    line number.
    """
    hits: list[SearchHit] = []
    needle = query.lower()

    for resolved in targets:
        ref = resolved.reference
        if matches_metadata(ref, query):
            hits.append(SearchHit(registry=resolved.registry, reference=ref.name))
            if limit is not None and len(hits) >= limit:
                return hits

        content_dir = resolved.content_path
        if content_dir is None or not content_dir.exists():
            continue

        for rel in scan_files(content_dir):
            data = (content_dir / rel).read_bytes()
            if is_binary(data):
                continue
            for i, line in enumerate(data.decode("utf-8").splitlines(), start=1):
                if needle in line.lower():
                    hits.append(
                        SearchHit(
                            registry=resolved.registry,
                            reference=ref.name,
                            path=rel,
                            line_number=i,
                            line=line.strip(),
                        )
                    )
                    if limit is not None and len(hits) >= limit:
                        return hits
    return hits
