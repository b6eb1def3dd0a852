"""Compare what a project holds with what its manifest expects.

An entry is:
1. in-sync when its destination holds exactly the expected files and bytes
2. stale when the destination exists but differs
3. missing when the destination does not exist
4. unresolved when the entry cannot be resolved against the repository
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EntryState(Enum):
    IN_SYNC = "in-sync"
    STALE = "stale"
    MISSING = "missing"
    UNRESOLVED = "unresolved"


@dataclass
class EntryStatus:
    """Status of one manifest entry (or one bundle member)."""

    name: str
    state: EntryState
    destination: str | None = None
    registry: str | None = None
    revision: str | None = None
    pin: str | None = None
    origin: str | None = None
    detail: str = ""

    def summary(self) -> str:
        text = f"{self.name}: {self.state.value}"
        if self.detail:
            text += f" ({self.detail})"
        return text


@dataclass
class FileDiff:
    """Relative paths that differ between expected and current content."""

    changed: list[str]
    missing: list[str]
    extra: list[str]

    @property
    def is_empty(self) -> bool:
        return not (self.changed or self.missing or self.extra)

    def describe(self) -> str:
        parts = []
        if self.changed:
            parts.append(f"{len(self.changed)} changed")
        if self.missing:
            parts.append(f"{len(self.missing)} missing")
        if self.extra:
            parts.append(f"{len(self.extra)} extra")
        return ", ".join(parts)


def diff_files(expected: dict[str, bytes], current: dict[str, bytes]) -> FileDiff:
    return FileDiff(
        changed=sorted(p for p in expected if p in current and current[p] != expected[p]),
        missing=sorted(p for p in expected if p not in current),
        extra=sorted(p for p in current if p not in expected),
    )


def classify(expected: dict[str, bytes], current: dict[str, bytes], exists: bool) -> tuple[EntryState, str]:
    """Decide the state of a resolved entry and a short detail line."""
    if not exists:
        return EntryState.MISSING, "not synced yet"
    diff = diff_files(expected, current)
    if diff.is_empty:
        return EntryState.IN_SYNC, ""
    return EntryState.STALE, diff.describe()
