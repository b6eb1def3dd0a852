"""Tests for the sync engine and status reporting."""

import tempfile
from pathlib import Path

import pytest

from refstore.errors import DestinationError, NotFoundError, PinNotFoundError, ResolutionFailedError
from refstore.project.manifest import BundleEntry, ManifestEntry
from refstore.project.project_store import ProjectStore
from refstore.registry.repository import RepositoryStore
from refstore.sync.engine import SyncAction, SyncEngine
from refstore.sync.status import EntryState, classify
from refstore.utils.file_scanner import read_tree


def _write_files(root: Path, files: dict) -> Path:
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    return root


def _setup(tmpdir: str, references: dict) -> tuple[SyncEngine, dict]:
    """Repository with local references ``{name: {path: text}}`` and an empty project.

    Returns the engine and the source directory of each reference.
    """
    repo = RepositoryStore.open(Path(tmpdir) / "data")
    sources = {}
    for name, files in references.items():
        sources[name] = _write_files(Path(tmpdir) / "sources" / name, files)
        repo.add(name, str(sources[name]))
    project = ProjectStore.init(Path(tmpdir) / "project")
    return SyncEngine(project, repo), sources


def _output(engine: SyncEngine, destination: str) -> dict:
    return read_tree(engine.project.references_dir / destination)


def _states(engine: SyncEngine) -> dict:
    return {s.name: s.state for s in engine.status()}


# --- Sync Tests ---


def test_sync_materializes_reference():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"README.md": "hi", "docs/usage.md": "use"}})
        engine.project.add_reference("guide")

        report = engine.sync()
        assert [r.action for r in report.results] == [SyncAction.SYNCED]
        assert report.results[0].written == ["README.md", "docs/usage.md"]
        assert report.results[0].revision is not None
        assert _output(engine, "guide") == {"README.md": b"hi", "docs/usage.md": b"use"}


def test_sync_is_idempotent():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"README.md": "hi"}})
        engine.project.add_reference("guide")

        engine.sync()
        before = _output(engine, "guide")
        report = engine.sync()

        assert [r.action for r in report.results] == [SyncAction.UP_TO_DATE]
        assert _output(engine, "guide") == before
        assert _states(engine) == {"guide": EntryState.IN_SYNC}


def test_sync_force_rewrites_everything():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a", "b.md": "b"}})
        engine.project.add_reference("guide")
        engine.sync()

        report = engine.sync(force=True)
        assert report.results[0].action == SyncAction.SYNCED
        assert report.results[0].written == ["a.md", "b.md"]


def test_sync_applies_filters():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"crate": {"a.rs": "a", "b.rs": "b", "tests/c.rs": "c", "README.md": "r"}})
        engine.project.add_reference("crate", ManifestEntry(include=["**/*.rs"], exclude=["tests/*"]))

        engine.sync()
        assert _output(engine, "crate") == {"a.rs": b"a", "b.rs": b"b"}


def test_sync_removes_files_no_longer_expected():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, sources = _setup(tmpdir, {"guide": {"a.md": "a", "old/b.md": "b"}})
        engine.project.add_reference("guide")
        engine.sync()

        (sources["guide"] / "old" / "b.md").unlink()
        (sources["guide"] / "old").rmdir()
        (sources["guide"] / "a.md").write_text("a2")
        engine.repository.update("guide")

        assert _states(engine) == {"guide": EntryState.STALE}
        report = engine.sync()
        assert report.results[0].written == ["a.md"]
        assert report.results[0].removed == ["old/b.md"]
        assert _output(engine, "guide") == {"a.md": b"a2"}
        assert not (engine.project.references_dir / "guide" / "old").exists()


def test_sync_repairs_local_edits():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a"}})
        engine.project.add_reference("guide")
        engine.sync()

        (engine.project.references_dir / "guide" / "a.md").write_text("edited")
        (engine.project.references_dir / "guide" / "extra.md").write_text("x")
        assert _states(engine) == {"guide": EntryState.STALE}

        engine.sync()
        assert _output(engine, "guide") == {"a.md": b"a"}


def test_sync_pinned_to_tag():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, sources = _setup(tmpdir, {"guide": {"a.md": "v1"}})
        engine.repository.tag("v1")
        (sources["guide"] / "a.md").write_text("v2")
        engine.repository.update("guide")

        engine.project.add_reference("guide", ManifestEntry(version="v1"))
        report = engine.sync()

        assert _output(engine, "guide") == {"a.md": b"v1"}
        assert report.results[0].revision == engine.repository.revision_of(
            engine.repository.resolve("guide"), "v1"
        )


def test_sync_unknown_pin_fails():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a"}})
        engine.project.add_reference("guide", ManifestEntry(version="v9"))

        with pytest.raises(PinNotFoundError):
            engine.sync()
        statuses = engine.status()
        assert statuses[0].state == EntryState.UNRESOLVED
        assert "v9" in statuses[0].detail


def test_sync_with_unresolvable_entry_writes_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a"}})
        engine.project.add_reference("guide")
        engine.project.add_reference("missing")

        with pytest.raises(ResolutionFailedError):
            engine.sync()
        assert not (engine.project.references_dir / "guide").exists()


def test_sync_single_name():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"a": {"a.md": "a"}, "b": {"b.md": "b"}})
        engine.project.add_reference("a")
        engine.project.add_reference("b")

        report = engine.sync("b")
        assert [r.name for r in report.results] == ["b"]
        assert not (engine.project.references_dir / "a").exists()

        with pytest.raises(NotFoundError):
            engine.sync("nope")


def test_sync_bundle_by_name_with_prefix():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"a": {"a.md": "a"}, "c": {"c.md": "c"}, "other": {"o.md": "o"}})
        engine.repository.bundle_create("stack", ["a", "c"])
        engine.project.add_bundle("stack", BundleEntry(name="stack", path="vendor"))
        engine.project.add_reference("other")

        report = engine.sync("stack")
        assert [r.name for r in report.results] == ["a", "c"]
        assert _output(engine, "vendor/a") == {"a.md": b"a"}
        assert _output(engine, "vendor/c") == {"c.md": b"c"}
        assert not (engine.project.references_dir / "other").exists()


def test_sync_never_touches_nested_destination():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"outer": {"o.md": "o"}, "inner": {"i.md": "i"}})
        engine.project.add_reference("outer", ManifestEntry(path="docs"))
        engine.project.add_reference("inner", ManifestEntry(path="docs/inner"))

        engine.sync()
        engine.sync("outer", force=True)
        assert _output(engine, "docs/inner") == {"i.md": b"i"}
        assert _states(engine) == {"inner": EntryState.IN_SYNC, "outer": EntryState.IN_SYNC}


def test_sync_keeps_empty_nested_destination():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"outer": {"o.md": "o"}, "inner": {"lib.rs": "fn main() {}"}})
        engine.project.add_reference("outer", ManifestEntry(path="docs"))
        engine.project.add_reference("inner", ManifestEntry(path="docs/inner", include=["*.md"]))

        engine.sync()
        assert (engine.project.references_dir / "docs" / "inner").is_dir()
        assert _states(engine) == {"inner": EntryState.IN_SYNC, "outer": EntryState.IN_SYNC}

        report = engine.sync()
        assert [(r.name, r.action) for r in report.results] == [
            ("inner", SyncAction.UP_TO_DATE),
            ("outer", SyncAction.UP_TO_DATE),
        ]


def test_sync_replaces_file_at_destination():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a"}})
        engine.project.add_reference("guide")
        (engine.project.references_dir / "guide").write_text("stray")

        statuses = engine.status()
        assert statuses[0].state == EntryState.STALE
        assert statuses[0].detail == "destination is not a directory"

        engine.sync()
        assert _output(engine, "guide") == {"a.md": b"a"}
        assert _states(engine) == {"guide": EntryState.IN_SYNC}


def test_sync_unwritable_destination_names_the_entry():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a"}})
        engine.project.add_reference("guide", ManifestEntry(path="vendor/guide"))
        (engine.project.references_dir / "vendor").write_text("not a directory")

        with pytest.raises(DestinationError) as exc:
            engine.sync()
        assert exc.value.name == "guide"
        assert "vendor/guide" in exc.value.message


def test_sync_with_empty_manifest():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {})
        assert engine.sync().results == []
        assert engine.status() == []


# --- Status Tests ---


def test_status_states():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"synced": {"a.md": "a"}, "pending": {"b.md": "b"}})
        engine.project.add_reference("synced")
        engine.sync()
        engine.project.add_reference("pending")
        engine.project.add_reference("ghost")

        states = _states(engine)
        assert states == {
            "ghost": EntryState.UNRESOLVED,
            "pending": EntryState.MISSING,
            "synced": EntryState.IN_SYNC,
        }


def test_status_does_not_write():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a"}})
        engine.project.add_reference("guide")
        engine.status()
        assert not (engine.project.references_dir / "guide").exists()


def test_classify():
    assert classify({"a": b"1"}, {}, exists=False)[0] == EntryState.MISSING
    assert classify({"a": b"1"}, {"a": b"1"}, exists=True)[0] == EntryState.IN_SYNC
    state, detail = classify({"a": b"1", "b": b"2"}, {"a": b"x", "c": b"3"}, exists=True)
    assert state == EntryState.STALE
    assert detail == "1 changed, 1 missing, 1 extra"


def test_orphans():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a"}})
        engine.project.add_reference("guide")
        engine.sync()
        (engine.project.references_dir / "leftover").mkdir()

        assert engine.orphans() == ["leftover"]


# --- Remove Tests ---


def test_remove_with_purge_deletes_destination():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a"}})
        engine.project.add_reference("guide")
        engine.sync()

        engine.remove("guide", purge=True)
        assert not (engine.project.references_dir / "guide").exists()
        assert engine.project.references_dir.is_dir()
        # Registry untouched
        assert engine.repository.resolve("guide").name == "guide"


def test_remove_without_purge_keeps_files():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"guide": {"a.md": "a"}})
        engine.project.add_reference("guide")
        engine.sync()

        engine.remove("guide")
        assert (engine.project.references_dir / "guide" / "a.md").exists()
        assert engine.status() == []
        assert engine.sync().results == []
        assert engine.orphans() == ["guide"]


def test_remove_bundle_with_purge_deletes_member_destinations():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"a": {"a.md": "a"}, "c": {"c.md": "c"}})
        engine.repository.bundle_create("stack", ["a", "c"])
        engine.project.add_bundle("stack")
        engine.project.add_reference("c")
        engine.sync()

        engine.remove("stack", purge=True)
        assert not (engine.project.references_dir / "a").exists()
        # Still claimed by the explicit entry
        assert (engine.project.references_dir / "c" / "c.md").exists()


def test_purge_keeps_empty_nested_destination():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _ = _setup(tmpdir, {"outer": {"o.md": "o"}, "inner": {"lib.rs": "fn main() {}"}})
        engine.project.add_reference("outer", ManifestEntry(path="docs"))
        engine.project.add_reference("inner", ManifestEntry(path="docs/inner", include=["*.md"]))
        engine.sync()

        engine.remove("outer", purge=True)
        assert not (engine.project.references_dir / "docs" / "o.md").exists()
        assert (engine.project.references_dir / "docs" / "inner").is_dir()
        assert _states(engine) == {"inner": EntryState.IN_SYNC}
