"""Tests for the command-line interface."""

import tempfile
from pathlib import Path

from click.testing import CliRunner

from refstore.cli import main


def _invoke(data_dir: Path, *args: str, input: str | None = None):
    runner = CliRunner()
    return runner.invoke(main, ["--data-dir", str(data_dir), *args], input=input)


def _source(tmpdir: str) -> Path:
    root = Path(tmpdir) / "src"
    (root / "docs").mkdir(parents=True)
    (root / "README.md").write_text("# Hello\nwelcome text\n")
    (root / "docs" / "notes.txt").write_text("notes\n")
    return root


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_repo_add_list_info():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = Path(tmpdir) / "data"
        result = _invoke(data, "repo", "add", "guide", str(_source(tmpdir)), "-d", "Guide", "-t", "docs")
        assert result.exit_code == 0, result.output
        assert "Added" in result.output

        result = _invoke(data, "list")
        assert result.exit_code == 0
        assert "guide" in result.output

        result = _invoke(data, "info", "guide")
        assert result.exit_code == 0
        assert "directory" in result.output

        result = _invoke(data, "versions", "guide")
        assert result.exit_code == 0
        assert "Add reference: guide" in result.output


def test_errors_exit_with_code_one():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = Path(tmpdir) / "data"
        result = _invoke(data, "info", "nope")
        assert result.exit_code == 1
        assert "not found" in result.output

        result = _invoke(data, "repo", "add", "bad name", str(_source(tmpdir)))
        assert result.exit_code == 1
        assert "invalid name" in result.output


def test_repo_remove_asks_for_confirmation():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = Path(tmpdir) / "data"
        _invoke(data, "repo", "add", "guide", str(_source(tmpdir)))

        result = _invoke(data, "repo", "remove", "guide", input="n\n")
        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert _invoke(data, "info", "guide").exit_code == 0

        result = _invoke(data, "repo", "remove", "guide", input="y\n")
        assert result.exit_code == 0
        assert _invoke(data, "info", "guide").exit_code == 1


def test_repo_remove_keeps_bundles_unless_pruned():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = Path(tmpdir) / "data"
        _invoke(data, "repo", "add", "guide", str(_source(tmpdir)))
        _invoke(data, "bundle", "create", "stack", "guide")

        result = _invoke(data, "repo", "remove", "guide", "--force")
        assert result.exit_code == 1
        assert "still used by bundle(s): stack" in result.output
        assert _invoke(data, "info", "guide").exit_code == 0

        result = _invoke(data, "repo", "remove", "guide", "--force", "--prune-bundles")
        assert result.exit_code == 0, result.output
        assert _invoke(data, "info", "guide").exit_code == 1


def test_search_command():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = Path(tmpdir) / "data"
        _invoke(data, "repo", "add", "guide", str(_source(tmpdir)))

        result = _invoke(data, "search", "welcome")
        assert result.exit_code == 0
        assert "README.md:2" in result.output

        result = _invoke(data, "search", "zzz")
        assert "No matches" in result.output


def test_bundle_commands():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = Path(tmpdir) / "data"
        _invoke(data, "repo", "add", "guide", str(_source(tmpdir)))

        result = _invoke(data, "bundle", "create", "stack", "guide", "ghost")
        assert result.exit_code == 0, result.output

        result = _invoke(data, "bundle", "info", "stack")
        assert "ghost" in result.output
        assert "missing" in result.output

        result = _invoke(data, "bundle", "update", "stack", "--remove", "ghost")
        assert result.exit_code == 0

        result = _invoke(data, "bundle", "list")
        assert "stack" in result.output

        result = _invoke(data, "bundle", "remove", "stack", "--force")
        assert result.exit_code == 0
        assert "No bundles" in _invoke(data, "bundle", "list").output


def test_config_commands():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = Path(tmpdir) / "data"
        result = _invoke(data, "config", "set", "git_depth", "3")
        assert result.exit_code == 0

        result = _invoke(data, "config", "get", "git_depth")
        assert result.output.strip() == "3"

        result = _invoke(data, "config", "set", "mcp_scope", "everything")
        assert result.exit_code == 1

        result = _invoke(data, "config", "show")
        assert "mcp_scope = read_only" in result.output


def test_project_workflow(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        data = Path(tmpdir) / "data"
        project = Path(tmpdir) / "project"
        project.mkdir()
        monkeypatch.chdir(project)

        _invoke(data, "repo", "add", "guide", str(_source(tmpdir)))
        assert _invoke(data, "init").exit_code == 0
        assert (project / "refstore.yaml").exists()

        result = _invoke(data, "add", "guide", "--include", "*.md")
        assert result.exit_code == 0, result.output

        result = _invoke(data, "add", "ghost")
        assert result.exit_code == 1

        result = _invoke(data, "status")
        assert "missing" in result.output

        result = _invoke(data, "sync")
        assert result.exit_code == 0, result.output
        assert (project / ".references" / "guide" / "README.md").exists()
        assert not (project / ".references" / "guide" / "docs").exists()

        result = _invoke(data, "status")
        assert "in-sync" in result.output

        result = _invoke(data, "remove", "guide", "--purge")
        assert result.exit_code == 0
        assert not (project / ".references" / "guide").exists()


def test_registry_commands():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = Path(tmpdir) / "data"
        remote = Path(tmpdir) / "team-registry"

        result = _invoke(data, "registry", "init", str(remote))
        assert result.exit_code == 0, result.output

        result = _invoke(data, "registry", "add", "team", str(remote))
        assert result.exit_code == 0, result.output

        result = _invoke(data, "registry", "list")
        assert "team" in result.output
        assert "local" in result.output

        result = _invoke(data, "registry", "remove", "team")
        assert result.exit_code == 0, result.output
        assert "team" not in _invoke(data, "registry", "list").output
