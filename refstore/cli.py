"""refstore CLI — the main entry point for managing and syncing references."""

import logging
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from refstore import __version__
from refstore.errors import RefstoreError

console = Console()
err_console = Console(stderr=True)


class RefstoreGroup(click.Group):
    """Command group that turns engine errors into a one-line message and exit code 1."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except RefstoreError as e:
            err_console.print(f"[red]Error:[/] {escape(e.message)}")
            raise SystemExit(1) from None


@click.group(cls=RefstoreGroup)
@click.version_option(version=__version__)
@click.option("--data-dir", default=None, type=click.Path(file_okay=False), help="Override the data directory")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, data_dir: str | None, verbose: bool):
    """refstore — a git-backed reference registry.

    Keep reusable reference material (files, directories, git repos) in one
    versioned repository and sync filtered subsets of it into projects.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir


def _repository(ctx):
    from refstore.registry.repository import RepositoryStore

    repo = RepositoryStore.open(ctx.obj.get("data_dir"))
    for name, reason in repo.load_errors.items():
        err_console.print(f"[yellow]Warning:[/] registry '{escape(name)}' skipped: {escape(reason)}")
    return repo


def _project():
    from refstore.project.project_store import ProjectStore

    return ProjectStore.open()


def _engine(ctx):
    from refstore.sync.engine import SyncEngine

    return SyncEngine(_project(), _repository(ctx))


def _print_sync_report(report) -> None:
    for result in report.results:
        if result.action == "synced":
            console.print(f"  [green]synced[/] {escape(result.summary())}")
        else:
            console.print(f"  [dim]up to date[/] {escape(result.name)}")
    console.print(f"\n{report.summary()}")


# ── Project ──────────────────────────────────────────────────────────


@main.command()
@click.argument("path", default=".", type=click.Path(file_okay=False))
@click.option("--no-gitignore", is_flag=True, help="Commit .references/ instead of gitignoring it")
def init(path: str, no_gitignore: bool):
    """Initialize refstore in a project directory."""
    from refstore.project.project_store import ProjectStore

    project = ProjectStore.init(path, gitignore=not no_gitignore)
    console.print(f"[green]Initialized[/] {project.manifest_path}")


@main.command()
@click.argument("name")
@click.option("--bundle", "is_bundle", is_flag=True, help="Add a bundle instead of a single reference")
@click.option("--version", "pin", default=None, help="Pin to a tag or commit")
@click.option("--path", "-p", default=None, help="Destination within .references/")
@click.option("--include", multiple=True, help="Only sync files matching this glob")
@click.option("--exclude", multiple=True, help="Skip files matching this glob")
@click.option("--sync", "sync_now", is_flag=True, help="Sync right after adding")
@click.pass_context
def add(ctx, name: str, is_bundle: bool, pin: str | None, path: str | None,
        include: tuple, exclude: tuple, sync_now: bool):
    """Add a reference or bundle to the project manifest."""
    from refstore.project.manifest import BundleEntry, ManifestEntry
    from refstore.sync.engine import SyncEngine

    repo = _repository(ctx)
    project = _project()

    if is_bundle:
        repo.resolve_bundle(name)
        project.add_bundle(
            name,
            BundleEntry(name=name, path=path, version=pin, include=list(include), exclude=list(exclude)),
        )
        console.print(f"Added bundle '{escape(name)}' to the project manifest.")
    else:
        repo.resolve_reference(name)
        project.add_reference(
            name,
            ManifestEntry(path=path, version=pin, include=list(include), exclude=list(exclude)),
        )
        console.print(f"Added '{escape(name)}' to the project manifest.")

    if sync_now:
        _print_sync_report(SyncEngine(project, repo).sync(name))
    else:
        console.print("Run [bold]refstore sync[/] to fetch the content.")


@main.command()
@click.argument("name")
@click.option("--purge", is_flag=True, help="Also delete the synced content from .references/")
@click.pass_context
def remove(ctx, name: str, purge: bool):
    """Remove a reference or bundle from the project manifest."""
    engine = _engine(ctx)
    engine.remove(name, purge=purge)
    console.print(f"Removed '{escape(name)}' from the project manifest.")
    if purge:
        console.print("Purged its content from .references/")


@main.command()
@click.argument("name", required=False)
@click.option("--force", "-f", is_flag=True, help="Rewrite files even when up to date")
@click.pass_context
def sync(ctx, name: str | None, force: bool):
    """Sync .references/ from the manifest."""
    report = _engine(ctx).sync(name, force=force)
    if not report.results:
        console.print("[yellow]Nothing to sync.[/]")
        return
    _print_sync_report(report)


@main.command()
@click.pass_context
def status(ctx):
    """Show the sync status of every manifest entry."""
    engine = _engine(ctx)
    statuses = engine.status()
    orphans = engine.orphans()

    if not statuses and not orphans:
        console.print("[yellow]No references in the manifest.[/]")
        return

    colors = {"in-sync": "green", "stale": "yellow", "missing": "yellow", "unresolved": "red"}
    table = Table(title=f"Status ({len(statuses)} entries)")
    table.add_column("Name", style="cyan")
    table.add_column("State")
    table.add_column("Registry")
    table.add_column("Pin")
    table.add_column("Detail")
    for s in statuses:
        color = colors[s.state.value]
        table.add_row(
            s.name,
            f"[{color}]{s.state.value}[/]",
            s.registry or "",
            s.pin or "",
            escape(s.detail),
        )
    console.print(table)

    for orphan in orphans:
        console.print(f"  [yellow]orphan[/] .references/{escape(orphan)} (not in manifest)")


# ── Browse ───────────────────────────────────────────────────────────


@main.command(name="list")
@click.option("--tag", "-t", default=None, help="Filter by tag")
@click.option("--kind", "-k", default=None, type=click.Choice(["file", "directory", "git_repo"]))
@click.pass_context
def list_references(ctx, tag: str | None, kind: str | None):
    """List references across all registries."""
    listed = _repository(ctx).list(tag=tag, kind=kind)
    if not listed:
        console.print("[yellow]No references found.[/]")
        return

    table = Table(title=f"References ({len(listed)})")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Registry")
    table.add_column("Tags")
    table.add_column("Description")
    for item in listed:
        ref = item.reference
        table.add_row(ref.name, ref.kind.value, item.registry, ", ".join(ref.tags), ref.description[:50])
    console.print(table)


@main.command()
@click.argument("query")
@click.option("--ref", "scope", default=None, help="Limit the search to one reference")
@click.option("--limit", "-n", default=None, type=int, help="Maximum number of hits")
@click.pass_context
def search(ctx, query: str, scope: str | None, limit: int | None):
    """Search reference metadata and content (case-insensitive)."""
    hits = _repository(ctx).search(query, scope=scope, limit=limit)
    if not hits:
        console.print("[yellow]No matches.[/]")
        return
    for hit in hits:
        console.print(f"  {escape(hit.format())}", highlight=False)


@main.command()
@click.argument("name")
@click.pass_context
def info(ctx, name: str):
    """Show details of a reference or bundle."""
    resolved = _repository(ctx).resolve(name)

    if resolved.is_bundle:
        bundle = resolved.bundle
        lines = [
            f"[bold]Bundle:[/] {escape(bundle.name)}",
            f"[bold]Registry:[/] {resolved.registry}",
            f"[bold]Description:[/] {escape(bundle.description)}",
            f"[bold]Tags:[/] {', '.join(bundle.tags)}",
            f"[bold]Created:[/] {bundle.created_at.isoformat()}",
            f"[bold]References:[/] {', '.join(bundle.references)}",
        ]
    else:
        ref = resolved.reference
        lines = [
            f"[bold]Reference:[/] {escape(ref.name)}",
            f"[bold]Registry:[/] {resolved.registry}",
            f"[bold]Kind:[/] {ref.kind.value}",
            f"[bold]Source:[/] {escape(str(ref.source))}",
            f"[bold]Description:[/] {escape(ref.description)}",
            f"[bold]Tags:[/] {', '.join(ref.tags)}",
            f"[bold]Added:[/] {ref.added_at.isoformat()}",
        ]
        if ref.updated_at:
            lines.append(f"[bold]Updated:[/] {ref.updated_at.isoformat()}")
        if ref.checksum:
            lines.append(f"[bold]Upstream commit:[/] {ref.checksum[:12]}")
    console.print(Panel("\n".join(lines), title=name))


@main.command()
@click.argument("name")
@click.pass_context
def versions(ctx, name: str):
    """Show the version history of a reference."""
    entries = _repository(ctx).history(name)
    if not entries:
        console.print(f"[yellow]No history for '{escape(name)}'.[/]")
        return

    table = Table(title=f"History of {name}")
    table.add_column("Commit", style="cyan")
    table.add_column("Date")
    table.add_column("Message")
    for entry in entries:
        table.add_row(entry.short, entry.timestamp.strftime("%Y-%m-%d %H:%M"), escape(entry.message))
    console.print(table)


# ── Repository ───────────────────────────────────────────────────────


@main.group()
def repo():
    """Manage references in the local registry."""


@repo.command(name="add")
@click.argument("name")
@click.argument("source")
@click.option("--description", "-d", default="", help="Short description")
@click.option("--tag", "-t", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--ref", "git_ref", default=None, help="Branch or tag for git sources")
@click.option("--subpath", default=None, help="Directory inside a git repository")
@click.pass_context
def repo_add(ctx, name: str, source: str, description: str, tags: tuple, git_ref: str | None, subpath: str | None):
    """Add a reference from a file, directory or git URL."""
    ref = _repository(ctx).add(
        name, source, description=description, tags=list(tags), git_ref=git_ref, subpath=subpath
    )
    console.print(f"[green]Added[/] '{escape(ref.name)}' ({ref.kind.value}) from {escape(str(ref.source))}")


@repo.command(name="remove")
@click.argument("name")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
@click.option("--prune-bundles", is_flag=True, help="Also drop the name from bundles that list it")
@click.pass_context
def repo_remove(ctx, name: str, force: bool, prune_bundles: bool):
    """Remove a reference and its cached content."""
    repository = _repository(ctx)
    if not force:
        ref = repository.resolve_reference(name).reference
        if not click.confirm(f"Remove '{name}' ({ref.source}) from the local registry?", default=False):
            console.print("Cancelled.")
            return
    repository.remove(name, force=True, prune_bundles=prune_bundles)
    console.print(f"Removed '{escape(name)}' from the local registry.")


@repo.command(name="update")
@click.argument("name", required=False)
@click.pass_context
def repo_update(ctx, name: str | None):
    """Re-fetch one reference, or all of them, from their sources."""
    repository = _repository(ctx)
    if name:
        repository.update(name)
        console.print(f"[green]Updated[/] '{escape(name)}'")
        return

    outcomes = repository.update_all()
    if not outcomes:
        console.print("[yellow]No references to update.[/]")
        return
    failed = 0
    for ref_name, error in outcomes.items():
        if error is None:
            console.print(f"  [green]v[/] {escape(ref_name)}")
        else:
            failed += 1
            console.print(f"  [red]x[/] {escape(ref_name)}: {escape(str(error))}")
    if failed:
        raise SystemExit(1)


@repo.command(name="tag")
@click.argument("tag_name")
@click.option("--message", "-m", default=None, help="Annotated tag message")
@click.pass_context
def repo_tag(ctx, tag_name: str, message: str | None):
    """Tag the current state of the local registry."""
    _repository(ctx).tag(tag_name, message)
    console.print(f"[green]Tagged[/] {escape(tag_name)}")


@repo.command(name="tags")
@click.pass_context
def repo_tags(ctx):
    """List tags of the local registry, newest first."""
    tags = _repository(ctx).tags()
    if not tags:
        console.print("[yellow]No tags.[/]")
        return
    for t in tags:
        console.print(f"  {escape(t)}")


@repo.command(name="push")
@click.argument("name")
@click.argument("target", type=click.Path(file_okay=False))
@click.option("--overwrite", is_flag=True, help="Replace the reference if the target has it")
@click.pass_context
def repo_push(ctx, name: str, target: str, overwrite: bool):
    """Copy a reference into another registry directory."""
    _repository(ctx).push(name, target, overwrite=overwrite)
    console.print(f"[green]Pushed[/] '{escape(name)}' to {escape(target)}")


# ── Bundles ──────────────────────────────────────────────────────────


@main.group()
def bundle():
    """Manage bundles (named groups of references)."""


@bundle.command(name="create")
@click.argument("name")
@click.argument("references", nargs=-1, required=True)
@click.option("--description", "-d", default="", help="Short description")
@click.option("--tag", "-t", "tags", multiple=True, help="Tag (repeatable)")
@click.pass_context
def bundle_create(ctx, name: str, references: tuple, description: str, tags: tuple):
    """Create a bundle from reference names."""
    created = _repository(ctx).bundle_create(name, list(references), description, list(tags))
    console.print(f"[green]Created[/] bundle '{escape(created.name)}' ({len(created.references)} references)")


@bundle.command(name="update")
@click.argument("name")
@click.option("--add", "add_refs", multiple=True, help="Reference to add (repeatable)")
@click.option("--remove", "remove_refs", multiple=True, help="Reference to remove (repeatable)")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--tag", "-t", "tags", multiple=True, help="Replace tags (repeatable)")
@click.pass_context
def bundle_update(ctx, name: str, add_refs: tuple, remove_refs: tuple, description: str | None, tags: tuple):
    """Change a bundle's members, description or tags."""
    updated = _repository(ctx).bundle_update(
        name,
        add=list(add_refs),
        remove=list(remove_refs),
        description=description,
        tags=list(tags) if tags else None,
    )
    console.print(f"[green]Updated[/] bundle '{escape(updated.name)}': {', '.join(updated.references)}")


@bundle.command(name="remove")
@click.argument("name")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
@click.pass_context
def bundle_remove(ctx, name: str, force: bool):
    """Remove a bundle (its references stay)."""
    repository = _repository(ctx)
    if not force:
        found = repository.resolve_bundle(name).bundle
        if not click.confirm(f"Remove bundle '{name}' ({len(found.references)} refs)?", default=False):
            console.print("Cancelled.")
            return
    repository.bundle_remove(name)
    console.print(f"Removed bundle '{escape(name)}'.")


@bundle.command(name="list")
@click.option("--tag", "-t", default=None, help="Filter by tag")
@click.pass_context
def bundle_list(ctx, tag: str | None):
    """List bundles across all registries."""
    listed = _repository(ctx).bundle_list(tag)
    if not listed:
        console.print("[yellow]No bundles found.[/]")
        return

    table = Table(title=f"Bundles ({len(listed)})")
    table.add_column("Name", style="cyan")
    table.add_column("Registry")
    table.add_column("References")
    table.add_column("Description")
    for item in listed:
        b = item.bundle
        table.add_row(b.name, item.registry, ", ".join(b.references), b.description[:50])
    console.print(table)


@bundle.command(name="info")
@click.argument("name")
@click.pass_context
def bundle_info(ctx, name: str):
    """Show a bundle and whether its members resolve."""
    repository = _repository(ctx)
    resolved = repository.bundle_info(name)
    found = resolved.bundle
    console.print(f"[bold]{escape(found.name)}[/] ({resolved.registry}) {escape(found.description)}")
    for member in found.references:
        mark = "[green]v[/]" if repository.get(member) is not None else "[red]x (missing)[/]"
        console.print(f"  {mark} {escape(member)}")


# ── Registries ───────────────────────────────────────────────────────


@main.group()
def registry():
    """Manage remote registries."""


@registry.command(name="add")
@click.argument("name")
@click.argument("url")
@click.pass_context
def registry_add(ctx, name: str, url: str):
    """Add a remote registry (as a git submodule)."""
    store = _repository(ctx).registry_add(name, url)
    console.print(f"[green]Added[/] registry '{escape(store.name)}' ({len(store.list())} references)")


@registry.command(name="remove")
@click.argument("name")
@click.option("--force", "-f", is_flag=True, help="Discard local changes in the checkout")
@click.pass_context
def registry_remove(ctx, name: str, force: bool):
    """Remove a remote registry."""
    _repository(ctx).registry_remove(name, force=force)
    console.print(f"Removed registry '{escape(name)}'.")


@registry.command(name="update")
@click.argument("name", required=False)
@click.pass_context
def registry_update(ctx, name: str | None):
    """Pull the latest content of one or all remote registries."""
    _repository(ctx).registry_update(name)
    console.print(f"[green]Updated[/] {escape(name) if name else 'all registries'}")


@registry.command(name="list")
@click.pass_context
def registry_list(ctx):
    """List the local registry and loaded remote registries."""
    repository = _repository(ctx)
    urls = {r.name: r.url for r in repository.config.registries}

    table = Table(title="Registries")
    table.add_column("Name", style="cyan")
    table.add_column("References", justify="right")
    table.add_column("Bundles", justify="right")
    table.add_column("URL")
    for store in repository.stores():
        table.add_row(
            store.name,
            str(len(store.list())),
            str(len(store.list_bundles())),
            "(local)" if store.writable else urls.get(store.name, ""),
        )
    console.print(table)


@registry.command(name="init")
@click.argument("path", type=click.Path(file_okay=False))
@click.pass_context
def registry_init(ctx, path: str):
    """Scaffold a standalone registry that can be published and added remotely."""
    from refstore.registry.registry_store import RegistryStore

    RegistryStore.init_new(path)
    console.print(f"[green]Initialized[/] registry at {escape(path)}")


# ── Config ───────────────────────────────────────────────────────────


@main.group()
def config():
    """Show and change global configuration."""


@config.command(name="show")
@click.pass_context
def config_show(ctx):
    """Print all settings."""
    cfg = _repository(ctx).config
    for key in ("mcp_scope", "git_depth", "default_branch"):
        console.print(f"{key} = {escape(cfg.get_value(key))}")
    for r in cfg.registries:
        console.print(f"registry {escape(r.name)} = {escape(r.url)}")


@config.command(name="get")
@click.argument("key")
@click.pass_context
def config_get(ctx, key: str):
    """Print one setting."""
    console.print(escape(_repository(ctx).config.get_value(key)))


@config.command(name="set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key: str, value: str):
    """Change one setting."""
    repository = _repository(ctx)
    repository.config.set_value(key, value)
    repository.save_config()
    console.print(f"{key} = {escape(repository.config.get_value(key))}")


if __name__ == "__main__":
    main()
