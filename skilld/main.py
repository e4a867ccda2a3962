"""
skilld CLI - sync package documentation into agent skills.
"""

import asyncio
from pathlib import Path
from typing import List, Optional

import typer

from skilld.cache.paths import get_package_db_path
from skilld.cache.store import CacheStore
from skilld.config.settings import Settings, load_settings
from skilld.core import debug as log
from skilld.core.errors import SkilldError, TransientFetchError
from skilld.core.lockfile import merge_locks, read_lock, recover_lock, remove_lock_entry, sync_lockfiles_to_dirs
from skilld.index.indexer import DocsIndexer
from skilld.pipeline.events import ProgressChannel
from skilld.pipeline.sync import SyncOptions, sync_many
from skilld.sources.http import HttpClient
from skilld.sources.local import read_local_dependencies
from skilld.sources.npm import NpmSource
from skilld.sources.resolver import Resolver
from skilld.ui.console import (
    attempts_table,
    console,
    create_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from skilld.ui.progress import LiveProgress

app = typer.Typer(
    name="skilld",
    help="skilld - version-aware package documentation for coding agents",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
cache_app = typer.Typer(help="Inspect and clean the reference cache", no_args_is_help=True)
lock_app = typer.Typer(help="Inspect the project lockfile", no_args_is_help=True)
app.add_typer(cache_app, name="cache")
app.add_typer(lock_app, name="lock")


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _skills_dir(settings: Settings, cwd: Path, skills_dir: Optional[str]) -> Path:
    return Path(skills_dir) if skills_dir else cwd / settings.sync.skills_dir


def _split_spec(spec: str):
    """``name@version`` into (name, version); scoped names keep their ``@``."""
    at = spec.rfind("@")
    if at > 0:
        return spec[:at], spec[at + 1:]
    return spec, None


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.yaml (default: $SKILLD_HOME/config.yaml)",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        "-d",
        help="Enable verbose debug logging",
    ),
) -> None:
    """Global options."""
    if debug:
        log.enable_debug()
        console.print(f"[yellow]Debug mode enabled - logging to {log.get_log_file()}[/yellow]\n")
    ctx.obj = {"settings": load_settings(config_path)}


@app.command()
def sync(
    ctx: typer.Context,
    packages: Optional[List[str]] = typer.Argument(
        None,
        help="Packages to sync (default: all dependencies in package.json)",
    ),
    cwd: str = typer.Option(".", "--cwd", help="Project directory"),
    skills_dir: Optional[str] = typer.Option(None, "--skills-dir", help="Where skills are written"),
    force: bool = typer.Option(False, "--force", "-f", help="Ignore cached docs and search index"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", help="Packages synced in parallel"),
) -> None:
    """Sync documentation for packages into skills."""
    settings = _settings(ctx)
    project = Path(cwd).resolve()

    names = list(packages or [])
    if not names:
        try:
            names = [dep.name for dep in asyncio.run(read_local_dependencies(project))]
        except FileNotFoundError as e:
            print_error(str(e))
            raise typer.Exit(1)
    if not names:
        print_info("No dependencies to sync")
        return

    options = SyncOptions(
        cwd=project,
        skills_dir=_skills_dir(settings, project, skills_dir),
        concurrency=concurrency or settings.sync.concurrency,
        force=force,
        features=settings.features,
        generator=settings.sync.generator,
        batch_size=settings.sync.batch_size,
    )
    channel = ProgressChannel(names)
    with LiveProgress(channel, console=console):
        summary = asyncio.run(sync_many(names, options, settings=settings, channel=channel))

    if summary.failures:
        for failure in summary.failures:
            print_error(failure.reason, title=failure.name)
        console.print(f"\n[yellow]{summary.describe()}[/yellow]")
        raise typer.Exit(1)
    print_success(summary.describe())


@app.command()
def resolve(
    ctx: typer.Context,
    package: str = typer.Argument(..., help="Package name"),
    cwd: str = typer.Option(".", "--cwd", help="Project directory"),
) -> None:
    """Show where a package's documentation would come from."""
    settings = _settings(ctx)

    async def run():
        async with HttpClient(timeout=settings.github.timeout, github_token=settings.github_token) as http:
            result = await Resolver(http).resolve(package, cwd=Path(cwd).resolve())
            suggestions = []
            if result.package is None:
                try:
                    suggestions = await NpmSource(http).search_packages(package)
                except TransientFetchError as e:
                    log.debug(f"Package search failed: {e}")
            return result, suggestions

    result, suggestions = asyncio.run(run())
    console.print(attempts_table(package, result.attempts))
    if result.package is None:
        names = [s["name"] for s in suggestions if s["name"] != package]
        if names:
            print_warning(", ".join(names), title="Did you mean")
        raise typer.Exit(1)

    pkg = result.package
    table = create_table(f"{pkg.name}@{pkg.version}", ["Field", "Value"])
    for label, value in (
        ("Repository", pkg.repo_url),
        ("Docs", pkg.docs_url),
        ("llms.txt", pkg.llms_url),
        ("Git docs", f"{pkg.git_docs_url} ({pkg.git_ref})" if pkg.git_docs_url else None),
        ("README", pkg.readme_url),
    ):
        if value:
            table.add_row(label, value)
    console.print(table)


@app.command()
def search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search query"),
    package: str = typer.Option(..., "--package", "-p", help="Package as name@version"),
    limit: int = typer.Option(5, "--limit", "-l", help="Number of results"),
) -> None:
    """Search a package's indexed documentation."""
    settings = _settings(ctx)
    name, version = _split_spec(package)
    if not version:
        print_error("--package must include a version (name@version)")
        raise typer.Exit(1)

    indexer = DocsIndexer(
        embedding_model=settings.index.embedding_model,
        ollama_base_url=settings.index.ollama_url,
        timeout=settings.index.timeout,
    )
    try:
        db_path = get_package_db_path(settings.cache_root, name, version)
        hits = asyncio.run(indexer.search(query, db_path, limit))
    except SkilldError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not hits:
        console.print("[yellow]No results[/yellow]")
        return

    for hit in hits:
        console.print(f"[bold cyan]{hit.source}[/bold cyan] [dim]({hit.score:.2f})[/dim]")
        console.print(hit.content[:400])
        console.print()


@cache_app.command("list")
def cache_list(ctx: typer.Context) -> None:
    """List cached packages."""
    store = CacheStore(_settings(ctx).cache_root)
    packages = store.list_cached()
    if not packages:
        console.print("[yellow]Cache is empty[/yellow]")
        return

    table = create_table("Cached packages", ["Package", "Version", "Path"])
    for pkg in packages:
        table.add_row(pkg.name, pkg.version, str(pkg.dir))
    console.print(table)


@cache_app.command("clean")
def cache_clean(
    ctx: typer.Context,
    package: Optional[str] = typer.Argument(None, help="Package as name@version (default: everything)"),
) -> None:
    """Remove cached references."""
    store = CacheStore(_settings(ctx).cache_root)
    if package is None:
        removed = store.clear_all()
        print_success(f"Removed {removed} cached packages")
        return

    name, version = _split_spec(package)
    if not version:
        print_error("Package must include a version (name@version)")
        raise typer.Exit(1)
    try:
        removed = store.clear(name, version)
    except SkilldError as e:
        print_error(str(e))
        raise typer.Exit(1)
    if removed:
        print_success(f"Removed {name}@{version}")
    else:
        console.print(f"[yellow]{name}@{version} is not cached[/yellow]")


@lock_app.command("show")
def lock_show(
    ctx: typer.Context,
    cwd: str = typer.Option(".", "--cwd", help="Project directory"),
    skills_dir: Optional[str] = typer.Option(None, "--skills-dir", help="Where skills are written"),
) -> None:
    """Show skills recorded in the lockfile."""
    target = _skills_dir(_settings(ctx), Path(cwd).resolve(), skills_dir)
    lock = read_lock(target)
    if lock is None or not lock.skills:
        console.print(f"[yellow]No lockfile in {target}[/yellow]")
        return

    table = create_table("Skills", ["Skill", "Package", "Version", "Source", "Synced"])
    for name, info in sorted(lock.skills.items()):
        table.add_row(
            name,
            info.packages or info.package_name or "",
            info.version or "",
            info.source or "",
            info.synced_at or "",
        )
    console.print(table)


@lock_app.command("remove")
def lock_remove(
    ctx: typer.Context,
    skill: str = typer.Argument(..., help="Skill name"),
    cwd: str = typer.Option(".", "--cwd", help="Project directory"),
    skills_dir: Optional[str] = typer.Option(None, "--skills-dir", help="Where skills are written"),
) -> None:
    """Remove a skill from the lockfile."""
    target = _skills_dir(_settings(ctx), Path(cwd).resolve(), skills_dir)
    if remove_lock_entry(target, skill):
        print_success(f"Removed {skill} from lockfile")
    else:
        print_error(f"{skill} is not in the lockfile")
        raise typer.Exit(1)


@lock_app.command("sync")
def lock_sync(
    skills_dirs: List[str] = typer.Argument(..., help="Skills directories to reconcile"),
) -> None:
    """Merge the lockfiles of several skills directories and write the result to each."""
    dirs = [Path(d).resolve() for d in skills_dirs]
    merged = merge_locks(recover_lock(d) for d in dirs)
    if not merged.skills:
        console.print("[yellow]No skills found[/yellow]")
        return

    written = sync_lockfiles_to_dirs(merged, dirs)
    print_success(f"Wrote {len(merged.skills)} skills to {len(written)} lockfiles")


if __name__ == "__main__":
    app()
