"""Command line interface for modfinder."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from modfinder.bootstrap import open_store, start
from modfinder.config import AppConfig
from modfinder.errors import ErrorKind, ModfinderError
from modfinder.etl.exclusions import ExclusionRegistry, ProxyRemovedSet, populate_excluded
from modfinder.index.indexer import DocumentIndexer
from modfinder.index.search import Searcher
from modfinder.models import Version

console = Console()
app = typer.Typer(help="modfinder - index and search module metadata")

LOGGER = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _config(db: Optional[Path]) -> AppConfig:
    try:
        config = AppConfig.from_env()
    except ModfinderError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    if db is not None:
        config.db_path = db
    return config


def _load_versions(path: Path) -> List[Version]:
    data = json.loads(path.read_text(encoding="utf-8"))
    items = data if isinstance(data, list) else [data]
    return [Version.from_dict(item) for item in items]


@app.command()
def index(
    inputs: List[Path] = typer.Argument(..., help="JSON files describing module versions.", exists=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    proxy_removed: Path = typer.Option(None, "--proxy-removed", help="File of module@version lines to skip"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Store and index module versions read from JSON files."""
    _setup_logging(verbose)
    config = _config(db)
    store = open_store(config.resolve_db_path(Path.cwd()))
    registry = ExclusionRegistry(store, ProxyRemovedSet.load(proxy_removed or config.proxy_removed_path))
    indexer = DocumentIndexer(store)

    indexed = skipped = failed = 0
    try:
        for path in inputs:
            try:
                versions = _load_versions(path)
            except (OSError, json.JSONDecodeError, ModfinderError) as exc:
                LOGGER.error("Failed to read %s: %s", path, exc)
                failed += 1
                continue
            for version in versions:
                if registry.is_excluded(version.module_path, version.version):
                    skipped += 1
                    continue
                try:
                    store.insert_version(version)
                    indexer.insert_documents(version)
                    indexed += 1
                except ModfinderError as exc:
                    LOGGER.error("Failed to index %s@%s: %s", version.module_path, version.version, exc)
                    failed += 1
    finally:
        store.close()
    console.print(f"Indexed: {indexed}, excluded: {skipped}, failed: {failed}")


@app.command()
def search(
    terms: List[str] = typer.Argument(..., help="Search terms"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    limit: int = typer.Option(10, help="Number of results to display"),
    offset: int = typer.Option(0, help="Number of results to skip"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a ranked search."""
    _setup_logging(verbose)
    resolved_db = _config(db).resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    store = open_store(resolved_db)
    try:
        results, total = Searcher(store).search_page(terms, limit, offset)
    except ModfinderError as exc:
        if exc.kind is ErrorKind.INVALID_ARGUMENT:
            raise typer.BadParameter(exc.message) from exc
        raise
    finally:
        store.close()

    if not results:
        if total:
            console.print(f"[yellow]No results on this page; {total} matching packages.[/yellow]")
        else:
            console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Rank")
    table.add_column("Package")
    table.add_column("Version")
    table.add_column("Imported by")
    table.add_column("Synopsis")

    for result in results:
        table.add_row(
            f"{result.rank:.4f}",
            result.package.path,
            result.version_info.version,
            str(result.num_imported_by),
            result.package.synopsis[:120],
        )

    console.print(table)
    console.print(f"{total} matching packages")


@app.command()
def exclude(
    prefix: str = typer.Argument(..., help="Module path prefix to exclude"),
    reason: str = typer.Option(..., "--reason", help="Why the prefix is excluded"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Permanently exclude a module path prefix."""
    config = _config(db)
    store = open_store(config.resolve_db_path(Path.cwd()))
    try:
        if store.is_excluded(prefix):
            console.print(f"[yellow]{prefix} is already excluded.[/yellow]")
            return
        store.insert_excluded_prefix(prefix, config.user, reason)
    finally:
        store.close()
    console.print(f"Excluded {prefix}.")


@app.command("seed-excluded")
def seed_excluded(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Record the built-in excluded prefixes that are not yet stored."""
    config = _config(db)
    store = open_store(config.resolve_db_path(Path.cwd()))
    try:
        added = populate_excluded(store, config.user)
    finally:
        store.close()
    console.print(f"Added {added} excluded prefixes.")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(int(os.environ.get("PORT", "8000")), help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Start the fetch and search server."""
    import uvicorn

    from modfinder.web.app import create_app

    _setup_logging(verbose)
    config = _config(db)
    try:
        services = start(config, base_dir=Path.cwd())
    except ModfinderError as exc:
        console.print(f"[red]Startup failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc

    console.print(
        f"Starting modfinder on http://{host}:{port} ({config.deployment_mode} queue, "
        f"database: {services.store.db_path})"
    )
    try:
        uvicorn.run(
            create_app(services.store, services.fetch_queue, services.handler),
            host=host,
            port=port,
            reload=False,
            log_level="info",
        )
    finally:
        services.close()
