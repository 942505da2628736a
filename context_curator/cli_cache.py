"""Cache maintenance and search-history commands."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from . import config
from .cache import EmbeddingCache
from .config_manager import load_cache_config
from .storage import SQLiteKVStore

console = Console()

cache_app = typer.Typer(help="🗄️  Embedding cache and search history", no_args_is_help=True)


def open_cache() -> EmbeddingCache:
    """Open the persisted cache with the configured TTL."""
    cache_cfg = load_cache_config()
    return EmbeddingCache(SQLiteKVStore(config.CACHE_DB), ttl_days=float(cache_cfg["ttl_days"]))


def project_name_from_path(project_path: Path) -> str:
    return project_path.resolve().name.replace(" ", "_")


@cache_app.command("stats")
def stats():
    """Show how many records each cache table holds."""
    cache = open_cache()
    counts = cache.stats()
    cache.store.close()

    table = Table(title="Cache", show_header=True, header_style="bold cyan")
    table.add_column("Table")
    table.add_column("Records", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)
    console.print(f"[dim]{config.CACHE_DB}[/dim]")


@cache_app.command("sweep")
def sweep():
    """Evict records older than the configured TTL."""
    cache = open_cache()
    removed = cache.sweep_expired()
    cache.store.close()
    console.print(f"[green]✓[/green] Removed {removed} expired record(s).")


@cache_app.command("clear")
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
):
    """Delete every cached embedding and saved search."""
    if not yes and not typer.confirm("Delete all cached embeddings and search history?"):
        raise typer.Exit(code=1)
    cache = open_cache()
    cleared = cache.clear()
    cache.store.close()
    if not cleared:
        console.print("[red]Could not clear the cache; see the log for details.[/red]")
        raise typer.Exit(code=1)
    console.print("[green]✓[/green] Cache cleared.")


@cache_app.command("history")
def history(
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project name (defaults to the current directory)."),
):
    """List saved searches for a project, newest first."""
    project_name = project or project_name_from_path(Path.cwd())
    cache = open_cache()
    records = cache.get_search_results_by_project(project_name)
    cache.store.close()

    if not records:
        console.print(f"No saved searches for project '{project_name}'.")
        return

    table = Table(title=f"Searches in {project_name}", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Keyword")
    table.add_column("Results", justify="right")
    table.add_column("Top file")
    table.add_column("When")
    for record in records:
        results = record.get("results", [])
        top = results[0]["file"] if results else "-"
        when = datetime.fromtimestamp(record.get("timestamp", 0)).strftime("%Y-%m-%d %H:%M")
        table.add_row(record["id"], record["keyword"], str(len(results)), top, when)
    console.print(table)


@cache_app.command("forget")
def forget(
    search_id: str = typer.Argument(..., help="ID shown by 'ccur cache history'."),
):
    """Delete one saved search."""
    cache = open_cache()
    deleted = cache.delete_search_results(search_id)
    cache.store.close()
    if not deleted:
        console.print(f"[red]No saved search with id '{search_id}'.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Deleted {search_id}.")
