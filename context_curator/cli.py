"""Typer-based CLI for Context Curator."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__, config, config_manager
from .cli_cache import cache_app, open_cache, project_name_from_path
from .config_manager import EngineConfig
from .embeddings import EMBEDDING_MODELS, get_embedder
from .engine import NoFilesError, RelevanceEngine
from .models import QueryResult
from .project_files import collect_files

console = Console()

app = typer.Typer(
    help="🎯 Context Curator: rank the files that matter for a task.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
config_app = typer.Typer(help="⚙️  Show and edit configuration", no_args_is_help=True)

app.add_typer(cache_app, name="cache")
app.add_typer(config_app, name="config")

_CLASSIFICATION_STYLES = {
    "entry-point": "magenta",
    "core-logic": "cyan",
    "helper": "green",
    "config": "yellow",
    "unrelated": "dim",
    "unknown": "white",
}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"Context Curator v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline details to stderr."),
):
    """Context Curator: multi-signal relevance ranking for AI context."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@app.command("search")
def search(
    project_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Project root to analyze."),
    query: str = typer.Argument(..., help="What you are working on, in plain words."),
    entry_point: Optional[str] = typer.Option(None, "--entry-point", "-e", help="Path (relative to the project) of the entry-point file."),
    top: int = typer.Option(config.DEFAULT_MAX_RESULTS, "--top", "-n", min=1, help="Maximum number of files."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Embedding model key (overrides config)."),
    use_cache: bool = typer.Option(True, "--cache/--no-cache", help="Use the persisted embedding cache."),
    save: bool = typer.Option(True, "--save/--no-save", help="Save the result to search history."),
):
    """Rank project files by relevance to QUERY."""
    collected = collect_files(project_path)
    engine_cfg = config_manager.load_engine_config()
    engine_cfg.max_results = top

    cache = open_cache() if use_cache else None
    if cache is not None:
        cache.start_background_sweep(float(config_manager.load_cache_config()["sweep_interval"]))
    try:
        engine = RelevanceEngine(embedder=get_embedder(model), cache=cache, config=engine_cfg)
        if as_json:
            result = engine.search_sync(query, collected.files, entry_point)
        else:
            with console.status("Analyzing...") as status:
                engine.on_stage = lambda name, pct: status.update(f"[cyan]{name}[/cyan] {pct}%")
                result = engine.search_sync(query, collected.files, entry_point)
        if result is not None and cache is not None and save:
            cache.store_search_results(
                query,
                project_name_from_path(project_path),
                [r.to_dict() for r in result.files],
                entry_point,
            )
    except NoFilesError:
        console.print(f"[red]No supported source files found in {project_path}.[/red]")
        raise typer.Exit(code=1)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    finally:
        if cache is not None:
            cache.stop_background_sweep()
            cache.store.close()

    if result is None:
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return

    _print_results(result.files, query, len(collected.files))


def _print_results(results: List[QueryResult], query: str, total: int) -> None:
    table = Table(title=f'Results for "{query}" ({total} files analyzed)', show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("File")
    table.add_column("Score", justify="right")
    table.add_column("AST", justify="right")
    table.add_column("LLM", justify="right")
    table.add_column("Syntax", justify="right")
    table.add_column("Role")
    table.add_column("Flow")
    table.add_column("Functions")

    for rank, item in enumerate(results, start=1):
        style = _CLASSIFICATION_STYLES.get(item.classification, "white")
        star = " ★" if item.has_synergy else ""
        functions = ", ".join(fn.name for fn in item.relevant_functions[:3])
        table.add_row(
            str(rank),
            item.file,
            f"{item.score_percentage}%{star}",
            f"{item.ast_score:.2f}",
            f"{item.llm_score:.2f}",
            f"{item.syntax_score:.2f}",
            f"[{style}]{item.classification}[/{style}]",
            item.workflow_position,
            functions or "-",
        )
    console.print(table)
    if any(r.has_synergy for r in results):
        console.print("[dim]★ two or more signals agree[/dim]")


# ===================================================================
# config
# ===================================================================

@config_app.command("show")
def show_config():
    """Show the effective configuration."""
    engine = config_manager.load_engine_config()
    embeddings = config_manager.load_embedding_config()
    cache_cfg = config_manager.load_cache_config()

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Section")
    table.add_column("Key")
    table.add_column("Value")
    for key, value in engine.to_dict().items():
        table.add_row("engine", key, str(value))
    for key, value in embeddings.items():
        if key == "api_key" and value:
            value = value[:4] + "•" * min(len(value) - 4, 12)
        table.add_row("embeddings", key, str(value) if value else "[dim](not set)[/dim]")
    for key, value in cache_cfg.items():
        table.add_row("cache", key, str(value))
    console.print(table)
    console.print(f"[dim]{config.CONFIG_FILE}[/dim]")


@config_app.command("set-embedding")
def set_embedding(
    model: str = typer.Argument(..., help=f"One of: {', '.join(EMBEDDING_MODELS)}"),
    endpoint: str = typer.Option("", "--endpoint", help="Endpoint for HTTP providers."),
    api_key: str = typer.Option("", "--api-key", help="API key for hosted providers."),
    model_name: str = typer.Option("", "--model-name", help="Model served by an HTTP provider."),
):
    """Choose the embedding provider used for the semantic signal."""
    if model not in EMBEDDING_MODELS:
        raise typer.BadParameter(f"Unknown model '{model}'. Available: {', '.join(EMBEDDING_MODELS)}")
    if not config_manager.save_embedding_config(model, endpoint, api_key, model_name):
        console.print("[red]Could not write the config file.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Embedding model set to [bold]{model}[/bold]")


@config_app.command("set-engine")
def set_engine(
    key: str = typer.Argument(..., help="Engine setting, e.g. ast_weight or max_results."),
    value: float = typer.Argument(..., help="New value."),
):
    """Override one engine weight, threshold or limit."""
    current = config_manager.load_engine_config().to_dict()
    if key not in current:
        raise typer.BadParameter(f"Unknown setting '{key}'. Available: {', '.join(current)}")
    current[key] = value
    engine = EngineConfig.from_mapping(current)
    if not config_manager.save_engine_config(engine):
        console.print("[red]Could not write the config file.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] {key} = {getattr(engine, key)}")


if __name__ == "__main__":
    app()
