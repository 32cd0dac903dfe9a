"""Command line interface for NoteFinder."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from notefinder.config import DATA_DIR_NAME, SETTINGS_FILE, AppConfig
from notefinder.embedding.base import DEFAULT_MODELS
from notefinder.embedding.registry import available_providers
from notefinder.engine import NoteEngine
from notefinder.errors import NoteFinderError
from notefinder.index.indexer import IndexStats
from notefinder.models import SimilarNote
from notefinder.notify import ConsoleNotifier

console = Console()
app = typer.Typer(help="NoteFinder - semantic search and related notes for markdown vaults")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_config(
    vault: Path,
    settings: Optional[Path],
    provider: Optional[str],
    model: Optional[str],
    api_key: Optional[str],
    base_url: Optional[str],
) -> tuple[AppConfig, Path]:
    settings_path = settings or vault / DATA_DIR_NAME / SETTINGS_FILE
    config = AppConfig.load(settings_path)
    config.vault_path = vault

    changes = {}
    if provider is not None:
        if provider not in available_providers():
            raise typer.BadParameter(
                f"Unknown provider {provider!r}; choose from {', '.join(available_providers())}"
            )
        changes["provider"] = provider
        if model is None:
            changes["model_id"] = DEFAULT_MODELS[provider]
    if model is not None:
        changes["model_id"] = model
    if api_key is not None:
        changes["api_key"] = api_key
    if base_url is not None:
        changes["base_url"] = base_url
    if changes:
        config = config.with_provider(**changes)
    return config, settings_path


def _open_engine(
    vault: Path,
    settings: Optional[Path],
    provider: Optional[str],
    model: Optional[str],
    api_key: Optional[str],
    base_url: Optional[str],
    *,
    background: bool = False,
) -> NoteEngine:
    if not vault.is_dir():
        raise typer.BadParameter(f"Vault folder not found: {vault}")
    try:
        config, settings_path = _build_config(vault, settings, provider, model, api_key, base_url)
    except NoteFinderError as exc:
        console.print(f"[red]Invalid settings: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    engine = NoteEngine(config, notifier=ConsoleNotifier(console), settings_path=settings_path)
    try:
        result = engine.start(background=background)
    except NoteFinderError as exc:
        engine.close()
        console.print(f"[red]Could not start: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if result.used_fallback:
        console.print("[yellow]Hardware acceleration unavailable, running on CPU.[/yellow]")
    return engine


def _print_stats(stats: IndexStats) -> None:
    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, removed: {stats.removed}, "
        f"skipped: {stats.skipped}, failed: {stats.failed}"
    )


def _print_notes(results: List[SimilarNote], *, show_source: bool = False) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Note")
    table.add_column("Title")
    table.add_column("Snippet")
    if show_source:
        table.add_column("Matched")

    for result in results:
        row = [
            f"{result.score:.4f}",
            result.path,
            result.title,
            result.content.replace("\n", " ")[:180],
        ]
        if show_source:
            row.append(result.source_chunk.replace("\n", " ")[:80])
        table.add_row(*row)

    console.print(table)


VAULT_ARGUMENT = typer.Argument(..., help="Vault folder with markdown notes.", resolve_path=True)
SETTINGS_OPTION = typer.Option(None, "--settings", help="Settings JSON file")
PROVIDER_OPTION = typer.Option(None, "--provider", help="Embedding provider: local, ollama, openai, gemini")
MODEL_OPTION = typer.Option(None, "--model", help="Embedding model id")
API_KEY_OPTION = typer.Option(None, "--api-key", envvar="NOTEFINDER_API_KEY", help="API key for remote providers")
BASE_URL_OPTION = typer.Option(None, "--base-url", help="Override the provider endpoint")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Verbose logging")


@app.command()
def index(
    vault: Path = VAULT_ARGUMENT,
    settings: Optional[Path] = SETTINGS_OPTION,
    provider: Optional[str] = PROVIDER_OPTION,
    model: Optional[str] = MODEL_OPTION,
    api_key: Optional[str] = API_KEY_OPTION,
    base_url: Optional[str] = BASE_URL_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Index new and changed notes in a vault."""
    _setup_logging(verbose)
    with _open_engine(vault, settings, provider, model, api_key, base_url) as engine:
        pending = engine.queue.get_file_change_count()
        console.print(f"Indexing [bold]{vault}[/bold] ({pending} pending changes)...")
        stats = engine.index()
        _print_stats(stats)


@app.command()
def reindex(
    vault: Path = VAULT_ARGUMENT,
    settings: Optional[Path] = SETTINGS_OPTION,
    provider: Optional[str] = PROVIDER_OPTION,
    model: Optional[str] = MODEL_OPTION,
    api_key: Optional[str] = API_KEY_OPTION,
    base_url: Optional[str] = BASE_URL_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Re-embed every note in a vault."""
    _setup_logging(verbose)
    with _open_engine(vault, settings, provider, model, api_key, base_url) as engine:
        console.print(f"Re-indexing all notes in [bold]{vault}[/bold]...")
        stats = engine.reindex()
        _print_stats(stats)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True),
    top_k: int = typer.Option(10, help="Number of results to display"),
    settings: Optional[Path] = SETTINGS_OPTION,
    provider: Optional[str] = PROVIDER_OPTION,
    model: Optional[str] = MODEL_OPTION,
    api_key: Optional[str] = API_KEY_OPTION,
    base_url: Optional[str] = BASE_URL_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Execute a semantic search over indexed notes."""
    _setup_logging(verbose)
    with _open_engine(vault, settings, provider, model, api_key, base_url) as engine:
        results = engine.search(query, top_k=top_k)
        tokens = engine.query_tokens(query)
        if tokens.truncated:
            console.print(
                f"[yellow]Query is {tokens.count} tokens; only the first {tokens.limit} were used.[/yellow]"
            )
        if not results:
            console.print("[yellow]No matches found.[/yellow]")
            return
        _print_notes(results)


@app.command()
def similar(
    note: str = typer.Argument(..., help="Note path relative to the vault"),
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True),
    limit: int = typer.Option(5, help="Number of related notes"),
    settings: Optional[Path] = SETTINGS_OPTION,
    provider: Optional[str] = PROVIDER_OPTION,
    model: Optional[str] = MODEL_OPTION,
    api_key: Optional[str] = API_KEY_OPTION,
    base_url: Optional[str] = BASE_URL_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """List notes related to NOTE, skipping notes it already links to."""
    _setup_logging(verbose)
    with _open_engine(vault, settings, provider, model, api_key, base_url) as engine:
        try:
            results = engine.similar(note, limit=limit)
        except NoteFinderError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1) from exc
        if not results:
            console.print("[yellow]No related notes found.[/yellow]")
            return
        _print_notes(results, show_source=True)


@app.command()
def status(
    vault: Path = VAULT_ARGUMENT,
    settings: Optional[Path] = SETTINGS_OPTION,
    provider: Optional[str] = PROVIDER_OPTION,
    model: Optional[str] = MODEL_OPTION,
    api_key: Optional[str] = API_KEY_OPTION,
    base_url: Optional[str] = BASE_URL_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show model, index size and pending changes."""
    _setup_logging(verbose)
    with _open_engine(vault, settings, provider, model, api_key, base_url) as engine:
        table = Table(show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in engine.status().items():
            table.add_row(key, str(value))
        console.print(table)


@app.command()
def web(
    vault: Path = VAULT_ARGUMENT,
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    settings: Optional[Path] = SETTINGS_OPTION,
    provider: Optional[str] = PROVIDER_OPTION,
    model: Optional[str] = MODEL_OPTION,
    api_key: Optional[str] = API_KEY_OPTION,
    base_url: Optional[str] = BASE_URL_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Serve the search API while indexing in the background."""
    import uvicorn

    from notefinder.web.app import app as web_app

    _setup_logging(verbose)
    with _open_engine(
        vault, settings, provider, model, api_key, base_url, background=True
    ) as engine:
        web_app.state.engine = engine
        console.print(f"Starting web interface on http://{host}:{port} (vault: {vault})")
        try:
            uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")
        finally:
            web_app.state.engine = None
