"""CLI entry point for VaultSearch.

Commands:
    vaultsearch index          — Full index of the vault
    vaultsearch search QUERY   — Semantic search over indexed notes
    vaultsearch watch          — Watch the vault and re-index incrementally
    vaultsearch stats          — Show index statistics
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from vaultsearch import __version__

if TYPE_CHECKING:
    from vaultsearch.config import Settings
    from vaultsearch.indexer.store import IndexStore

console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    # Per-request HTTP logs drown out indexing progress
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def _open_store(settings: Settings) -> IndexStore:
    """Construct and initialize the store, exiting on configuration errors."""
    from vaultsearch.errors import ConfigurationError
    from vaultsearch.indexer import IndexStore

    store = IndexStore(settings)
    try:
        await store.initialize()
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)
    return store


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-c", "--config", type=click.Path(exists=True), help="Config file path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """VaultSearch — local semantic search for your notes."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None


@cli.command()
@click.pass_context
def index(ctx: click.Context) -> None:
    """Index every note in the vault."""
    from vaultsearch.config import load_settings
    from vaultsearch.vault import UpdateScheduler, VaultReader

    settings = load_settings(ctx.obj.get("config_path"))

    async def _run_index() -> int:
        store = await _open_store(settings)
        scheduler = UpdateScheduler(store, VaultReader(settings.vault), settings.updates)
        task = scheduler.rescan_vault_files()
        return await task if task is not None else 0

    with console.status(f"Indexing {settings.vault.path}..."):
        count = asyncio.run(_run_index())

    console.print(f"[green]✓[/green] Indexed {count} notes")
    console.print(f"  Snapshot: {settings.index.persist_path}")


@cli.command()
@click.argument("query")
@click.option("-n", "--limit", default=None, type=int, help="Maximum number of results")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int | None) -> None:
    """Search indexed notes by meaning."""
    from vaultsearch.config import load_settings

    settings = load_settings(ctx.obj.get("config_path"))

    async def _run_search() -> tuple[IndexStore, list]:
        store = await _open_store(settings)
        return store, await store.search_notes(query, max_results=limit)

    store, results = asyncio.run(_run_search())

    if not results:
        console.print("[yellow]No matching notes.[/yellow]")
        return

    table = Table(title=f"Results for {query!r}")
    table.add_column("#", justify="right")
    table.add_column("Note")
    table.add_column("Score", justify="right")
    table.add_column("Base", justify="right")
    table.add_column("Title", justify="right")
    table.add_column("Recency", justify="right")
    table.add_column("Excerpt")

    for rank, r in enumerate(results, start=1):
        chunk = store.vector_index.get_chunk(r.path, r.chunk_index)
        excerpt = " ".join(chunk.content.split())[:80] if chunk else ""
        table.add_row(
            str(rank),
            r.path,
            f"{r.score:.3f}",
            f"{r.base_score:.3f}",
            f"{r.title_score:.3f}",
            f"{r.recency_score:.3f}",
            excerpt,
        )
    console.print(table)


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Watch the vault for changes and incrementally re-index."""
    from vaultsearch.config import load_settings
    from vaultsearch.vault import UpdateScheduler, VaultReader, VaultWatcher

    settings = load_settings(ctx.obj.get("config_path"))
    updates = settings.updates

    async def _run_watch() -> None:
        store = await _open_store(settings)
        scheduler = UpdateScheduler(store, VaultReader(settings.vault), updates)
        watcher = VaultWatcher(
            settings.vault.path,
            settings.vault.excluded_folders,
            scheduler.handle_event,
            loop=asyncio.get_running_loop(),
        )

        if updates.mode == "onLoad":
            scheduler.rescan_vault_files()

        console.print(f"[green]✓[/green] Watching {settings.vault.path}")
        console.print(f"  Mode: {updates.mode}")
        console.print(f"  Debounce: {scheduler.debounce_seconds:.0f}s")
        console.print(f"  Check interval: {scheduler.check_interval_seconds:.0f}s")

        watcher.start()
        scheduler.start()
        try:
            while True:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            watcher.stop()
            await scheduler.aclose()

    try:
        asyncio.run(_run_watch())
    except KeyboardInterrupt:
        console.print("\n[yellow]Watcher stopped.[/yellow]")


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show index statistics."""
    from vaultsearch.config import load_settings
    from vaultsearch.indexer import IndexStore

    settings = load_settings(ctx.obj.get("config_path"))
    store = IndexStore(settings)
    loaded = asyncio.run(store.load_from_file())
    s = store.stats

    console.print("\n[bold]VaultSearch Statistics[/bold]\n")
    console.print(f"[bold]Vault:[/bold] {settings.vault.path}")
    console.print(f"  Indexed notes: {loaded}")
    console.print(f"  Chunks: {s['chunks']}")
    console.print(f"  Dimensions: {s['dimensions']}")
    console.print(f"  Provider: {settings.embedding.provider}")
    console.print(f"  Snapshot: {s['persist_path']}")


if __name__ == "__main__":
    cli()
