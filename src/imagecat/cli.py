"""
IMAGECAT command line interface.

Usage:
    imagecat status
    imagecat build --steps 10
    imagecat set-last-page 278
    imagecat schedule --interval 60
    imagecat serve --port 8787 --with-scheduler
    imagecat search 'node*'
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click
import structlog
from rich.console import Console
from rich.table import Table

from . import __version__
from .core.config import CatalogSettings, load_settings
from .core.engine import CrawlEngine
from .core.errors import CatalogError
from .core.scheduler import Scheduler
from .core.store import FileSnapshotStore
from .crawler.fetcher import HttpPageFetcher


console = Console()


def configure_logging(level: str = "INFO", json_logs: bool = False):
    """Configure structlog once for the whole process"""
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def build_engine(settings: CatalogSettings):
    store = FileSnapshotStore(settings.snapshot_path, origin=settings.origin)
    fetcher = HttpPageFetcher.from_settings(settings)
    return CrawlEngine(store=store, fetcher=fetcher, settings=settings), fetcher


def run_engine(
    settings: CatalogSettings,
    action: Callable[[CrawlEngine], Awaitable[Any]],
    needs_network: bool = False,
) -> Any:
    """Run ``action`` against a fresh engine; catalog errors end the process with status 1"""
    engine, fetcher = build_engine(settings)

    async def _run():
        if not needs_network:
            return await action(engine)
        async with fetcher:
            return await action(engine)

    try:
        return asyncio.run(_run())
    except CatalogError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


def print_mapping(title: str, mapping: dict):
    table = Table(title=title)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    for key, value in mapping.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


def print_items(items, title: str):
    if not items:
        console.print("[dim]No items[/dim]")
        return
    table = Table(title=title)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("URL", style="green")
    for item in items:
        table.add_row(item.name, item.url)
    console.print(table)


@click.group()
@click.version_option(version=__version__, prog_name="IMAGECAT")
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='YAML settings file')
@click.option('--snapshot', 'snapshot_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Snapshot JSON file (overrides settings)')
@click.option('--log-level', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
@click.option('--json-logs/--console-logs', default=False, help='Render logs as JSON lines')
@click.pass_context
def cli(ctx, config_path: Optional[Path], snapshot_path: Optional[Path], log_level: str, json_logs: bool):
    """
    IMAGECAT - Incremental image directory catalog.

    Crawls the directory a few pages at a time and keeps a sorted,
    deduplicated snapshot of image slugs.
    """
    configure_logging(log_level, json_logs)
    try:
        ctx.obj = load_settings(config_path, snapshot_path=snapshot_path)
    except CatalogError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(2)


@cli.command()
@click.pass_obj
def status(settings: CatalogSettings):
    """Show crawl progress and snapshot size"""
    result = run_engine(settings, lambda engine: _sync(engine.status))
    print_mapping("Catalog Status", result)


@cli.command()
@click.option('--steps', default=None, type=int, help='Pages to fetch (default from settings, max 50)')
@click.pass_obj
def build(settings: CatalogSettings, steps: Optional[int]):
    """Run one crawl batch from the current cursor"""
    result = run_engine(settings, lambda engine: engine.run_batch(steps), needs_network=True)
    print_mapping("Batch Result", result.to_dict())
    if result.failed_pages:
        console.print(f"[yellow]Failed pages:[/yellow] {', '.join(map(str, result.failed_pages))}")


@cli.command()
@click.pass_obj
def tick(settings: CatalogSettings):
    """Run a single scheduler tick (counter, reset check, one batch)"""
    result = run_engine(settings, lambda engine: Scheduler(engine).tick(), needs_network=True)
    if result.reset:
        console.print("[bold cyan]Full-cycle reset performed[/bold cyan]")
    print_mapping("Tick Result", result.batch.to_dict() | {"cronTicks": result.ticks})


@cli.command()
@click.option('--interval', default=None, type=float, help='Seconds between ticks (default from settings)')
@click.option('--max-ticks', default=None, type=int, help='Stop after this many ticks')
@click.pass_obj
def schedule(settings: CatalogSettings, interval: Optional[float], max_ticks: Optional[int]):
    """Run the periodic scheduler in the foreground"""
    console.print(
        f"[green]Scheduler:[/green] every {interval or settings.tick_interval:.0f}s, "
        f"reset after {settings.reset_threshold} ticks"
    )
    run_engine(
        settings,
        lambda engine: Scheduler(engine).run_forever(interval, max_ticks),
        needs_network=True,
    )


@cli.command('set-last-page')
@click.argument('value')
@click.pass_obj
def set_last_page(settings: CatalogSettings, value: str):
    """Set the known last directory page"""
    result = run_engine(settings, lambda engine: engine.set_last_page(value))
    print_mapping("Last Page", result)


@cli.command('restart-crawl')
@click.pass_obj
def restart_crawl(settings: CatalogSettings):
    """Restart the walk from page 1, keeping known items"""
    result = run_engine(settings, lambda engine: engine.restart_crawl())
    print_mapping("Restart", result)


@cli.command()
@click.pass_obj
def repair(settings: CatalogSettings):
    """Revalidate every stored item and persist the result"""
    result = run_engine(settings, lambda engine: engine.repair())
    console.print(f"[green]Repaired:[/green] {result['total']} items kept")
    if result["repair"] and result["repair"]["dropped"]:
        print_mapping("Dropped by reason", result["repair"]["by_reason"])


@cli.command()
@click.pass_obj
def compact(settings: CatalogSettings):
    """Re-sort and rewrite the snapshot"""
    result = run_engine(settings, lambda engine: engine.compact())
    console.print(f"[green]Compacted:[/green] {result['total']} items")


@cli.command()
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_obj
def reset(settings: CatalogSettings, yes: bool):
    """Discard the snapshot and start over"""
    if not yes:
        click.confirm("This discards every discovered item. Continue?", abort=True)
    run_engine(settings, lambda engine: engine.reset())
    console.print("[bold yellow]Snapshot reset[/bold yellow]")


@cli.command('list')
@click.option('--page', default=1, type=int)
@click.option('--size', default=200, type=int)
@click.pass_obj
def list_items(settings: CatalogSettings, page: int, size: int):
    """List catalog items in alphabetical order"""
    items = run_engine(settings, lambda engine: _sync(engine.list_items, page, size))
    print_items(items, f"Images (page {page})")


@cli.command()
@click.argument('query')
@click.option('--page', default=1, type=int)
@click.option('--size', default=50, type=int)
@click.pass_obj
def search(settings: CatalogSettings, query: str, page: int, size: int):
    """Wildcard search: term, term*, *term, *term*"""
    items = run_engine(settings, lambda engine: _sync(engine.search, query, page, size))
    print_items(items, f"Search: {query}")


@cli.command()
@click.option('--host', default=None, help='Bind address (default from settings)')
@click.option('--port', default=None, type=int, help='Port (default from settings)')
@click.option('--with-scheduler/--no-scheduler', default=False, help='Tick in the background while serving')
@click.pass_obj
def serve(settings: CatalogSettings, host: Optional[str], port: Optional[int], with_scheduler: bool):
    """Serve the read and admin HTTP API"""
    from aiohttp import web

    from .api.server import create_app

    engine, fetcher = build_engine(settings)
    app = create_app(
        engine,
        admin_key=settings.admin_key,
        fetcher=fetcher,
        scheduler=Scheduler(engine) if with_scheduler else None,
    )
    web.run_app(app, host=host or settings.host, port=port or settings.port, print=console.print)


@cli.command()
def version():
    """Show version information"""
    console.print(f"\n[bold cyan]IMAGECAT v{__version__}[/bold cyan]")
    console.print("[cyan]Incremental image directory catalog[/cyan]\n")


async def _sync(func, *args):
    return func(*args)


if __name__ == '__main__':
    cli()
