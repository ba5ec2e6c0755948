"""Command-line interface for docfetch."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import structlog
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from docfetch import __version__
from docfetch.config import Config, find_config_file
from docfetch.container import DependencyContainer
from docfetch.crawler.content import generate_filename
from docfetch.errors import DocFetchError
from docfetch.observability import configure_logging

console = Console()
logger = structlog.get_logger(__name__)


def _load_config(ctx: click.Context) -> Config:
    config_path: Optional[Path] = ctx.obj.get("config_path") or find_config_file()
    config = Config.from_yaml(config_path) if config_path else Config()
    config.monitoring.log_level = ctx.obj.get("log_level") or config.monitoring.log_level
    return config


def _container(ctx: click.Context) -> DependencyContainer:
    config = _load_config(ctx)
    configure_logging(config.monitoring)
    return DependencyContainer(config_path=ctx.obj.get("config_path"), config=config)


def _stats_table(title: str, stats: Dict[str, Any]) -> Table:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    for key, value in stats.items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                table.add_row(f"{key}.{sub_key}", str(sub_value))
        else:
            table.add_row(key, str(value))
    return table


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file path")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: Optional[str]) -> None:
    """docfetch - Fetch documentation sites as consolidated Markdown."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None
    ctx.obj["log_level"] = log_level


@cli.command()
@click.argument("url")
@click.option("--output", "-o", type=click.Path(), help="Write the Markdown to this file")
@click.option("--no-cache", is_flag=True, help="Ignore cached content")
@click.pass_context
def scrape(ctx: click.Context, url: str, output: Optional[str], no_cache: bool) -> None:
    """Fetch a single page as Markdown."""

    async def run() -> None:
        async with _container(ctx).lifecycle() as container:
            fetcher = await container.get_fetcher()
            page = await fetcher.fetch_page(url, use_cache=not no_cache)

        if output:
            Path(output).write_text(page.markdown, encoding="utf-8")
            source = "cache" if page.cached else f"{page.attempts} attempt(s)"
            console.print(f"[green]Saved {len(page.markdown)} chars from {source} to {output}[/green]")
        else:
            click.echo(page.markdown)

    try:
        asyncio.run(run())
    except asyncio.TimeoutError:
        console.print(f"[red]Failed to fetch {url}: timed out[/red]")
        sys.exit(1)
    except DocFetchError as e:
        console.print(f"[red]Failed to fetch {url}: {e.message}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("url")
@click.option("--limit", default=None, type=int, help="Maximum number of pages")
@click.option("--depth", default=None, type=int, help="Maximum link depth from the start page")
@click.option("--concurrency", default=None, type=int, help="Pages fetched in parallel")
@click.option("--output", "-o", type=click.Path(), help="Output file (derived from the URL by default)")
@click.pass_context
def crawl(
    ctx: click.Context,
    url: str,
    limit: Optional[int],
    depth: Optional[int],
    concurrency: Optional[int],
    output: Optional[str],
) -> None:
    """Crawl a documentation site and consolidate it into one Markdown file."""

    async def run() -> None:
        async with _container(ctx).lifecycle() as container:
            fetcher = await container.get_fetcher()
            with console.status(f"[blue]Crawling {url}...[/blue]"):
                report = await fetcher.crawl(url, limit=limit, max_depth=depth, concurrency=concurrency)

        target = Path(output or generate_filename(url))
        target.write_text(report.to_markdown(), encoding="utf-8")

        console.print(
            Panel(
                f"Pages: {len(report.pages)} ({report.cached_pages} from cache)\n"
                f"Failed: {len(report.failures)}\n"
                f"Output: {target}",
                title="Crawl complete",
                border_style="green" if not report.failures else "yellow",
            )
        )
        for failed_url, error in report.failures.items():
            console.print(f"[yellow]  {failed_url}: {error}[/yellow]")

    asyncio.run(run())


@cli.command()
@click.option("--batch-size", default=10, help="Tasks to process in this run")
@click.option("--show-failed", is_flag=True, help="List tasks that exhausted their attempts")
@click.pass_context
def retry(ctx: click.Context, batch_size: int, show_failed: bool) -> None:
    """Process due tasks from the retry queue."""

    async def run() -> None:
        async with _container(ctx).lifecycle() as container:
            queue = container.get_retry_queue()
            if show_failed:
                table = Table(title="Failed retry tasks")
                table.add_column("URL", style="cyan")
                table.add_column("Attempts", style="magenta")
                table.add_column("Last error")
                for task in await queue.get_failed_tasks():
                    table.add_row(task.url, str(task.attempt), task.last_error or "")
                console.print(table)
                return

            fetcher = await container.get_fetcher()
            result = await fetcher.process_retry_queue(batch_size=batch_size)
            console.print(f"[green]Processed: {result['processed']}[/green]  [yellow]Failed: {result['failed']}[/yellow]")

    asyncio.run(run())


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def stats(ctx: click.Context, as_json: bool) -> None:
    """Show cache, circuit breaker and retry queue status."""

    async def run() -> None:
        async with _container(ctx).lifecycle() as container:
            report = {
                "cache": container.get_cache().get_stats(),
                "circuit": await container.get_circuit_breaker().get_status(),
                "retry_queue": await container.get_retry_queue().get_stats(),
                "durable_store": container.redis is not None,
            }

        if as_json:
            click.echo(json.dumps(report, indent=2, default=str))
            return
        console.print(_stats_table("Cache", report["cache"]))
        console.print(_stats_table("Circuit breaker", report["circuit"]))
        console.print(_stats_table("Retry queue", report["retry_queue"]))
        if not report["durable_store"]:
            console.print("[yellow]Durable store not configured, state is in-memory only[/yellow]")

    asyncio.run(run())


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Start the status API."""
    from docfetch.web.main import create_app

    container = _container(ctx)
    assert container.config is not None
    host = host or container.config.monitoring.web_host
    port = port or container.config.monitoring.web_port

    console.print(f"[green]Starting status API at http://{host}:{port}[/green]")
    uvicorn.run(create_app(container), host=host, port=port, log_level="info")


@cli.command(name="validate-config")
@click.pass_context
def validate_config(ctx: click.Context) -> None:
    """Validate the current configuration."""
    try:
        config = _load_config(ctx)
    except Exception as e:
        console.print(f"[red]Configuration invalid: {e}[/red]")
        sys.exit(1)
    console.print(
        Panel(
            json.dumps(config.model_dump(mode="json"), indent=2),
            title="Configuration",
            border_style="green",
        )
    )


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
