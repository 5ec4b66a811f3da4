#!/usr/bin/env python3
"""Source health check utility."""

import asyncio
import json
import sys
import time

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import PipelineConfig, Settings, get_pipeline_config, get_settings
from .ingest.extractor import ArticleExtractor
from .ingest.fetcher import Fetcher, FetchError
from .ingest.sources import PageFetcher, SourceHealthMonitor
from .logging import get_logger

logger = get_logger(__name__)
console = Console()


async def check_all_sources(
    settings: Settings | None = None,
    config: PipelineConfig | None = None,
    fetcher: PageFetcher | None = None,
    verbose: bool = False,
) -> dict:
    """Fetch every enabled source once and report how many candidates it yields."""
    settings = settings or get_settings()
    config = config or get_pipeline_config()
    health_monitor = SourceHealthMonitor(failure_threshold=1)
    extractor = ArticleExtractor(settings)

    console.print("\n[bold cyan]Checking all sources...[/bold cyan]\n")

    async def run(active: PageFetcher) -> None:
        for index, source in enumerate(config.enabled_sources()):
            if index > 0 and settings.delay_between_sources > 0:
                await asyncio.sleep(settings.delay_between_sources)

            console.print(f"Checking {source.name}... ", end="")
            start = time.time()
            try:
                html = await active.fetch(source)
                candidates = extractor.extract(html, source)
            except FetchError as e:
                console.print(f"[red]✗ {e.kind}: {e}[/red]")
                health_monitor.record_failure(source.name, str(e))
                continue
            except Exception as e:
                console.print(f"[red]✗ {e}[/red]")
                health_monitor.record_failure(source.name, str(e))
                continue

            response_time = time.time() - start
            if candidates:
                console.print(f"[green]✓[/green] ({len(candidates)} candidates, {response_time:.2f}s)")
                health_monitor.record_success(source.name, response_time, len(candidates))
                if verbose:
                    for candidate in candidates[:3]:
                        console.print(f"    [dim]{candidate.title}[/dim]")
            else:
                console.print("[yellow]⚠️  No articles[/yellow]")
                health_monitor.record_failure(source.name, "No articles found")

    if fetcher is not None:
        await run(fetcher)
    else:
        async with Fetcher(settings) as active:
            await run(active)

    return health_monitor.get_health_report()


def display_health_report(report: dict):
    """Display health report in a formatted table."""
    console.print("\n")

    summary = report['summary']
    summary_text = (
        f"[green]Healthy: {summary['healthy']}[/green] | "
        f"[yellow]Degraded: {summary['degraded']}[/yellow] | "
        f"[red]Unhealthy: {summary['unhealthy']}[/red] | "
        f"Total: {summary['total']}"
    )

    console.print(Panel(
        summary_text,
        title="[bold]Source Health Summary[/bold]",
        border_style="cyan"
    ))

    if not report['sources']:
        return

    table = Table(
        title="\nDetailed Source Status",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan"
    )

    table.add_column("Source Name", style="dim", overflow="fold")
    table.add_column("Status", justify="center")
    table.add_column("Response Time", justify="right")
    table.add_column("Candidates", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Last Error", overflow="fold")

    for name, status in report['sources'].items():
        status_color = {
            'healthy': 'green',
            'degraded': 'yellow',
            'unhealthy': 'red',
            'unknown': 'dim'
        }.get(status['status'], 'white')

        response_time = status.get('response_time') or 0
        entry_count = status.get('entry_count') or 0
        failures = status.get('consecutive_failures', 0)

        last_error = status.get('last_error') or '-'
        if len(last_error) > 50:
            last_error = last_error[:47] + "..."

        table.add_row(
            name,
            f"[{status_color}]{status['status'].upper()}[/{status_color}]",
            f"{response_time:.2f}s" if response_time > 0 else "-",
            str(entry_count) if entry_count > 0 else "-",
            f"[red]{failures}[/red]" if failures > 0 else "-",
            last_error,
        )

    console.print(table)


@click.command()
@click.option('--verbose', '-v', is_flag=True, help='Show verbose output')
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
def main(verbose: bool, output_json: bool):
    """Check health status of all configured sources."""
    try:
        report = asyncio.run(check_all_sources(verbose=verbose))

        if output_json:
            print(json.dumps(report, indent=2, default=str))
        else:
            display_health_report(report)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
