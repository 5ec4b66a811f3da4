"""Pipeline orchestration and command line interface."""

import asyncio
import logging
import sys
from collections.abc import Iterable
from datetime import date, datetime, timezone
from pathlib import Path

import click
import orjson
from pydantic import BaseModel, Field
from rich import box
from rich.console import Console
from rich.table import Table

from .config import PipelineConfig, Settings, get_pipeline_config, get_settings, validate_config
from .ingest.article_types import SEGMENTS, Article, RewrittenArticle, Segment
from .ingest.sources import PageFetcher, ScrapeReport, SourceScraper
from .logging import PerformanceLogger, get_logger, log_processing_stage, setup_logging
from .models.llm_client import LLMClient, LLMError, create_llm_client
from .processing.dedupe import ArticleDeduplicator
from .processing.scoring import ArticleRanker, assign_segment_tag
from .rewrite import ArticleRewriter
from .store import ArticleStore, SQLiteArticleStore

logger = get_logger(__name__)
console = Console()

NEWSLETTER_TITLES: dict[str, str] = {
    "pro": "COR Intel Weekly",
    "driver": "Safe Freight Mate",
}


class InsufficientContentError(Exception):
    """Too few articles survived selection to build an issue."""

    def __init__(self, available: int, required: int, segment: str):
        self.available = available
        self.required = required
        self.segment = segment
        super().__init__(
            f"Insufficient content for {segment} issue: "
            f"{available} articles available, {required} required"
        )


class IssueDraft(BaseModel):
    """A prepared but unsent newsletter issue."""
    issue_id: str
    segment: str
    subject: str
    items: list[RewrittenArticle]
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def article_ids(self) -> list[str]:
        return [item.id for item in self.items if item.id]


def make_issue_id(segment: str, today: date | None = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"{segment}-{today.isoformat()}"


def subject_line(segment: str, today: date | None = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"{NEWSLETTER_TITLES[segment]} - {today.day} {today:%B %Y}"


def create_store(settings: Settings, config: PipelineConfig | None = None) -> SQLiteArticleStore:
    return SQLiteArticleStore(settings.database_path, config)


def tag_segments(articles: Iterable[Article], config: PipelineConfig) -> list[Article]:
    """Return copies of untagged articles with a segment tag assigned."""
    return [
        a if a.segment_tag else a.model_copy(update={
            'segment_tag': assign_segment_tag(a.content, config.pro_terms, config.driver_terms),
        })
        for a in articles
    ]


async def collect_ranked_articles(
    settings: Settings | None = None,
    config: PipelineConfig | None = None,
    fetcher: PageFetcher | None = None,
) -> list[Article]:
    """Scrape every source and return a ranked, deduplicated, segment-tagged list."""
    settings = settings or get_settings()
    config = config or get_pipeline_config()

    report = await SourceScraper(settings, config, fetcher=fetcher).scrape_all()
    tagged = tag_segments(report.articles, config)
    return ArticleRanker.from_config(config).rank(tagged)


async def run_scrape(
    settings: Settings | None = None,
    config: PipelineConfig | None = None,
    store: ArticleStore | None = None,
    fetcher: PageFetcher | None = None,
) -> ScrapeReport:
    """Scrape sources, drop articles already archived, and save the rest.

    Args:
        settings: Application settings
        config: Pipeline configuration
        store: Archive to save into; defaults to the SQLite archive
        fetcher: Page fetcher; defaults to an aiohttp fetcher

    Returns:
        Scrape report with the saved articles attached
    """
    settings = settings or get_settings()
    config = config or get_pipeline_config()
    store = store or create_store(settings, config)

    with PerformanceLogger("scrape_pipeline", logger):
        scraper = SourceScraper(settings, config, fetcher=fetcher)
        report = await scraper.scrape_all()

        existing = await store.get_existing_hashes()
        recent = None
        if settings.fuzzy_archive_dedup:
            recent = await store.get_recent_articles(settings.lookback_days, include_used=True)

        fresh, duplicates = scraper.deduplicator.deduplicate_against_archive(
            report.articles, existing, recent
        )
        report.duplicates.extend(duplicates)
        report.saved = await store.save_articles(fresh)

    logger.info(**log_processing_stage(
        stage="save_articles",
        input_count=len(report.articles),
        output_count=len(report.saved),
        archive_duplicates=len(duplicates),
    ))
    return report


async def select_issue_articles(
    store: ArticleStore,
    segment: Segment,
    settings: Settings | None = None,
    config: PipelineConfig | None = None,
) -> list[Article]:
    """Pick the top unused articles for one segment.

    Raises:
        InsufficientContentError: If fewer than ``min_articles_per_issue`` remain
    """
    settings = settings or get_settings()
    config = config or get_pipeline_config()

    recent = await store.get_recent_articles(settings.lookback_days, segment)
    ranked = ArticleRanker.from_config(config).rank(recent)
    unique, _ = ArticleDeduplicator.from_config(config, settings).deduplicate(ranked)

    logger.info(**log_processing_stage(
        stage=f"select_{segment}",
        input_count=len(recent),
        output_count=len(unique),
    ))

    if len(unique) < settings.min_articles_per_issue:
        raise InsufficientContentError(len(unique), settings.min_articles_per_issue, segment)

    return unique[:settings.articles_per_issue]


async def prepare_issue(
    store: ArticleStore,
    segment: Segment,
    settings: Settings | None = None,
    config: PipelineConfig | None = None,
    llm_client: LLMClient | None = None,
    today: date | None = None,
) -> IssueDraft:
    """Select and rewrite articles for an issue without marking them used."""
    settings = settings or get_settings()
    config = config or get_pipeline_config()

    selected = await select_issue_articles(store, segment, settings, config)

    if llm_client is None:
        try:
            llm_client = create_llm_client(settings)
        except LLMError as e:
            logger.warning("LLM client unavailable, using fallback copy", error=str(e))

    items = await ArticleRewriter.from_config(llm_client, config).rewrite(selected, segment)
    return IssueDraft(
        issue_id=make_issue_id(segment, today),
        segment=segment,
        subject=subject_line(segment, today),
        items=items,
    )


async def confirm_issue_sent(store: ArticleStore, issue_id: str, article_ids: Iterable[str]) -> int:
    """Record that an issue was dispatched by stamping its articles."""
    ids = [i for i in article_ids if i]
    if not ids:
        logger.warning("No article ids to mark", issue_id=issue_id)
        return 0
    return await store.mark_articles_as_used(ids, issue_id)


def display_articles(articles: list[Article], limit: int = 20) -> None:
    table = Table(title="Ranked Articles", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Score", justify="right")
    table.add_column("Rel", justify="right")
    table.add_column("Category")
    table.add_column("Segment", justify="center")
    table.add_column("Title", overflow="fold")
    table.add_column("Source", style="dim")

    for index, article in enumerate(articles[:limit], start=1):
        score = article.composite_score
        table.add_row(
            str(index),
            f"{score:.1f}" if score is not None else "-",
            str(article.relevance_score),
            article.content_category or "-",
            article.segment_tag or "-",
            article.title,
            article.source,
        )
    console.print(table)


def display_scrape_report(report: ScrapeReport) -> None:
    summary = report.summary()
    console.print(
        f"[green]Saved: {summary['saved']}[/green] | "
        f"Unique: {summary['articles']} | "
        f"Rejected: {summary['rejected']} | "
        f"Duplicates: {summary['duplicates']} | "
        f"[red]Errors: {summary['errors']}[/red] | "
        f"{summary['duration']}s"
    )

    if report.errors:
        table = Table(title="Source Errors", box=box.SIMPLE, header_style="bold red")
        table.add_column("Source")
        table.add_column("Kind")
        table.add_column("Error", overflow="fold")
        for error in report.errors:
            table.add_row(error.source, error.kind, error.error)
        console.print(table)


def display_draft(draft: IssueDraft) -> None:
    console.print(f"\n[bold]{draft.subject}[/bold]  [dim]({draft.issue_id})[/dim]\n")
    for index, item in enumerate(draft.items, start=1):
        console.print(f"[bold cyan]{index}. [{item.category}] {item.title}[/bold cyan]")
        console.print(f"   {item.summary}")
        if item.tip:
            console.print(f"   [green]Tip:[/green] {item.tip}")
        console.print(f"   [dim]{item.source} - {item.url}[/dim]\n")


@click.group()
@click.option("--log-level", default="WARNING", help="Log level")
@click.option("--verbose", is_flag=True, help="Show detailed progress information")
@click.option("--mock", is_flag=True, help="Use the mock rewriting client")
@click.pass_context
def cli(ctx: click.Context, log_level: str, verbose: bool, mock: bool):
    """Transport news pipeline - scrape, rank and prepare newsletter issues."""
    setup_logging(log_level="INFO" if verbose else log_level, json_logging=False)
    if not verbose:
        logging.getLogger("aiohttp").setLevel(logging.ERROR)
        logging.getLogger("httpx").setLevel(logging.ERROR)

    settings = get_settings()
    if mock:
        settings.mock = True
    ctx.obj = settings


@cli.command()
@click.option("--show", default=10, help="Number of ranked articles to display")
@click.pass_obj
def scrape(settings: Settings, show: int):
    """Scrape all sources and save new articles to the archive."""
    try:
        config = get_pipeline_config()
        report = asyncio.run(run_scrape(settings, config))
    except Exception as e:
        logger.error("Scrape failed", error=str(e))
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)

    display_scrape_report(report)
    if report.saved and show:
        display_articles(ArticleRanker.from_config(config).rank(report.saved), limit=show)


@cli.command()
@click.option("--segment", type=click.Choice(SEGMENTS), required=True, help="Newsletter edition")
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the draft as JSON",
)
@click.pass_obj
def preview(settings: Settings, segment: Segment, output: Path | None):
    """Prepare an issue without marking any article as used."""
    try:
        store = create_store(settings)
        draft = asyncio.run(prepare_issue(store, segment, settings))
    except InsufficientContentError as e:
        click.echo(f"⚠️  {e}", err=True)
        sys.exit(2)
    except Exception as e:
        logger.error("Preview failed", error=str(e))
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)

    display_draft(draft)
    if output:
        output.write_bytes(orjson.dumps(draft.model_dump(mode="json"), option=orjson.OPT_INDENT_2))
        console.print(f"[green]Draft written to {output}[/green]")


@cli.command("mark-sent")
@click.option(
    "--draft", "draft_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Draft JSON written by preview",
)
@click.option("--issue-id", help="Issue id, e.g. pro-2025-01-31")
@click.option("--ids", help="Comma-separated article ids")
@click.pass_obj
def mark_sent(settings: Settings, draft_path: Path | None, issue_id: str | None, ids: str | None):
    """Mark the articles of a dispatched issue as used."""
    if draft_path:
        draft = IssueDraft.model_validate(orjson.loads(draft_path.read_bytes()))
        issue_id, article_ids = draft.issue_id, draft.article_ids
    elif issue_id and ids:
        article_ids = [i.strip() for i in ids.split(",") if i.strip()]
    else:
        raise click.UsageError("Provide --draft, or both --issue-id and --ids")

    count = asyncio.run(confirm_issue_sent(create_store(settings), issue_id, article_ids))
    console.print(f"[green]Marked {count} articles as used in {issue_id}[/green]")


@cli.command("validate-config")
@click.pass_obj
def validate_config_command(settings: Settings):
    """Validate settings and the pipeline configuration file."""
    problems = validate_config(settings)
    if not problems:
        console.print("[green]✅ Configuration is valid[/green]")
        return

    for problem in problems:
        console.print(f"[red]❌ {problem}[/red]")
    sys.exit(1)


if __name__ == "__main__":
    cli()
