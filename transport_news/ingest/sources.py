"""Source scraping runner and health monitoring."""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from ..config import PipelineConfig, Settings, SourceConfig, get_pipeline_config, get_settings
from ..logging import PerformanceLogger, get_logger, log_error, log_processing_stage
from ..processing.dedupe import ArticleDeduplicator
from ..processing.relevance import ArticleValidator
from .article_types import Article, DuplicateMatch, Rejection
from .extractor import ArticleExtractor
from .fetcher import Fetcher, FetchError

logger = get_logger(__name__)


class PageFetcher(Protocol):
    async def fetch(self, source: SourceConfig | str) -> str: ...


@dataclass(frozen=True)
class SourceError:
    """A source that failed during a scrape run."""
    source: str
    error: str
    url: str
    kind: str = "extract"


@dataclass
class ScrapeReport:
    """Outcome of scraping every enabled source once."""
    articles: list[Article] = field(default_factory=list)
    errors: list[SourceError] = field(default_factory=list)
    source_counts: dict[str, int] = field(default_factory=dict)
    rejections: list[Rejection] = field(default_factory=list)
    duplicates: list[DuplicateMatch] = field(default_factory=list)
    saved: list[Article] = field(default_factory=list)
    duration: float = 0.0

    @property
    def successful_sources(self) -> int:
        return len(self.source_counts)

    def summary(self) -> dict[str, Any]:
        return {
            'articles': len(self.articles),
            'saved': len(self.saved),
            'errors': len(self.errors),
            'rejected': len(self.rejections),
            'duplicates': len(self.duplicates),
            'successful_sources': self.successful_sources,
            'duration': round(self.duration, 2),
        }


class SourceHealthMonitor:
    """Monitor source health and availability."""

    def __init__(self, failure_threshold: int = 3, check_interval: int = 3600):
        self.source_status: dict[str, dict[str, Any]] = {}
        self.failure_threshold = failure_threshold
        self.check_interval = check_interval

    def record_success(self, name: str, response_time: float, entry_count: int):
        """Record successful source scrape."""
        self.source_status[name] = {
            'status': 'healthy',
            'last_success': datetime.now(timezone.utc),
            'response_time': response_time,
            'entry_count': entry_count,
            'consecutive_failures': 0,
            'last_error': None,
        }
        logger.debug(
            "Source health: success recorded",
            name=name,
            response_time=response_time,
            entries=entry_count,
        )

    def record_failure(self, name: str, error: str):
        """Record failed source scrape."""
        if name not in self.source_status:
            self.source_status[name] = {
                'status': 'unknown',
                'consecutive_failures': 0,
            }

        status = self.source_status[name]
        status['consecutive_failures'] += 1
        status['last_error'] = error
        status['last_failure'] = datetime.now(timezone.utc)

        if status['consecutive_failures'] >= self.failure_threshold:
            status['status'] = 'unhealthy'
            logger.error(
                "Source marked as unhealthy",
                name=name,
                failures=status['consecutive_failures'],
                error=error,
            )
        else:
            status['status'] = 'degraded'
            logger.warning(
                "Source experiencing issues",
                name=name,
                failures=status['consecutive_failures'],
                error=error,
            )

    def get_health_report(self) -> dict[str, Any]:
        """Get health report for all monitored sources."""
        statuses = [s['status'] for s in self.source_status.values()]
        summary = {
            'total': len(statuses),
            'healthy': statuses.count('healthy'),
            'degraded': statuses.count('degraded'),
            'unhealthy': statuses.count('unhealthy'),
        }
        logger.info("Source health report", **summary)
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'summary': summary,
            'sources': self.source_status,
        }

    def should_skip_source(self, name: str) -> bool:
        """Check if source should be skipped due to poor health."""
        status = self.source_status.get(name)
        if not status or status['status'] != 'unhealthy':
            return False

        last_failure = status.get('last_failure')
        if last_failure:
            elapsed = (datetime.now(timezone.utc) - last_failure).total_seconds()
            if elapsed < self.check_interval:
                logger.info("Skipping unhealthy source", name=name, time_since_failure=elapsed)
                return True
        return False


# Global health monitor instance
_health_monitor = SourceHealthMonitor()


def get_source_health_monitor() -> SourceHealthMonitor:
    """Get global source health monitor instance."""
    return _health_monitor


class SourceScraper:
    """Scrapes enabled sources one at a time and validates their articles."""

    def __init__(
        self,
        settings: Settings | None = None,
        config: PipelineConfig | None = None,
        fetcher: PageFetcher | None = None,
        health_monitor: SourceHealthMonitor | None = None,
    ):
        self.settings = settings or get_settings()
        self.config = config or get_pipeline_config()
        self.fetcher = fetcher
        self.extractor = ArticleExtractor(self.settings)
        self.validator = ArticleValidator.from_config(self.config, self.settings)
        self.deduplicator = ArticleDeduplicator.from_config(self.config, self.settings)
        self.health_monitor = health_monitor or get_source_health_monitor()

    async def scrape_source(
        self,
        source: SourceConfig,
        fetcher: PageFetcher,
    ) -> tuple[list[Article], list[Rejection]]:
        """Fetch, extract and validate a single source.

        Raises:
            FetchError: If the page cannot be retrieved
        """
        html = await fetcher.fetch(source)
        candidates = self.extractor.extract(html, source)
        articles, rejections = self.validator.validate_all(candidates)

        logger.info(**log_processing_stage(
            stage=f"scrape_{source.name}",
            input_count=len(candidates),
            output_count=len(articles),
        ))
        return articles, rejections

    async def scrape_all(self) -> ScrapeReport:
        """Scrape every enabled source, highest priority first.

        A failing source is recorded and skipped; the run continues.
        """
        if self.fetcher is not None:
            return await self._scrape_with(self.fetcher)

        async with Fetcher(self.settings) as fetcher:
            return await self._scrape_with(fetcher)

    async def _scrape_with(self, fetcher: PageFetcher) -> ScrapeReport:
        report = ScrapeReport()
        sources = self.config.enabled_sources()
        collected: list[Article] = []

        if not sources:
            logger.warning("No sources configured")
            return report

        with PerformanceLogger("scrape_all_sources", logger) as perf:
            attempted = 0
            for source in sources:
                if self.health_monitor.should_skip_source(source.name):
                    continue

                if attempted > 0 and self.settings.delay_between_sources > 0:
                    await asyncio.sleep(self.settings.delay_between_sources)
                attempted += 1

                start = time.time()
                url = str(source.url)
                try:
                    articles, rejections = await self.scrape_source(source, fetcher)
                except FetchError as e:
                    report.errors.append(SourceError(source.name, str(e), url, e.kind))
                    self.health_monitor.record_failure(source.name, str(e))
                    logger.error(
                        "Failed to fetch from source",
                        source=source.name,
                        url=url,
                        kind=e.kind,
                        status=e.status,
                        error=str(e),
                    )
                    continue
                except Exception as e:
                    report.errors.append(SourceError(source.name, str(e), url))
                    self.health_monitor.record_failure(source.name, str(e))
                    logger.error(**log_error(e, context="scrape_source", source=source.name, url=url))
                    continue

                self.health_monitor.record_success(source.name, time.time() - start, len(articles))
                report.source_counts[source.name] = len(articles)
                report.rejections.extend(rejections)
                collected.extend(articles)

                if not articles:
                    logger.warning("Source returned no articles", source=source.name, url=url)

        report.articles, report.duplicates = self.process_articles(collected)
        report.duration = perf.duration or 0.0

        logger.info(**log_processing_stage(
            stage="scrape_all_sources",
            input_count=len(sources),
            output_count=len(report.articles),
            errors=len(report.errors),
        ))
        return report

    def process_articles(
        self,
        articles: list[Article],
        now: datetime | None = None,
    ) -> tuple[list[Article], list[DuplicateMatch]]:
        """Drop articles collected before the age cutoff, deduplicate, and sort by relevance."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.settings.max_article_age_days)

        recent = [a for a in articles if a.collected_at >= cutoff]
        if len(recent) < len(articles):
            logger.info(
                "Dropped stale articles",
                removed=len(articles) - len(recent),
                max_age_days=self.settings.max_article_age_days,
            )

        unique, duplicates = self.deduplicator.deduplicate(recent)
        unique.sort(key=lambda a: a.relevance_score, reverse=True)
        return unique, duplicates
