"""Article archive storage.

The archive is append-only: articles are saved once, keyed by content
hash, and the only later mutation is stamping ``used_in_issue`` after an
issue has been sent.
"""

import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite

from .config import PipelineConfig, get_pipeline_config
from .ingest.article_types import Article
from .logging import get_logger
from .processing.scoring import Categorizer, assign_segment_tag, matches_segment

logger = get_logger(__name__)


@runtime_checkable
class ArticleStore(Protocol):
    """Read/write interface the pipeline needs from an archive."""

    async def get_existing_hashes(self) -> set[str]: ...

    async def save_articles(self, articles: Iterable[Article]) -> list[Article]: ...

    async def get_recent_articles(
        self,
        days: int,
        segment: str | None = None,
        include_used: bool = False,
    ) -> list[Article]: ...

    async def mark_articles_as_used(self, ids: Iterable[str], issue_id: str) -> int: ...


def new_article_id() -> str:
    return f"ARTICLE-{uuid.uuid4().hex[:12].upper()}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BaseArticleStore:
    """Shared save-time enrichment for store implementations."""

    def __init__(self, config: PipelineConfig | None = None):
        self._config = config

    @property
    def config(self) -> PipelineConfig:
        if self._config is None:
            self._config = get_pipeline_config()
        return self._config

    def prepare(self, article: Article) -> Article:
        """Assign id, segment tag and content category where missing."""
        config = self.config
        update: dict = {}
        if not article.id:
            update['id'] = new_article_id()
        if not article.segment_tag:
            update['segment_tag'] = assign_segment_tag(
                article.content, config.pro_terms, config.driver_terms
            )
        if not article.content_category:
            update['content_category'] = Categorizer.from_config(config).categorize(article)
        return article.model_copy(update=update) if update else article

    @staticmethod
    def cutoff(days: int, now: datetime | None = None) -> datetime:
        return (now or datetime.now(timezone.utc)) - timedelta(days=days)


class InMemoryArticleStore(BaseArticleStore):
    """Archive held in a list, for tests and dry runs."""

    def __init__(self, config: PipelineConfig | None = None):
        super().__init__(config)
        self.articles: list[Article] = []

    async def get_existing_hashes(self) -> set[str]:
        return {a.content_hash for a in self.articles}

    async def save_articles(self, articles: Iterable[Article]) -> list[Article]:
        known = await self.get_existing_hashes()
        saved: list[Article] = []

        for article in articles:
            if article.content_hash in known:
                continue
            prepared = self.prepare(article)
            self.articles.append(prepared)
            known.add(prepared.content_hash)
            saved.append(prepared)

        logger.info("Articles saved", store="memory", saved=len(saved), total=len(self.articles))
        return saved

    async def get_recent_articles(
        self,
        days: int,
        segment: str | None = None,
        include_used: bool = False,
    ) -> list[Article]:
        cutoff = self.cutoff(days)
        return [
            a for a in self.articles
            if _as_utc(a.collected_at) >= cutoff
            and (include_used or not a.is_used)
            and (segment is None or matches_segment(a.segment_tag, segment, allow_compound=True))
        ]

    async def mark_articles_as_used(self, ids: Iterable[str], issue_id: str) -> int:
        wanted = set(ids)
        count = 0
        for index, article in enumerate(self.articles):
            if article.id in wanted and not article.is_used:
                self.articles[index] = article.model_copy(update={'used_in_issue': issue_id})
                count += 1

        logger.info("Articles marked as used", issue_id=issue_id, count=count)
        return count


SCHEMA = """
CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    content_hash TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    url TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    source TEXT NOT NULL,
    category TEXT NOT NULL,
    source_priority INTEGER NOT NULL DEFAULT 5,
    relevance_score INTEGER NOT NULL,
    content_category TEXT,
    segment_tag TEXT,
    published_at TEXT,
    collected_at TEXT NOT NULL,
    used_in_issue TEXT
);
CREATE INDEX IF NOT EXISTS idx_articles_collected_at ON articles (collected_at);
"""

COLUMNS = (
    'id', 'content_hash', 'title', 'url', 'summary', 'source', 'category',
    'source_priority', 'relevance_score', 'content_category', 'segment_tag',
    'published_at', 'collected_at', 'used_in_issue',
)


def _timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _as_utc(value).isoformat(timespec='microseconds')


class SQLiteArticleStore(BaseArticleStore):
    """Archive in a SQLite file.

    ``content_hash`` is UNIQUE and inserts use ``INSERT OR IGNORE``, so
    saving the same article twice, even from overlapping runs, stores it
    once.
    """

    def __init__(self, db_path: str | Path, config: PipelineConfig | None = None):
        super().__init__(config)
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Create the schema if needed."""
        if self._initialized:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(SCHEMA)
            await db.commit()
        self._initialized = True
        logger.debug("Article store initialized", path=str(self.db_path))

    def _to_row(self, article: Article) -> tuple:
        data = article.model_dump()
        data['published_at'] = _timestamp(article.published_at)
        data['collected_at'] = _timestamp(article.collected_at)
        return tuple(data[column] for column in COLUMNS)

    @staticmethod
    def _from_row(row: aiosqlite.Row) -> Article:
        return Article(**{column: row[column] for column in COLUMNS})

    async def get_existing_hashes(self) -> set[str]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT content_hash FROM articles")
            rows = await cursor.fetchall()
        return {row[0] for row in rows}

    async def save_articles(self, articles: Iterable[Article]) -> list[Article]:
        await self.initialize()
        placeholders = ', '.join('?' for _ in COLUMNS)
        sql = f"INSERT OR IGNORE INTO articles ({', '.join(COLUMNS)}) VALUES ({placeholders})"

        saved: list[Article] = []
        async with aiosqlite.connect(self.db_path) as db:
            for article in articles:
                prepared = self.prepare(article)
                cursor = await db.execute(sql, self._to_row(prepared))
                if cursor.rowcount:
                    saved.append(prepared)
            await db.commit()

        logger.info("Articles saved", store="sqlite", saved=len(saved))
        return saved

    async def get_recent_articles(
        self,
        days: int,
        segment: str | None = None,
        include_used: bool = False,
    ) -> list[Article]:
        await self.initialize()
        query = f"SELECT {', '.join(COLUMNS)} FROM articles WHERE collected_at >= ?"
        params: list = [_timestamp(self.cutoff(days))]

        if not include_used:
            query += " AND (used_in_issue IS NULL OR used_in_issue = '')"
        query += " ORDER BY collected_at, rowid"

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()

        articles = [self._from_row(row) for row in rows]
        if segment is not None:
            articles = [
                a for a in articles
                if matches_segment(a.segment_tag, segment, allow_compound=True)
            ]
        return articles

    async def mark_articles_as_used(self, ids: Iterable[str], issue_id: str) -> int:
        await self.initialize()
        ids = list(ids)
        if not ids:
            return 0

        placeholders = ', '.join('?' for _ in ids)
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"UPDATE articles SET used_in_issue = ? "
                f"WHERE id IN ({placeholders}) AND (used_in_issue IS NULL OR used_in_issue = '')",
                [issue_id, *ids],
            )
            await db.commit()
            count = cursor.rowcount

        logger.info("Articles marked as used", issue_id=issue_id, count=count)
        return count
