"""Pytest configuration and fixtures."""

import os
import tempfile
from pathlib import Path
from typing import Generator

import pytest
import yaml

# Set test environment
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["JSON_LOGGING"] = "false"
os.environ.pop("OPENAI_API_KEY", None)

SHIPPED_CONFIG = Path(__file__).parent.parent / "transport_news" / "sources.yaml"

TEST_SOURCES = [
    {
        "name": "NHVR Latest News",
        "url": "https://www.nhvr.gov.au/news",
        "priority": 10,
        "selector": "article",
        "title_selector": "h2",
        "link_selector": "a",
        "summary_selector": "p",
        "category": "regulatory",
    },
    {
        "name": "Big Rigs Magazine",
        "url": "https://bigrigs.com.au/",
        "priority": 9,
        "selector": ".story-item",
        "title_selector": ".story-title",
        "link_selector": "a",
        "summary_selector": ".story-excerpt",
        "category": "industry",
    },
    {
        "name": "PowerTorque Magazine",
        "url": "https://powertorque.com.au/",
        "priority": 8,
        "category": "industry",
    },
]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def mock_env(monkeypatch, temp_dir):
    """Mock environment variables for testing."""
    monkeypatch.setenv("DATA_DIR", str(temp_dir / "data"))
    monkeypatch.setenv("DELAY_BETWEEN_SOURCES", "0")


@pytest.fixture
def settings(temp_dir):
    """Settings with no delays, no retries and a temporary data directory."""
    from transport_news.config import Settings

    return Settings(
        data_dir=temp_dir / "data",
        delay_between_sources=0,
        retry_attempts=0,
        retry_backoff=0,
        fetch_timeout=5,
        mock=True,
    )


@pytest.fixture
def pipeline_config():
    """The shipped pipeline configuration."""
    from transport_news.config import PipelineConfig

    return PipelineConfig(SHIPPED_CONFIG)


@pytest.fixture
def small_config(temp_dir):
    """Shipped scoring tables with three test sources."""
    from transport_news.config import PipelineConfig

    data = yaml.safe_load(SHIPPED_CONFIG.read_text(encoding="utf-8"))
    data["sources"] = TEST_SOURCES
    path = temp_dir / "sources.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return PipelineConfig(path)


@pytest.fixture(autouse=True)
def reset_source_health():
    """Keep the global health monitor from leaking between tests."""
    from transport_news.ingest.sources import get_source_health_monitor

    monitor = get_source_health_monitor()
    monitor.source_status.clear()
    yield
    monitor.source_status.clear()


@pytest.fixture
def make_article():
    """Factory for validated articles."""
    from transport_news.ingest.article_types import Article
    from transport_news.processing.text_utils import compute_content_hash

    def factory(
        title: str = "NHVR updates fatigue rules for heavy vehicle operators",
        url: str = "https://www.nhvr.gov.au/news/fatigue-rules",
        summary: str = "",
        **kwargs,
    ) -> Article:
        kwargs.setdefault("source", "NHVR Latest News")
        kwargs.setdefault("relevance_score", 10)
        kwargs.setdefault("content_hash", compute_content_hash(title, url))
        return Article(title=title, url=url, summary=summary, **kwargs)

    return factory


@pytest.fixture
def make_candidate():
    """Factory for raw candidates."""
    from transport_news.ingest.article_types import RawCandidate

    def factory(
        title: str | None = "NHVR updates fatigue rules for heavy vehicle operators",
        url: str | None = "https://www.nhvr.gov.au/news/fatigue-rules",
        summary: str = "",
        **kwargs,
    ) -> RawCandidate:
        kwargs.setdefault("source", "NHVR Latest News")
        kwargs.setdefault("category", "regulatory")
        kwargs.setdefault("priority", 10)
        return RawCandidate(title=title, url=url, summary=summary, **kwargs)

    return factory


class FakeFetcher:
    """Page fetcher serving canned HTML keyed by URL."""

    def __init__(self, pages: dict[str, str], failures: dict[str, Exception] | None = None):
        self.pages = pages
        self.failures = failures or {}
        self.requested: list[str] = []

    async def fetch(self, source) -> str:
        url = str(source.url) if hasattr(source, "url") else source
        self.requested.append(url)
        if url in self.failures:
            raise self.failures[url]
        return self.pages.get(url, "<html><body></body></html>")


@pytest.fixture
def fake_fetcher_cls():
    return FakeFetcher
