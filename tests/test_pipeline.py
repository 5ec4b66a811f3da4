"""End-to-end tests for scraping, selection and issue preparation."""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from click.testing import CliRunner

from transport_news.check_sources import check_all_sources
from transport_news.config import get_settings
from transport_news.ingest.fetcher import FetchError
from transport_news.ingest.sources import SourceHealthMonitor, SourceScraper
from transport_news.models.llm_client import MockLLMClient
from transport_news.orchestrator import (
    InsufficientContentError,
    cli,
    collect_ranked_articles,
    confirm_issue_sent,
    make_issue_id,
    prepare_issue,
    run_scrape,
    select_issue_articles,
    subject_line,
)
from transport_news.store import InMemoryArticleStore

NHVR_URL = "https://www.nhvr.gov.au/news"
BIGRIGS_URL = "https://bigrigs.com.au/"
POWERTORQUE_URL = "https://powertorque.com.au/"

NHVR_ITEMS = [
    ("/news/fatigue-rules", "NHVR announces new fatigue rules for operators",
     "Work and rest hour changes start in March across participating states."),
    ("/news/mass-limits", "Mass limits reviewed for B-double combinations",
     "Industry consultation on higher mass limits opens next week."),
    ("/news/cor-prosecution", "Operator prosecuted after chain of responsibility breach",
     "A Melbourne logistics company was fined after repeated speeding by contracted drivers."),
    ("/news/coupling-pins", "Safety alert issued for faulty coupling pins",
     "Inspectors found cracked pins on several trailers during roadside checks."),
    ("/news/roadworthiness-survey", "National roadworthiness survey results published",
     "The survey found brake defects remain the most common issue."),
]

BIGRIGS_ITEMS = [
    ("/news/rest-areas", "Rest area upgrades welcomed by long-haul drivers",
     "New toilets and shade structures are planned along the Newell Highway."),
    ("/news/tyre-recall", "Tyre recall affects popular trailer axle brand",
     "Owners should contact dealers for free replacements."),
    ("/news/excavator-load", "Court fines carrier over unsecured excavator load",
     "The excavator fell onto the Bruce Highway near Gympie."),
    ("/news/young-drivers", "Young driver program tackles industry shortage",
     "Apprentices will train with experienced mentors for twelve months."),
    ("https://www.nhvr.gov.au/news/fatigue-rules", "Fatigue rules overhaul explained for truckies",
     "Our guide to the changes coming in March."),
]

POWERTORQUE_ITEMS = [
    ("/2025/electric-trials", "Electric prime movers begin trials in Sydney",
     "Two battery trucks will run container routes from Port Botany."),
    ("/2025/helpline", "Mental health support line expands for transport workers",
     "Counsellors are now available around the clock."),
    ("/2025/inspection-blitz", "Roadside inspection blitz targets brake defects",
     "Police and inspectors checked more than four hundred vehicles in Victoria."),
    ("/2025/road-train-route", "Queensland road train route extended to Mount Isa",
     "Longer combinations can now reach the mine sites directly."),
    ("https://bigrigs.com.au/news/tyre-recall", "Trailer tyre recall: what owners need to know",
     "Which axles are affected and how to book a replacement."),
]


def article_page(items) -> str:
    blocks = "".join(
        f'<article><h2><a href="{href}">{title}</a></h2><p>{summary}</p></article>'
        for href, title, summary in items
    )
    return f"<html><body><main>{blocks}</main></body></html>"


def story_page(items) -> str:
    blocks = "".join(
        f'<div class="story-item"><h3 class="story-title"><a href="{href}">{title}</a></h3>'
        f'<div class="story-excerpt">{summary}</div></div>'
        for href, title, summary in items
    )
    return f"<html><body>{blocks}</body></html>"


PAGES = {
    NHVR_URL: article_page(NHVR_ITEMS),
    BIGRIGS_URL: story_page(BIGRIGS_ITEMS),
    POWERTORQUE_URL: article_page(POWERTORQUE_ITEMS),
}


@pytest.fixture
def fetcher(fake_fetcher_cls):
    return fake_fetcher_cls(PAGES)


@pytest.fixture
def recorded_sleeps(monkeypatch):
    delays = []
    real_sleep = asyncio.sleep

    async def sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", sleep)
    return delays

@pytest.mark.asyncio
async def test_collect_ranked_articles(settings, small_config, fetcher):
    articles = await collect_ranked_articles(settings, small_config, fetcher)

    assert fetcher.requested == [NHVR_URL, BIGRIGS_URL, POWERTORQUE_URL]
    assert len(articles) == 13

    urls = [a.url for a in articles]
    assert len(set(urls)) == 13
    assert "https://www.nhvr.gov.au/news/fatigue-rules" in urls
    assert "https://bigrigs.com.au/news/tyre-recall" in urls

    titles = {a.title for a in articles}
    assert "Fatigue rules overhaul explained for truckies" not in titles
    assert "Trailer tyre recall: what owners need to know" not in titles

    scores = [a.composite_score for a in articles]
    assert scores == sorted(scores, reverse=True)
    assert all(a.relevance_score >= settings.min_relevance_score for a in articles)
    assert all(a.segment_tag in ("pro", "driver", "both") for a in articles)
    assert all(a.content_category for a in articles)


@pytest.mark.asyncio
async def test_failing_source_is_isolated(settings, small_config, fake_fetcher_cls):
    fetcher = fake_fetcher_cls(PAGES, failures={
        NHVR_URL: FetchError("http_status", NHVR_URL, status=500),
        POWERTORQUE_URL: RuntimeError("parser exploded"),
    })

    report = await run_scrape(settings, small_config, InMemoryArticleStore(small_config), fetcher)

    assert [(e.source, e.kind) for e in report.errors] == [
        ("NHVR Latest News", "http_status"),
        ("PowerTorque Magazine", "extract"),
    ]
    assert report.source_counts == {"Big Rigs Magazine": 5}
    assert len(report.saved) == 5


@pytest.mark.asyncio
async def test_run_scrape_saves_once(settings, small_config, fetcher):
    store = InMemoryArticleStore(small_config)

    first = await run_scrape(settings, small_config, store, fetcher)
    second = await run_scrape(settings, small_config, store, fetcher)

    assert len(first.saved) == 13
    assert second.saved == []
    assert sum(1 for d in second.duplicates if d.method == "content_hash") == 13
    assert len(store.articles) == 13
    assert all(a.id and a.segment_tag for a in store.articles)


@pytest.mark.asyncio
async def test_run_scrape_fuzzy_archive(settings, small_config, fetcher, make_article):
    store = InMemoryArticleStore(small_config)
    await store.save_articles([make_article(
        title="NHVR announces new fatigue rules for operators!",
        url="https://www.nhvr.gov.au/news/fatigue-rules?ref=home",
    )])
    settings.fuzzy_archive_dedup = True

    report = await run_scrape(settings, small_config, store, fetcher)

    assert len(report.saved) == 12
    assert any(d.method == "title_similarity" for d in report.duplicates)


@pytest.mark.asyncio
async def test_select_issue_articles(settings, small_config, fetcher):
    store = InMemoryArticleStore(small_config)
    await run_scrape(settings, small_config, store, fetcher)

    selected = await select_issue_articles(store, "pro", settings, small_config)

    assert len(selected) == settings.articles_per_issue
    assert all(a.segment_tag in ("pro", "both") for a in selected)
    scores = [a.composite_score for a in selected]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_select_raises_when_too_few(settings, small_config):
    with pytest.raises(InsufficientContentError) as exc_info:
        await select_issue_articles(InMemoryArticleStore(small_config), "driver", settings, small_config)

    assert exc_info.value.available == 0
    assert exc_info.value.required == settings.min_articles_per_issue
    assert exc_info.value.segment == "driver"


@pytest.mark.asyncio
async def test_prepare_and_confirm_issue(settings, small_config, fetcher):
    store = InMemoryArticleStore(small_config)
    await run_scrape(settings, small_config, store, fetcher)

    draft = await prepare_issue(
        store, "pro", settings, small_config,
        llm_client=MockLLMClient(settings), today=date(2025, 1, 31),
    )

    assert draft.issue_id == "pro-2025-01-31"
    assert draft.subject == "COR Intel Weekly - 31 January 2025"
    assert len(draft.items) == settings.articles_per_issue
    assert all(a.used_in_issue is None for a in store.articles)

    marked = await confirm_issue_sent(store, draft.issue_id, draft.article_ids)

    assert marked == len(draft.items)
    used = {a.id for a in store.articles if a.used_in_issue == "pro-2025-01-31"}
    assert used == set(draft.article_ids)

    remaining = await store.get_recent_articles(settings.lookback_days, "pro")
    assert not used & {a.id for a in remaining}


def test_issue_naming():
    assert make_issue_id("driver", date(2025, 3, 7)) == "driver-2025-03-07"
    assert subject_line("driver", date(2025, 3, 7)) == "Safe Freight Mate - 7 March 2025"


def test_cli_validate_config(monkeypatch):
    monkeypatch.setattr(get_settings(), "mock", True)

    result = CliRunner().invoke(cli, ["validate-config"])

    assert result.exit_code == 0
    assert "Configuration is valid" in result.output


def test_cli_mark_sent_requires_ids():
    result = CliRunner().invoke(cli, ["mark-sent", "--issue-id", "pro-2025-01-31"])

    assert result.exit_code == 2
    assert "Provide --draft" in result.output


def test_age_filter_uses_collection_time(settings, small_config, make_article):
    now = datetime.now(timezone.utc)
    old_listing = make_article(
        url="https://www.nhvr.gov.au/news/archived-notice",
        published_at=now - timedelta(days=30),
        collected_at=now,
    )
    stale = make_article(
        title="Mass limits reviewed for B-double combinations",
        url="https://www.nhvr.gov.au/news/mass-limits",
        collected_at=now - timedelta(days=settings.max_article_age_days + 1),
    )

    kept, _ = SourceScraper(settings, small_config).process_articles([old_listing, stale], now=now)

    assert [a.url for a in kept] == [old_listing.url]


@pytest.mark.asyncio
async def test_skipped_source_costs_no_delay(settings, small_config, fetcher, recorded_sleeps):
    settings.delay_between_sources = 2
    monitor = SourceHealthMonitor()
    for _ in range(monitor.failure_threshold):
        monitor.record_failure("NHVR Latest News", "HTTP 500")

    report = await SourceScraper(settings, small_config, fetcher, monitor).scrape_all()

    assert fetcher.requested == [BIGRIGS_URL, POWERTORQUE_URL]
    assert set(report.source_counts) == {"Big Rigs Magazine", "PowerTorque Magazine"}
    assert recorded_sleeps == [2]


@pytest.mark.asyncio
async def test_check_sources_waits_between_sources(settings, small_config, fetcher, recorded_sleeps):
    settings.delay_between_sources = 2

    report = await check_all_sources(settings, small_config, fetcher)

    assert fetcher.requested == [NHVR_URL, BIGRIGS_URL, POWERTORQUE_URL]
    assert recorded_sleeps == [2, 2]
    assert report['summary']['healthy'] == 3
