"""HTML extraction of article candidates from news listing pages."""

from collections.abc import Callable, Sequence

from selectolax.parser import HTMLParser, Node

from ..config import Settings, SourceConfig, get_settings
from ..logging import get_logger
from ..utils import clean_text, make_absolute_url, parse_date_string
from .article_types import RawCandidate

logger = get_logger(__name__)

# Listing-item selectors tried after the source's own selector.
FALLBACK_SELECTORS: tuple[str, ...] = (
    'article',
    '.post',
    '.news-item',
    '.entry',
    '.story',
    'h2 a, h3 a',
    '.title a',
    '[href*="/news/"]',
    '[href*="/article/"]',
)

# (selector, attribute) lookups; attribute None means element text.
Lookup = tuple[str, str | None]

TITLE_LOOKUPS: tuple[Lookup, ...] = (
    ('h1', None),
    ('h2', None),
    ('h3', None),
    ('.title', None),
    ('.headline', None),
    ('.entry-title', None),
    ('.post-title', None),
    ('a[title]', 'title'),
    ('a', None),
)

LINK_LOOKUPS: tuple[Lookup, ...] = (
    ('a[href]', 'href'),
    ('a', 'href'),
)

SUMMARY_LOOKUPS: tuple[Lookup, ...] = (
    ('.summary', None),
    ('.excerpt', None),
    ('.description', None),
    ('.lead', None),
    ('.entry-summary', None),
    ('.post-excerpt', None),
    ('p', None),
    ('.content', None),
)

DATE_LOOKUPS: tuple[Lookup, ...] = (
    ('time[datetime]', 'datetime'),
    ('time', None),
    ('.date', None),
)

ExtractFn = Callable[[Node, SourceConfig], RawCandidate | None]


def _node_value(node: Node, attribute: str | None) -> str:
    if attribute:
        return (node.attributes.get(attribute) or '').strip()
    return node.text(deep=True, separator=' ', strip=True)


def _matches_self(node: Node, selector: str) -> bool:
    """Whether the element itself, rather than a descendant, matches."""
    fragment = node.html
    if not fragment:
        return False
    return HTMLParser(fragment).css_first(selector) is not None


def lookup(node: Node, lookups: Sequence[Lookup]) -> str:
    """Resolve a field by trying each lookup in order.

    Descendants are searched first; if none match, the element itself is
    used when it matches the selector. Invalid selectors are skipped.
    """
    for selector, attribute in lookups:
        if not selector:
            continue
        try:
            found = node.css_first(selector)
            if found is not None:
                value = _node_value(found, attribute)
            elif _matches_self(node, selector):
                value = _node_value(node, attribute)
            else:
                continue
        except ValueError:
            logger.debug("Skipping invalid selector", selector=selector)
            continue

        if value:
            return value

    return ''


class ArticleExtractor:
    """Applies ordered selector strategies to a listing page.

    The first strategy that yields at least one candidate wins; results
    from different strategies are never merged.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.max_articles = self.settings.max_articles_per_source

    def strategies(self, source: SourceConfig) -> list[tuple[str, ExtractFn]]:
        """Ordered (selector, extractor) pairs for a source."""
        selectors = [source.selector, *FALLBACK_SELECTORS]
        return [(s, self.extract_candidate) for s in selectors if s]

    def extract_candidate(self, node: Node, source: SourceConfig) -> RawCandidate | None:
        """Build a candidate from a single listing element.

        Returns None only when neither a title nor a link is present.
        """
        title = lookup(node, ((source.title_selector, None), *TITLE_LOOKUPS))

        href = (node.attributes.get('href') or '').strip()
        if not href:
            href = lookup(node, ((source.link_selector, 'href'), *LINK_LOOKUPS))

        summary = lookup(node, ((source.summary_selector, None), *SUMMARY_LOOKUPS))
        date_text = lookup(node, DATE_LOOKUPS)

        if not title and not href:
            return None

        return RawCandidate(
            title=clean_text(title),
            url=make_absolute_url(href, str(source.url)),
            summary=clean_text(summary),
            source=source.name,
            category=source.category,
            priority=source.priority,
            published_at=parse_date_string(date_text) if date_text else None,
        )

    def extract(self, html: str, source: SourceConfig) -> list[RawCandidate]:
        """Extract up to ``max_articles_per_source`` candidates from a page.

        Args:
            html: Raw page HTML
            source: Source the page belongs to

        Returns:
            Candidates from the first successful strategy, or an empty list
        """
        tree = HTMLParser(html)

        for selector, extract_fn in self.strategies(source):
            try:
                nodes = tree.css(selector)
            except ValueError:
                logger.debug("Skipping invalid selector", source=source.name, selector=selector)
                continue

            logger.debug("Testing selector", source=source.name, selector=selector, matches=len(nodes))
            if not nodes:
                continue

            candidates: list[RawCandidate] = []
            for node in nodes:
                if len(candidates) >= self.max_articles:
                    break
                candidate = extract_fn(node, source)
                if candidate is not None:
                    candidates.append(candidate)

            if candidates:
                logger.info(
                    "Candidates extracted",
                    source=source.name,
                    selector=selector,
                    candidates=len(candidates),
                )
                return candidates

        logger.warning("No candidates found with any selector", source=source.name)
        self._log_page_structure(tree, source)
        return []

    def _log_page_structure(self, tree: HTMLParser, source: SourceConfig) -> None:
        """Log the page's first headings and links to help tune selectors."""
        headings = [
            h.text(deep=True, separator=' ', strip=True)[:80]
            for h in tree.css('h1, h2, h3')[:5]
        ]
        links = [
            (a.attributes.get('href') or '')[:120]
            for a in tree.css('a[href]')[:10]
        ]
        logger.debug("Page structure", source=source.name, headings=headings, links=links)
