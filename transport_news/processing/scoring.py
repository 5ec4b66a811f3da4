"""
Categorization and composite ranking for transport news articles.

Ranking blends two signals:
- Content category priority (Safety Alert highest, Industry News lowest)
- Relevance score from validation

Segment tags route each article to the compliance-professional edition,
the driver edition, or both.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from ..config import PipelineConfig
from ..ingest.article_types import Article, SegmentTag
from .text_utils import count_keyword_hits, normalize_text

logger = logging.getLogger(__name__)

CATEGORY_WEIGHT = 0.7
RELEVANCE_WEIGHT = 0.3


@dataclass
class ScoringWeights:
    """Weights of the composite ranking score."""
    category: float = CATEGORY_WEIGHT
    relevance: float = RELEVANCE_WEIGHT


class Categorizer:
    """Keyword-vote content categorizer."""

    def __init__(
        self,
        category_keywords: Mapping[str, Iterable[str]],
        default_category: str = "Industry News",
    ):
        self.category_keywords = {
            name: tuple(k.lower() for k in keywords)
            for name, keywords in category_keywords.items()
        }
        self.default_category = default_category

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "Categorizer":
        return cls(config.category_keywords, config.default_category)

    def scores(self, text: str) -> dict[str, int]:
        """One point per keyword hit, per category."""
        content = normalize_text(text)
        return {
            name: count_keyword_hits(content, keywords)
            for name, keywords in self.category_keywords.items()
        }

    def categorize(self, article: Article) -> str:
        """Pick the category with the strictly highest score.

        Ties between top categories and articles with no hits fall back to
        the default category.
        """
        scores = self.scores(article.content)
        if not scores:
            return self.default_category

        best = max(scores.values())
        if best == 0:
            return self.default_category

        leaders = [name for name, score in scores.items() if score == best]
        if len(leaders) > 1:
            return self.default_category

        logger.debug(f"Categorized as {leaders[0]!r} (score {best}): {article.title[:40]}")
        return leaders[0]


class ArticleRanker:
    """Composite category and relevance ranking."""

    def __init__(
        self,
        categorizer: Categorizer,
        category_priorities: Mapping[str, int],
        default_priority: int = 50,
        weights: ScoringWeights | None = None,
    ):
        self.categorizer = categorizer
        self.category_priorities = dict(category_priorities)
        self.default_priority = default_priority
        self.weights = weights or ScoringWeights()

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "ArticleRanker":
        return cls(
            categorizer=Categorizer.from_config(config),
            category_priorities=config.category_priorities,
            default_priority=config.default_category_priority,
        )

    def category_priority(self, category: str) -> int:
        return self.category_priorities.get(category, self.default_priority)

    def composite_score(self, category_priority: float, relevance_score: float) -> float:
        return (
            category_priority * self.weights.category
            + relevance_score * self.weights.relevance
        )

    def score(self, article: Article) -> Article:
        """Return a copy of the article with category and composite score set."""
        category = article.content_category or self.categorizer.categorize(article)
        priority = self.category_priority(category)
        return article.model_copy(update={
            'content_category': category,
            'category_priority': priority,
            'composite_score': self.composite_score(priority, article.relevance_score),
        })

    def rank(self, articles: Iterable[Article]) -> list[Article]:
        """Score articles and sort them by composite score, highest first.

        Equal scores keep their input order. Input articles are not modified.
        """
        scored = [self.score(article) for article in articles]
        scored.sort(key=lambda a: a.composite_score or 0.0, reverse=True)

        if scored:
            logger.info(
                f"Ranked {len(scored)} articles. Top score: {scored[0].composite_score:.1f}"
            )
        else:
            logger.info("Ranking complete. No articles ranked.")
        return scored


def assign_segment_tag(
    text: str,
    pro_terms: Iterable[str],
    driver_terms: Iterable[str],
) -> SegmentTag:
    """Tag content for the pro edition, the driver edition, or both.

    A side wins only when its keyword count exceeds the other by more
    than one.
    """
    content = normalize_text(text)
    pro = count_keyword_hits(content, pro_terms)
    driver = count_keyword_hits(content, driver_terms)

    if pro > driver + 1:
        return "pro"
    if driver > pro + 1:
        return "driver"
    return "both"


def matches_segment(tag: str | None, segment: str, allow_compound: bool = False) -> bool:
    """Check whether an article tagged ``tag`` belongs in ``segment``.

    With ``allow_compound`` a tag that contains the segment name, such as
    ``"pro,driver"``, also matches.
    """
    if not tag:
        return False
    if tag == "both" or tag == segment:
        return True
    return allow_compound and segment in tag


def filter_by_segment(
    articles: Iterable[Article],
    segment: str,
    allow_compound: bool = False,
) -> list[Article]:
    return [a for a in articles if matches_segment(a.segment_tag, segment, allow_compound)]


def rank_articles(articles: list[Article], config: PipelineConfig) -> list[Article]:
    """Convenience function for article ranking."""
    return ArticleRanker.from_config(config).rank(articles)
