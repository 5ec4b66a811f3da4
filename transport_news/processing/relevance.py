"""
Validation and relevance scoring for scraped transport news candidates.

A candidate passes through an ordered list of checks; the first failure
short-circuits and is returned as a ``Rejection`` value. Candidates that
pass every check become ``Article`` objects carrying their relevance score.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..config import PipelineConfig, Settings
from ..ingest.article_types import Article, RawCandidate, Rejection, RejectionReason
from ..utils import extract_domain
from .text_utils import compute_content_hash, normalize_text

logger = logging.getLogger(__name__)

BASE_SCORE = 3
LONG_CONTENT_LENGTH = 200
GOOD_TITLE_RANGE = (30, 100)
LONG_SUMMARY_LENGTH = 100


@dataclass
class RelevanceBreakdown:
    """Components of a relevance score."""
    base: int
    priority_bonus: int
    category_bonus: int
    keyword_score: int
    quality_bonus: int
    matched_keywords: list[str] = field(default_factory=list)
    cap: int = 20

    @property
    def total(self) -> int:
        raw = (
            self.base + self.priority_bonus + self.category_bonus
            + self.keyword_score + self.quality_bonus
        )
        return min(raw, self.cap)


class RelevanceScorer:
    """Integer relevance score from source trust, category and keywords."""

    def __init__(
        self,
        keywords: dict[str, int] | None = None,
        category_weights: dict[str, int] | None = None,
        default_category_weight: int = 5,
        max_score: int = 20,
    ):
        self.keywords = dict(keywords or {})
        self.category_weights = dict(category_weights or {})
        self.default_category_weight = default_category_weight
        self.max_score = max_score

    @classmethod
    def from_config(cls, config: PipelineConfig, settings: Settings) -> "RelevanceScorer":
        return cls(
            keywords=dict(config.relevance_keywords),
            category_weights=dict(config.category_weights),
            default_category_weight=config.default_category_weight,
            max_score=settings.max_relevance_score,
        )

    def breakdown(self, title: str, summary: str, priority: int, category: str) -> RelevanceBreakdown:
        """Score a title/summary pair and report how the score was built."""
        content = normalize_text(f"{title} {summary}")
        weight = self.category_weights.get(category.lower(), self.default_category_weight)

        matched = [kw for kw in self.keywords if kw in content]

        quality = 0
        if len(content) > LONG_CONTENT_LENGTH:
            quality += 2
        if GOOD_TITLE_RANGE[0] < len(title) < GOOD_TITLE_RANGE[1]:
            quality += 1
        if len(summary) > LONG_SUMMARY_LENGTH:
            quality += 1

        return RelevanceBreakdown(
            base=BASE_SCORE,
            priority_bonus=priority // 2,
            category_bonus=weight // 3,
            keyword_score=sum(self.keywords[kw] for kw in matched),
            quality_bonus=quality,
            matched_keywords=matched,
            cap=self.max_score,
        )

    def score(self, title: str, summary: str, priority: int, category: str) -> int:
        return self.breakdown(title, summary, priority, category).total


class ArticleValidator:
    """Turns raw candidates into articles or rejections.

    Checks run in order: required fields, title length, domain allowlist,
    exclusion patterns, relevance floor.
    """

    def __init__(
        self,
        scorer: RelevanceScorer,
        allowed_domains: Iterable[str],
        exclude_patterns: Iterable = (),
        min_title_length: int = 15,
        max_title_length: int = 200,
        min_relevance_score: int = 3,
    ):
        self.scorer = scorer
        self.allowed_domains = tuple(d.lower() for d in allowed_domains)
        self.exclude_patterns = tuple(exclude_patterns)
        self.min_title_length = min_title_length
        self.max_title_length = max_title_length
        self.min_relevance_score = min_relevance_score

    @classmethod
    def from_config(cls, config: PipelineConfig, settings: Settings) -> "ArticleValidator":
        return cls(
            scorer=RelevanceScorer.from_config(config, settings),
            allowed_domains=config.allowed_domains,
            exclude_patterns=config.exclude_patterns,
            min_title_length=settings.min_title_length,
            max_title_length=settings.max_title_length,
            min_relevance_score=settings.min_relevance_score,
        )

    def is_allowed_domain(self, url: str) -> bool:
        host = extract_domain(url)
        return bool(host) and any(domain in host for domain in self.allowed_domains)

    def validate(self, candidate: RawCandidate) -> Article | Rejection:
        """Validate a candidate and score it.

        Args:
            candidate: Candidate extracted from a source page

        Returns:
            Article on success, otherwise the first Rejection encountered
        """
        title = candidate.title
        url = candidate.url

        if not title or not url:
            return Rejection(RejectionReason.MISSING_FIELD, "title or url missing", candidate)

        if not self.min_title_length <= len(title) <= self.max_title_length:
            return Rejection(
                RejectionReason.TITLE_LENGTH,
                f"title length {len(title)} outside "
                f"[{self.min_title_length}, {self.max_title_length}]",
                candidate,
            )

        if not self.is_allowed_domain(url):
            logger.warning(f"Rejected URL from unauthorized domain: {url}")
            return Rejection(RejectionReason.DOMAIN_NOT_ALLOWED, url, candidate)

        content = normalize_text(candidate.content)
        for pattern in self.exclude_patterns:
            if pattern.search(content):
                logger.debug(f"Excluded by pattern {pattern.pattern!r}: {title[:50]}")
                return Rejection(RejectionReason.EXCLUDED_PATTERN, pattern.pattern, candidate)

        score = self.scorer.score(title, candidate.summary, candidate.priority, candidate.category)
        if score < self.min_relevance_score:
            logger.debug(f"Low relevance ({score}): {title[:50]}")
            return Rejection(RejectionReason.LOW_RELEVANCE, f"score {score}", candidate, score)

        return Article(
            title=title,
            url=url,
            summary=candidate.summary,
            source=candidate.source,
            category=candidate.category,
            source_priority=candidate.priority,
            relevance_score=score,
            content_hash=compute_content_hash(title, url),
            published_at=candidate.published_at,
        )

    def validate_all(self, candidates: Iterable[RawCandidate]) -> tuple[list[Article], list[Rejection]]:
        """Validate a batch, splitting accepted articles from rejections."""
        accepted: list[Article] = []
        rejected: list[Rejection] = []

        for candidate in candidates:
            result = self.validate(candidate)
            if isinstance(result, Article):
                accepted.append(result)
            else:
                rejected.append(result)

        logger.info(f"Validation: {len(accepted)} accepted, {len(rejected)} rejected")
        return accepted, rejected
