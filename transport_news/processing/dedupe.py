"""
Deduplication for transport news articles.

Two entry points:
1. In-batch deduplication, comparing each article against every article
   already accepted with checks ordered by cost (URL, exact title, title
   similarity, title+summary similarity, key phrase overlap).
2. Archive deduplication, dropping articles whose content hash is already
   stored, optionally followed by the in-batch checks against recent
   archive articles.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ..config import PipelineConfig, Settings
from ..ingest.article_types import Article, DuplicateMatch
from .text_utils import extract_key_phrases, phrase_overlap, text_similarity

logger = logging.getLogger(__name__)


@dataclass
class _Fingerprint:
    """Per-article values reused across pairwise comparisons."""
    article: Article
    url: str
    title_key: str
    content: str
    phrases: list[str]


class ArticleDeduplicator:
    """Multi-strategy article deduplication."""

    def __init__(
        self,
        title_threshold: float = 0.85,
        content_threshold: float = 0.75,
        phrase_threshold: float = 0.3,
        stopwords: Iterable[str] = (),
    ):
        self.title_threshold = title_threshold
        self.content_threshold = content_threshold
        self.phrase_threshold = phrase_threshold
        self.stopwords = frozenset(stopwords)

    @classmethod
    def from_config(cls, config: PipelineConfig, settings: Settings) -> "ArticleDeduplicator":
        return cls(
            title_threshold=settings.title_similarity_threshold,
            content_threshold=settings.content_similarity_threshold,
            phrase_threshold=settings.phrase_overlap_threshold,
            stopwords=config.stopwords,
        )

    def _fingerprint(self, article: Article) -> _Fingerprint:
        content = article.content
        return _Fingerprint(
            article=article,
            url=article.url,
            title_key=article.title.lower().strip(),
            content=content,
            phrases=extract_key_phrases(content, self.stopwords),
        )

    def compare(self, candidate: _Fingerprint, existing: _Fingerprint) -> tuple[str, float] | None:
        """Return the first matching method and its score, or None."""
        if candidate.url == existing.url:
            return 'url', 1.0

        if candidate.title_key == existing.title_key:
            return 'title', 1.0

        similarity = text_similarity(candidate.article.title, existing.article.title)
        if similarity > self.title_threshold:
            return 'title_similarity', similarity

        similarity = text_similarity(candidate.content, existing.content)
        if similarity > self.content_threshold:
            return 'content_similarity', similarity

        overlap = phrase_overlap(candidate.phrases, existing.phrases)
        if overlap > self.phrase_threshold:
            return 'phrase_overlap', overlap

        return None

    def deduplicate(
        self,
        articles: Iterable[Article],
        existing: Iterable[Article] = (),
    ) -> tuple[list[Article], list[DuplicateMatch]]:
        """Remove near-duplicates, keeping the first occurrence.

        Args:
            articles: Articles in priority order; earlier ones win
            existing: Articles that were accepted previously. They are
                compared against but never returned.

        Returns:
            Tuple of (unique articles, duplicate matches)
        """
        articles = list(articles)
        accepted = [self._fingerprint(a) for a in existing]
        seeded = len(accepted)
        duplicates: list[DuplicateMatch] = []

        for article in articles:
            current = self._fingerprint(article)
            match: DuplicateMatch | None = None

            for previous in accepted:
                result = self.compare(current, previous)
                if result is not None:
                    method, score = result
                    match = DuplicateMatch(
                        kept=previous.article,
                        dropped=article,
                        method=method,
                        similarity=score,
                    )
                    break

            if match is None:
                accepted.append(current)
            else:
                duplicates.append(match)
                logger.debug(
                    f"Duplicate ({match.method}, {match.similarity:.2f}): "
                    f"{article.title[:50]} ~ {match.kept.title[:50] if match.kept else ''}"
                )

        unique = [fp.article for fp in accepted[seeded:]]

        logger.info(
            f"Deduplication: {len(articles)} -> {len(unique)} articles "
            f"(removed {len(duplicates)} duplicates)"
        )
        return unique, duplicates

    def deduplicate_against_archive(
        self,
        articles: Iterable[Article],
        existing_hashes: Iterable[str],
        recent_archive: Iterable[Article] | None = None,
    ) -> tuple[list[Article], list[DuplicateMatch]]:
        """Drop articles already present in the archive.

        The content hash is always checked. Similarity checks against
        ``recent_archive`` run only when it is given.
        """
        known = set(existing_hashes)
        fresh: list[Article] = []
        duplicates: list[DuplicateMatch] = []

        for article in articles:
            if article.content_hash in known:
                duplicates.append(DuplicateMatch(
                    kept=None, dropped=article, method='content_hash', similarity=1.0
                ))
                continue
            known.add(article.content_hash)
            fresh.append(article)

        if recent_archive is not None:
            fresh, fuzzy = self.deduplicate(fresh, existing=recent_archive)
            duplicates.extend(fuzzy)

        logger.info(
            f"Archive deduplication: {len(fresh) + len(duplicates)} -> {len(fresh)} articles"
        )
        return fresh, duplicates


def deduplicate_articles(
    articles: list[Article],
    settings: Settings,
    config: PipelineConfig,
) -> tuple[list[Article], list[DuplicateMatch]]:
    """Convenience function for in-batch deduplication."""
    deduplicator = ArticleDeduplicator.from_config(config, settings)
    return deduplicator.deduplicate(articles)
