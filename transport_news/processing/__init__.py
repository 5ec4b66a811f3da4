"""Content processing module."""

from .dedupe import ArticleDeduplicator, deduplicate_articles
from .relevance import ArticleValidator, RelevanceBreakdown, RelevanceScorer
from .scoring import (
    ArticleRanker,
    Categorizer,
    ScoringWeights,
    assign_segment_tag,
    filter_by_segment,
    matches_segment,
    rank_articles,
)
from .text_utils import (
    compute_content_hash,
    dedup_key,
    extract_key_phrases,
    normalize_text,
    phrase_overlap,
    text_similarity,
)

__all__ = [
    'ArticleValidator',
    'RelevanceScorer',
    'RelevanceBreakdown',
    'ArticleDeduplicator',
    'deduplicate_articles',
    'ArticleRanker',
    'Categorizer',
    'ScoringWeights',
    'assign_segment_tag',
    'filter_by_segment',
    'matches_segment',
    'rank_articles',
    'compute_content_hash',
    'dedup_key',
    'extract_key_phrases',
    'normalize_text',
    'phrase_overlap',
    'text_similarity',
]
