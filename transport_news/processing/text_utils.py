"""Text processing utilities for transport news deduplication and scoring."""

import re
from collections import Counter
from collections.abc import Iterable

from ..utils import clean_text, generate_content_hash, normalize_url

# Phrase windows shorter than this are too generic to count as overlap.
MIN_PHRASE_LENGTH = 15


def normalize_text(text: str | None) -> str:
    """Normalize text for keyword matching and dedup keys.

    Args:
        text: Raw title, summary or combined content

    Returns:
        Lowercased text with collapsed whitespace and straight quotes
    """
    return clean_text(text).lower()


def dedup_key(text: str | None) -> str:
    """Reduce text to lowercase words separated by single spaces.

    Punctuation is dropped so that "Fatigue Rules" and "fatigue rules!!"
    produce the same key.
    """
    text = normalize_text(text)
    text = re.sub(r'[^\w\s]', ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def word_set(text: str | None, min_length: int = 4) -> set[str]:
    """Words of at least ``min_length`` characters in the dedup key."""
    return {w for w in dedup_key(text).split() if len(w) >= min_length}


def jaccard_similarity(set1: set[str], set2: set[str]) -> float:
    """Jaccard index of two word sets. Two empty sets score 0."""
    union = set1 | set2
    if not union:
        return 0.0
    return len(set1 & set2) / len(union)


def levenshtein_distance(s1: str, s2: str) -> int:
    """Edit distance with unit cost insert, delete and substitute."""
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    if not s2:
        return len(s1)

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (c1 != c2),
            ))
        previous = current

    return previous[-1]


def normalized_levenshtein(s1: str, s2: str) -> float:
    """Edit distance scaled to [0, 1] by the longer string."""
    return levenshtein_distance(s1, s2) / max(len(s1), len(s2), 1)


def text_similarity(text1: str | None, text2: str | None) -> float:
    """Blend of word overlap and character edit similarity.

    ``0.7 * jaccard + 0.3 * (1 - normalized_levenshtein)``, computed over
    the dedup keys of both texts.

    Args:
        text1: First text
        text2: Second text

    Returns:
        Similarity score (0.0 to 1.0)
    """
    key1 = dedup_key(text1)
    key2 = dedup_key(text2)
    if not key1 or not key2:
        return 0.0

    jaccard = jaccard_similarity(word_set(key1), word_set(key2))
    edit_similarity = 1 - normalized_levenshtein(key1, key2)
    return 0.7 * jaccard + 0.3 * edit_similarity


def extract_key_phrases(text: str | None, stopwords: Iterable[str] = ()) -> list[str]:
    """Sliding-window phrases used for overlap detection.

    Each window is anchored on three consecutive words and extends up to
    six words. Windows whose three-word core has fewer than two
    non-stopwords are skipped.

    Args:
        text: Content to extract phrases from
        stopwords: Words that do not count towards a meaningful core

    Returns:
        Phrases in document order, duplicates kept
    """
    stop = frozenset(stopwords)
    words = dedup_key(text).split()

    phrases = []
    for i in range(len(words) - 2):
        core = words[i:i + 3]
        if sum(1 for w in core if w not in stop) < 2:
            continue
        phrases.append(' '.join(words[i:i + 6]))

    return phrases


def phrase_overlap(
    phrases1: list[str],
    phrases2: list[str],
    min_length: int = MIN_PHRASE_LENGTH,
) -> float:
    """Share of matching phrases between two phrase lists.

    Counts exact matches among phrases longer than ``min_length`` and
    divides by the larger list size.
    """
    counts1 = Counter(p for p in phrases1 if len(p) > min_length)
    counts2 = Counter(p for p in phrases2 if len(p) > min_length)
    matches = sum(counts1[p] * counts2[p] for p in counts1.keys() & counts2.keys())
    return matches / max(len(phrases1), len(phrases2), 1)


def count_keyword_hits(text: str, keywords: Iterable[str]) -> int:
    """Number of keywords that occur as substrings of ``text``.

    ``text`` is expected to be normalized already.
    """
    return sum(1 for keyword in keywords if keyword in text)


def compute_content_hash(title: str, url: str) -> str:
    """Stable digest of normalized title and URL."""
    return generate_content_hash(f"{normalize_text(title)}\n{normalize_url(url)}")
