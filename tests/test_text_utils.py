"""Tests for text normalization and similarity helpers."""

import pytest

from transport_news.processing.text_utils import (
    compute_content_hash,
    count_keyword_hits,
    dedup_key,
    extract_key_phrases,
    jaccard_similarity,
    levenshtein_distance,
    normalize_text,
    normalized_levenshtein,
    phrase_overlap,
    text_similarity,
    word_set,
)
from transport_news.utils import make_absolute_url, normalize_url, parse_date_string


def test_normalize_text():
    assert normalize_text("  NHVR   “Fatigue”\n Rules… ") == 'nhvr "fatigue" rules...'
    assert normalize_text(None) == ""


def test_dedup_key_drops_punctuation():
    assert dedup_key("Fatigue Rules!!") == dedup_key("fatigue, rules")
    assert dedup_key("B-double   permits") == "b double permits"


def test_word_set_minimum_length():
    assert word_set("The new B-double mass rules") == {"double", "mass", "rules"}


def test_jaccard_similarity():
    assert jaccard_similarity(set(), set()) == 0.0
    assert jaccard_similarity({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)


def test_levenshtein():
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert normalized_levenshtein("", "") == 0.0
    assert normalized_levenshtein("abcd", "abcf") == 0.25


def test_text_similarity_identical_and_empty():
    assert text_similarity("Heavy vehicle fatigue rules", "heavy vehicle fatigue rules!") == pytest.approx(1.0)
    assert text_similarity("", "anything") == 0.0


def test_text_similarity_blend():
    # Word sets {alpha, bravo} and {alpha, delta} give jaccard 1/3
    a, b = "alpha bravo", "alpha delta"
    edit = 1 - levenshtein_distance(a, b) / len(a)
    assert text_similarity(a, b) == pytest.approx(0.7 / 3 + 0.3 * edit)


def test_extract_key_phrases_windows():
    phrases = extract_key_phrases("one two three four five six seven")
    assert phrases[0] == "one two three four five six"
    assert phrases[-1] == "five six seven"
    assert len(phrases) == 5


def test_extract_key_phrases_skips_stopword_cores():
    phrases = extract_key_phrases("the and truck fatigue", stopwords={"the", "and"})
    assert phrases == ["and truck fatigue"]


def test_phrase_overlap_ignores_short_phrases():
    assert phrase_overlap(["a b c"], ["a b c"]) == 0.0
    long_phrase = "heavy vehicle fatigue rules change"
    assert phrase_overlap([long_phrase, "x"], [long_phrase]) == 0.5
    assert phrase_overlap([], []) == 0.0


def test_count_keyword_hits_uses_substrings():
    assert count_keyword_hits("a truck court case", ["court", "truck", "audit"]) == 2


def test_content_hash_is_stable_across_formatting():
    first = compute_content_hash("Fatigue  Rules", "https://www.NHVR.gov.au/news/a/#top")
    second = compute_content_hash("fatigue rules", "https://www.nhvr.gov.au/news/a")
    assert first == second
    assert len(first) == 64


def test_normalize_url():
    assert normalize_url("HTTPS://Example.com/path/?q=1#frag") == "https://example.com/path?q=1"


@pytest.mark.parametrize("href,expected", [
    ("/news/a", "https://www.nhvr.gov.au/news/a"),
    ("//cdn.nhvr.gov.au/a", "https://cdn.nhvr.gov.au/a"),
    ("https://bigrigs.com.au/x", "https://bigrigs.com.au/x"),
    ("story", "https://www.nhvr.gov.au/news/story"),
    ("", None),
    (None, None),
])
def test_make_absolute_url(href, expected):
    assert make_absolute_url(href, "https://www.nhvr.gov.au/news/") == expected


def test_parse_date_string_formats():
    assert parse_date_string("2025-01-31T10:00:00Z").year == 2025
    assert parse_date_string("31/01/2025").day == 31
    assert parse_date_string("31 January 2025").month == 1
    assert parse_date_string("next tuesday") is None
