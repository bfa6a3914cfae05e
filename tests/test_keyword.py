"""Tests for keyword scoring."""

import numpy as np
import pytest

from libs.vector_store.base import IndexEntry
from libs.vector_store.memory import IndexSnapshot
from service_search.app.retrievers.keyword import KeywordIndex, score_keyword, tokenize_query


def _snapshot(*texts):
    entries = {}
    documents = {}
    for i, text in enumerate(texts):
        entry = IndexEntry(
            chunk_id=f"c{i}",
            document_id=f"d{i}",
            vector=np.ones(3, dtype=np.float32),
            text=text,
            metadata={"title": f"Doc {i}"},
        )
        entries[entry.chunk_id] = entry
        documents[entry.document_id] = (entry.chunk_id,)
    return IndexSnapshot(entries, documents, 3)


def test_tokenize_drops_short_terms():
    """Test tokens of length two or less are discarded."""
    assert tokenize_query("An ox IS in the Barn") == ["the", "barn"]
    assert tokenize_query("  ") == []


def test_score_is_length_normalized():
    """Test score = occurrences / length * 1000 per term."""
    text = "The quick brown fox jumps. The fox runs fast."
    score, matched = score_keyword(text, ["fox"])

    assert matched == ["fox"]
    assert score == pytest.approx(2 / len(text) * 1000)


def test_score_is_case_insensitive_and_sums_terms():
    """Test multiple terms add up and case is ignored."""
    text = "Fox and HOUND"
    score, matched = score_keyword(text, ["fox", "hound", "cat"])

    assert matched == ["fox", "hound"]
    assert score == pytest.approx(2 / len(text) * 1000)


def test_empty_chunk_scores_zero():
    """Test empty chunk text never matches."""
    assert score_keyword("", ["fox"]) == (0.0, [])


def test_shorter_chunk_wins_for_same_count():
    """Test normalization favours the denser chunk."""
    short_score, _ = score_keyword("fox here", ["fox"])
    long_score, _ = score_keyword("fox " + "filler " * 50, ["fox"])
    assert short_score > long_score


def test_scan_excludes_non_matching_chunks():
    """Test zero-score chunks are not returned."""
    snapshot = _snapshot("a red fox", "a blue whale", "foxes everywhere")
    matches = KeywordIndex().scan(snapshot, "fox")

    assert [m.chunk_id for m in matches] == ["c0", "c2"]
    assert all(m.score > 0 for m in matches)
    assert matches[0].matched_terms == ("fox",)
    assert matches[0].metadata["title"] == "Doc 0"


def test_scan_with_only_short_terms_returns_nothing():
    """Test queries without usable terms match nothing."""
    snapshot = _snapshot("an ox is in it")
    assert KeywordIndex().scan(snapshot, "an ox is") == []
