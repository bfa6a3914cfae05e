"""Tests for hybrid result fusion."""

import pytest

from libs.vector_store.base import SimilarityMatch
from service_search.app.ranking.fusion import (
    DedupKey,
    WeightedScoreFusion,
    create_fusion_algorithm,
    from_keyword,
    from_similarity,
)
from service_search.app.retrievers.keyword import KeywordMatch

META = {"title": "Fox Facts", "source": "https://example.com/fox", "tags": ("animals",)}


def _semantic(chunk_id, score, document_id="doc-1", text=None):
    return SimilarityMatch(chunk_id, document_id, text or f"text of {chunk_id}", score, META)


def _keyword(chunk_id, score, terms=("fox",), document_id="doc-1", text=None):
    return KeywordMatch(chunk_id, document_id, text or f"text of {chunk_id}", score, tuple(terms), META)


def test_chunk_in_both_scans_gets_weighted_sum():
    """Test fused score = 0.7 * semantic + 0.3 * keyword."""
    fusion = WeightedScoreFusion()
    results = fusion.fuse_results([_semantic("c1", 0.9)], [_keyword("c1", 40.0)])

    assert len(results) == 1
    assert results[0].score == pytest.approx(0.7 * 0.9 + 0.3 * 40.0)
    assert results[0].highlights == ["fox"]
    details = results[0].metadata["fusion_details"]
    assert details["semantic_score"] == pytest.approx(0.9)
    assert details["keyword_score"] == pytest.approx(40.0)


def test_single_side_results_are_weighted():
    """Test semantic-only and keyword-only candidates keep their own weight."""
    fusion = WeightedScoreFusion()
    results = fusion.fuse_results([_semantic("c1", 0.8)], [_keyword("c2", 10.0)])

    by_chunk = {r.chunk_id: r for r in results}
    assert by_chunk["c1"].score == pytest.approx(0.56)
    assert by_chunk["c1"].highlights == []
    assert by_chunk["c2"].score == pytest.approx(3.0)


def test_output_keeps_first_seen_order():
    """Test semantic candidates come first, then keyword-only ones."""
    fusion = WeightedScoreFusion()
    results = fusion.fuse_results(
        [_semantic("c2", 0.5), _semantic("c1", 0.9)],
        [_keyword("c3", 1.0), _keyword("c1", 1.0)]
    )
    assert [r.chunk_id for r in results] == ["c2", "c1", "c3"]


def test_weights_are_not_normalized():
    """Test configured weights are applied as given."""
    fusion = WeightedScoreFusion(semantic_weight=2.0, keyword_weight=1.0)
    results = fusion.fuse_results([_semantic("c1", 0.5)], [_keyword("c1", 3.0)])
    assert results[0].score == pytest.approx(4.0)


def test_highlights_are_merged_without_duplicates():
    """Test highlight union across keyword hits."""
    fusion = WeightedScoreFusion(dedup_key=DedupKey.CONTENT_PREFIX)
    shared = "x" * 60
    results = fusion.fuse_results(
        [],
        [
            _keyword("c1", 1.0, terms=("fox", "den"), text=shared + " one"),
            _keyword("c2", 2.0, terms=("den", "cub"), text=shared + " two"),
        ]
    )
    assert len(results) == 1
    assert results[0].highlights == ["fox", "den", "cub"]


def test_content_prefix_merges_across_chunk_ids():
    """Test the content-prefix key merges chunks sharing 50 leading characters."""
    prefix = "p" * 50
    semantic = [_semantic("c1", 1.0, text=prefix + " alpha")]
    keyword = [_keyword("c2", 10.0, text=prefix + " beta")]

    by_id = WeightedScoreFusion(dedup_key="chunk_id").fuse_results(semantic, keyword)
    by_prefix = WeightedScoreFusion(dedup_key="content_prefix").fuse_results(semantic, keyword)

    assert len(by_id) == 2
    assert len(by_prefix) == 1
    assert by_prefix[0].score == pytest.approx(0.7 + 3.0)


def test_content_prefix_is_scoped_per_document():
    """Test identical prefixes in different documents stay separate."""
    prefix = "q" * 50
    fusion = WeightedScoreFusion(dedup_key="content_prefix")
    results = fusion.fuse_results(
        [_semantic("c1", 1.0, document_id="doc-1", text=prefix)],
        [_keyword("c2", 1.0, document_id="doc-2", text=prefix)]
    )
    assert len(results) == 2


def test_result_fields_from_metadata():
    """Test title and source come from the metadata snapshot."""
    result = from_similarity(_semantic("c1", 0.9))
    assert result.title == "Fox Facts"
    assert result.source == "https://example.com/fox"
    assert result.metadata["tags"] == ["animals"]

    keyword_result = from_keyword(_keyword("c1", 5.0, terms=("fox", "den")))
    assert keyword_result.score == pytest.approx(5.0)
    assert keyword_result.highlights == ["fox", "den"]


def test_source_falls_back_to_title():
    """Test a missing source uses the title."""
    match = SimilarityMatch("c1", "doc-1", "text", 0.5, {"title": "Only Title"})
    assert from_similarity(match).source == "Only Title"


def test_invalid_settings_rejected():
    """Test unknown dedup keys and negative weights fail fast."""
    with pytest.raises(ValueError):
        create_fusion_algorithm(dedup_key="document")
    with pytest.raises(ValueError):
        WeightedScoreFusion(semantic_weight=-0.1)
