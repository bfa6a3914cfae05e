"""Tests for vector store functionality."""

import asyncio
import math
import time

import numpy as np
import pytest

from libs.common.config import BaseConfig
from libs.vector_store.base import (
    ChunkRecord,
    DimensionMismatchError,
    ScanTimeoutError,
    VectorStoreQueryError,
)
from libs.vector_store.factory import VectorStoreFactory, create_vector_store_from_settings
from libs.vector_store.memory import InMemoryVectorStore, cosine_similarity


def _records(*vectors, prefix="chunk"):
    return [
        ChunkRecord(text=f"{prefix} {i}", vector=np.array(v, dtype=np.float32), metadata={"i": i})
        for i, v in enumerate(vectors)
    ]


def test_vector_similarity():
    """Test vector similarity calculations."""
    vec1 = np.array([1.0, 0.0, 0.0])
    vec2 = np.array([0.0, 1.0, 0.0])
    vec3 = np.array([2.0, 0.0, 0.0])

    assert cosine_similarity(vec1, vec2) == pytest.approx(0.0)
    assert cosine_similarity(vec1, vec3) == pytest.approx(1.0)
    assert cosine_similarity(vec1, -vec1) == pytest.approx(-1.0)


def test_cosine_similarity_is_symmetric():
    """Test sim(a, b) == sim(b, a) and sim(a, a) == 1."""
    rng = np.random.default_rng(7)
    for _ in range(20):
        a = rng.normal(size=16)
        b = rng.normal(size=16)
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
        assert cosine_similarity(a, a) == pytest.approx(1.0)


def test_cosine_similarity_zero_vector_is_nan():
    """Test zero-norm vectors have undefined similarity."""
    assert math.isnan(cosine_similarity(np.zeros(3), np.array([1.0, 0.0, 0.0])))


def test_cosine_similarity_dimension_mismatch():
    """Test vectors of different length are rejected."""
    with pytest.raises(DimensionMismatchError) as exc_info:
        cosine_similarity(np.ones(3), np.ones(4))
    assert exc_info.value.expected == 3
    assert exc_info.value.actual == 4


@pytest.mark.asyncio
async def test_insert_and_scan():
    """Test basic insert and threshold scan."""
    store = InMemoryVectorStore()
    chunk_ids = await store.insert_document("doc-1", _records([1, 0, 0], [0, 1, 0]))

    assert len(chunk_ids) == 2
    assert len(set(chunk_ids)) == 2
    assert store.dimension == 3

    matches = await store.scan_similarity(np.array([1.0, 0.0, 0.0]), threshold=0.5)
    assert len(matches) == 1
    assert matches[0].document_id == "doc-1"
    assert matches[0].text == "chunk 0"
    assert matches[0].score == pytest.approx(1.0)
    assert matches[0].metadata["i"] == 0


@pytest.mark.asyncio
async def test_scan_threshold_is_inclusive():
    """Test a score equal to the threshold is kept."""
    store = InMemoryVectorStore()
    await store.insert_document("doc-1", _records([1, 0, 0]))
    matches = await store.scan_similarity(np.array([1.0, 0.0, 0.0]), threshold=1.0)
    assert len(matches) == 1


@pytest.mark.asyncio
async def test_zero_vectors_never_match():
    """Test zero-norm stored vectors are skipped even at the lowest threshold."""
    store = InMemoryVectorStore()
    await store.insert_document("doc-1", _records([0, 0, 0], [1, 0, 0]))
    matches = await store.scan_similarity(np.array([1.0, 0.0, 0.0]), threshold=-1.0)
    assert [m.text for m in matches] == ["chunk 1"]


@pytest.mark.asyncio
async def test_first_insert_fixes_dimension():
    """Test later inserts and queries must match the first insert's length."""
    store = InMemoryVectorStore()
    await store.insert_document("doc-1", _records([1, 0, 0]))

    with pytest.raises(DimensionMismatchError):
        await store.insert_document("doc-2", _records([1, 0, 0, 0]))
    with pytest.raises(DimensionMismatchError):
        await store.scan_similarity(np.array([1.0, 0.0]))

    # The failed insert left nothing behind
    assert "doc-2" not in store.snapshot().document_chunks()
    assert store.get_stats().chunk_count == 1


@pytest.mark.asyncio
async def test_insert_is_all_or_nothing():
    """Test a batch with one bad vector stores nothing."""
    store = InMemoryVectorStore(dimension=3)
    with pytest.raises(DimensionMismatchError):
        await store.insert_document("doc-1", _records([1, 0, 0], [1, 0]))
    assert store.get_stats().chunk_count == 0
    assert store.get_stats().document_count == 0


@pytest.mark.asyncio
async def test_insert_existing_document_rejected():
    """Test insert refuses to overwrite; replace is the reindex path."""
    store = InMemoryVectorStore()
    await store.insert_document("doc-1", _records([1, 0, 0]))
    with pytest.raises(VectorStoreQueryError):
        await store.insert_document("doc-1", _records([0, 1, 0]))


@pytest.mark.asyncio
async def test_replace_document_swaps_chunk_set():
    """Test replace drops the old chunks and installs the new ones."""
    store = InMemoryVectorStore()
    old_ids = await store.insert_document("doc-1", _records([1, 0, 0], [0, 1, 0], prefix="old"))
    new_ids = await store.replace_document("doc-1", _records([0, 0, 1], prefix="new"))

    snapshot = store.snapshot()
    assert snapshot.document_chunks()["doc-1"] == tuple(new_ids)
    assert all(snapshot.get_entry(chunk_id) is None for chunk_id in old_ids)
    assert [entry.text for entry in snapshot.entries()] == ["new 0"]


@pytest.mark.asyncio
async def test_remove_document_leaves_no_entries():
    """Test removal deletes every chunk of the document."""
    store = InMemoryVectorStore()
    await store.insert_document("doc-1", _records([1, 0, 0], [0.9, 0.1, 0]))
    await store.insert_document("doc-2", _records([1, 0, 0]))

    removed = await store.remove_document("doc-1")
    assert removed == 2

    matches = await store.scan_similarity(np.array([1.0, 0.0, 0.0]), threshold=-1.0)
    assert all(m.document_id != "doc-1" for m in matches)
    assert await store.health_check()


@pytest.mark.asyncio
async def test_remove_unknown_document_is_noop():
    """Test removing a never-indexed document does nothing."""
    store = InMemoryVectorStore()
    assert await store.remove_document("missing") == 0
    assert store.get_stats().document_count == 0


@pytest.mark.asyncio
async def test_scan_excludes_document():
    """Test exclude_document_id drops self matches."""
    store = InMemoryVectorStore()
    await store.insert_document("doc-1", _records([1, 0, 0]))
    await store.insert_document("doc-2", _records([1, 0, 0]))

    matches = await store.scan_similarity(
        np.array([1.0, 0.0, 0.0]), threshold=0.5, exclude_document_id="doc-1"
    )
    assert [m.document_id for m in matches] == ["doc-2"]


@pytest.mark.asyncio
async def test_snapshot_is_isolated_from_later_writes():
    """Test a pinned snapshot keeps its contents while the store changes."""
    store = InMemoryVectorStore()
    await store.insert_document("doc-1", _records([1, 0, 0]))
    pinned = store.snapshot()

    await store.remove_document("doc-1")
    await store.insert_document("doc-2", _records([1, 0, 0]))

    matches = await store.scan_similarity(np.array([1.0, 0.0, 0.0]), threshold=0.5, snapshot=pinned)
    assert [m.document_id for m in matches] == ["doc-1"]
    assert list(store.snapshot().document_chunks()) == ["doc-2"]


@pytest.mark.asyncio
async def test_scan_timeout(monkeypatch):
    """Test a scan past its deadline raises ScanTimeoutError."""
    store = InMemoryVectorStore()
    await store.insert_document("doc-1", _records([1, 0, 0]))

    snapshot = store.snapshot()
    original_scan = snapshot.scan

    def slow_scan(*args, **kwargs):
        time.sleep(0.2)
        return original_scan(*args, **kwargs)

    monkeypatch.setattr(snapshot, "scan", slow_scan)
    with pytest.raises(ScanTimeoutError):
        await store.scan_similarity(np.array([1.0, 0.0, 0.0]), timeout=0.01)


@pytest.mark.asyncio
async def test_concurrent_inserts_keep_invariants():
    """Test concurrent writers never lose or orphan chunks."""
    store = InMemoryVectorStore()
    await asyncio.gather(*[
        store.insert_document(f"doc-{i}", _records([1, i, 0], [0, 1, i]))
        for i in range(20)
    ])

    stats = store.get_stats()
    assert stats.document_count == 20
    assert stats.chunk_count == 40
    assert stats.avg_chunks_per_document == pytest.approx(2.0)
    assert await store.health_check()


@pytest.mark.asyncio
async def test_stored_vectors_are_copies():
    """Test mutating the caller's array does not change the index."""
    store = InMemoryVectorStore()
    vector = np.array([1.0, 0.0, 0.0], dtype=np.float32)
    await store.insert_document("doc-1", [ChunkRecord(text="a", vector=vector)])
    vector[0] = 0.0

    stored = await store.get_document_vectors("doc-1")
    assert stored[0][0] == pytest.approx(1.0)
    assert await store.get_document_vectors("missing") == []


@pytest.mark.asyncio
async def test_clear_resets_configured_dimension():
    """Test clear drops contents and restores the configured dimension."""
    store = InMemoryVectorStore(dimension=None)
    await store.insert_document("doc-1", _records([1, 0, 0]))
    await store.clear()

    assert store.get_stats().chunk_count == 0
    assert store.dimension is None
    await store.insert_document("doc-1", _records([1, 0, 0, 0]))
    assert store.dimension == 4


def test_factory_creates_memory_store():
    """Test factory construction from config."""
    store = VectorStoreFactory.create_from_config({"type": "memory", "dimension": 8})
    assert isinstance(store, InMemoryVectorStore)
    assert store.dimension == 8

    with pytest.raises(ValueError):
        VectorStoreFactory.create_from_config({"type": "hnsw"})


def test_factory_from_settings():
    """Test store creation from service settings."""
    store = create_vector_store_from_settings(BaseConfig(ml_vector_dimension=3))
    assert isinstance(store, InMemoryVectorStore)
    assert store.dimension == 3
