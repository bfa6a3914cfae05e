"""Tests for document chunking."""

import pytest

from service_search.app.chunking.chunker import ChunkStrategy, DocumentChunker
from service_search.app.models import DocumentType


def _paragraphs(count: int, words: int, word: str = "word") -> str:
    return "\n\n".join(" ".join(f"{word}{i}" for _ in range(words)) for i in range(count))


def test_short_text_is_one_chunk():
    """Test the single-chunk scenario."""
    chunker = DocumentChunker(max_chunk_size=1000, overlap_size=200)
    chunks = chunker.chunk("The quick brown fox jumps. The fox runs fast.", DocumentType.TEXT)

    assert len(chunks) == 1
    assert chunks[0].text == "The quick brown fox jumps. The fox runs fast."
    assert chunks[0].metadata == {"chunk_index": 0, "type": "paragraph", "length": 45}


@pytest.mark.parametrize("text", ["", "   ", "\n\n\t\n"])
def test_empty_input_yields_no_chunks(text):
    """Test empty and whitespace-only input."""
    chunker = DocumentChunker()
    assert chunker.chunk(text, "text") == []
    assert chunker.chunk(text, "pdf") == []


def test_overlap_must_be_smaller_than_chunk():
    """Test invalid size settings are rejected."""
    with pytest.raises(ValueError):
        DocumentChunker(max_chunk_size=100, overlap_size=100)
    with pytest.raises(ValueError):
        DocumentChunker(max_chunk_size=0, overlap_size=0)


def test_paragraphs_packed_until_limit():
    """Test paragraphs accumulate into one buffer while they fit."""
    chunker = DocumentChunker(max_chunk_size=100, overlap_size=20)
    text = "alpha beta\n\ngamma delta\n\nepsilon"
    chunks = chunker.chunk(text, DocumentType.MARKDOWN)

    assert len(chunks) == 1
    assert chunks[0].text == text


def test_paragraph_split_seeds_overlap_words():
    """Test the next chunk starts with trailing words that fit in overlap_size."""
    chunker = DocumentChunker(max_chunk_size=60, overlap_size=10)
    first = "one two three four five six seven eight nine ten eleven"
    second = "twelve thirteen fourteen fifteen sixteen seventeen"
    chunks = chunker.chunk(f"{first}\n\n{second}", DocumentType.TEXT)

    assert len(chunks) == 2
    assert chunks[0].text == first
    assert chunks[1].text == f"eleven {second}"
    assert [c.chunk_index for c in chunks] == [0, 1]
    assert all(c.strategy is ChunkStrategy.PARAGRAPH for c in chunks)


def test_oversized_paragraph_is_not_truncated():
    """Test a single paragraph over the limit becomes its own chunk."""
    chunker = DocumentChunker(max_chunk_size=50, overlap_size=10)
    huge = "x" * 400
    chunks = chunker.chunk(f"short intro\n\n{huge}\n\nshort outro", DocumentType.TEXT)

    assert any(huge in c.text for c in chunks)
    assert chunks[0].text == "short intro"


def test_paragraph_chunks_respect_size_bound():
    """Test no chunk exceeds max_chunk_size + overlap_size for long words."""
    chunker = DocumentChunker(max_chunk_size=1000, overlap_size=200)
    paragraph = " ".join(["knowledge"] * 99)
    chunks = chunker.chunk("\n\n".join([paragraph] * 3), DocumentType.TEXT)

    assert len(chunks) == 3
    assert all(len(c.text) <= 1200 for c in chunks)
    assert [len(c.text) for c in chunks] == [989, 1189, 1189]


def test_overlap_seed_capped_by_word_count():
    """Test short words are limited to overlap_size // 5 words."""
    chunker = DocumentChunker(max_chunk_size=100, overlap_size=50)
    first = " ".join(f"w{i}" for i in range(10, 30))
    second = "x" * 30
    chunks = chunker.chunk(f"{first}\n\n{second}", DocumentType.TEXT)

    seed = " ".join(f"w{i}" for i in range(20, 30))
    assert [c.text for c in chunks] == [first, f"{seed} {second}"]


def test_overlap_seed_capped_by_characters():
    """Test long words shrink the seed to fit in overlap_size characters."""
    chunker = DocumentChunker(max_chunk_size=60, overlap_size=20)
    first = "one two three four five six seven eight nine ten eleven"
    chunks = chunker.chunk(f"{first}\n\n{'z' * 40}", DocumentType.TEXT)

    assert chunks[1].text == f"nine ten eleven {'z' * 40}"


def test_blank_line_separators_preserved():
    """Test the source blank-line runs survive packing."""
    chunker = DocumentChunker(max_chunk_size=100, overlap_size=20)
    text = "alpha\n  \nbeta\n\n\n\ngamma"
    chunks = chunker.chunk(text, DocumentType.MARKDOWN)

    assert [c.text for c in chunks] == [text]


def test_separator_counts_toward_limit():
    """Test a join that would overflow by the separator splits instead."""
    chunker = DocumentChunker(max_chunk_size=20, overlap_size=5)

    fits = chunker.chunk(f"{'a' * 9}\n\n{'b' * 9}", DocumentType.TEXT)
    assert [c.text for c in fits] == [f"{'a' * 9}\n\n{'b' * 9}"]

    overflows = chunker.chunk(f"{'a' * 10}\n\n{'b' * 9}", DocumentType.TEXT)
    assert [c.text for c in overflows] == ["a" * 10, "b" * 9]


def test_paragraph_chunks_cover_every_paragraph():
    """Test no paragraph is dropped."""
    chunker = DocumentChunker(max_chunk_size=120, overlap_size=20)
    text = _paragraphs(25, 6)
    chunks = chunker.chunk(text, DocumentType.TEXT)
    joined = "\n".join(c.text for c in chunks)

    for paragraph in text.split("\n\n"):
        assert paragraph in joined


def test_fixed_stride_offsets_and_coverage():
    """Test fixed-stride windows, offsets, and reconstruction."""
    chunker = DocumentChunker(max_chunk_size=100, overlap_size=20)
    text = "".join(chr(ord("a") + i % 26) for i in range(450))
    chunks = chunker.chunk(text, DocumentType.PDF)

    assert [c.start_index for c in chunks] == [0, 80, 160, 240, 320, 400]
    assert chunks[-1].end_index == 450
    assert all(c.strategy is ChunkStrategy.TEXT for c in chunks)
    assert all(len(c.text) <= 100 for c in chunks)
    for chunk in chunks:
        assert text[chunk.start_index:chunk.end_index] == chunk.text

    rebuilt = chunks[0].text + "".join(c.text[20:] for c in chunks[1:])
    assert rebuilt == text


def test_fixed_stride_emits_every_start():
    """Test a window starts at every stride, even inside the previous window."""
    chunker = DocumentChunker(max_chunk_size=100, overlap_size=20)
    chunks = chunker.chunk("z" * 180, DocumentType.HTML)

    assert [(c.start_index, c.end_index) for c in chunks] == [(0, 100), (80, 180), (160, 180)]
    assert chunks[2].text == "z" * 20
    assert chunks[1].metadata["start_index"] == 80
    assert chunks[1].metadata["type"] == "text"


def test_unknown_type_uses_fixed_stride():
    """Test types outside text/markdown fall back to fixed windows."""
    chunker = DocumentChunker(max_chunk_size=100, overlap_size=20)
    chunks = chunker.chunk("para one\n\npara two", "spreadsheet")

    assert len(chunks) == 1
    assert chunks[0].strategy is ChunkStrategy.TEXT
    assert chunks[0].text == "para one\n\npara two"
