"""
Tests for execution/legal_assistant/chunker.py

Covers: ChunkConfig validation, short/empty input edge cases, determinism,
        ordering, overlap between consecutive chunks, and oversized
        paragraphs/sentences/words.
"""

import pytest

from tests.conftest import SAMPLE_DOCUMENT, ONE_PARAGRAPH


def _long_text(paragraphs=12):
    return "\n\n".join(
        f"Section {i}. The Tenant agrees to clause number {i}, which covers "
        f"obligations relating to maintenance, payment and notice periods under "
        f"this agreement. Failure to comply with clause {i} is a material breach."
        for i in range(paragraphs)
    )


# ---------------------------------------------------------------------------
# ChunkConfig
# ---------------------------------------------------------------------------

class TestChunkConfig:

    def test_defaults(self):
        from execution.legal_assistant.chunker import ChunkConfig
        config = ChunkConfig()
        assert config.target_length == 1000
        assert config.overlap_ratio == 0.12
        assert config.overlap_length == 120

    @pytest.mark.parametrize("target", [0, -5])
    def test_rejects_non_positive_target(self, target):
        from execution.legal_assistant.chunker import ChunkConfig
        from execution.legal_assistant.errors import InvalidArgument
        with pytest.raises(InvalidArgument):
            ChunkConfig(target_length=target)

    @pytest.mark.parametrize("ratio", [-0.1, 0.5, 0.9])
    def test_rejects_out_of_range_overlap(self, ratio):
        from execution.legal_assistant.chunker import ChunkConfig
        from execution.legal_assistant.errors import InvalidArgument
        with pytest.raises(InvalidArgument):
            ChunkConfig(overlap_ratio=ratio)

    def test_from_settings(self, settings):
        from execution.legal_assistant.chunker import TextChunker
        chunker = TextChunker.from_settings(settings)
        assert chunker.config.target_length == 200
        assert chunker.config.overlap_length == 20


# ---------------------------------------------------------------------------
# Edge cases
# ---------------------------------------------------------------------------

class TestChunkEdgeCases:

    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t \n", None])
    def test_whitespace_only_yields_no_chunks(self, text):
        from execution.legal_assistant.chunker import TextChunker
        assert TextChunker().chunk(text) == []

    def test_short_text_yields_exactly_one_chunk(self):
        from execution.legal_assistant.chunker import TextChunker
        chunks = TextChunker().chunk(ONE_PARAGRAPH)
        assert chunks == [ONE_PARAGRAPH]

    def test_text_at_target_length_is_one_chunk(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        text = "a" * 100
        assert TextChunker(ChunkConfig(target_length=100)).chunk(text) == [text]

    def test_windows_newlines_normalized(self):
        from execution.legal_assistant.chunker import TextChunker
        chunks = TextChunker().chunk("First line.\r\nSecond line.")
        assert chunks == ["First line.\nSecond line."]


# ---------------------------------------------------------------------------
# Splitting behaviour
# ---------------------------------------------------------------------------

class TestChunking:

    def test_long_text_produces_multiple_non_empty_chunks(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(target_length=300, overlap_ratio=0.1))
        chunks = chunker.chunk(_long_text())
        assert len(chunks) > 1
        assert all(c.strip() for c in chunks)

    def test_deterministic(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        text = _long_text()
        first = TextChunker(ChunkConfig(target_length=250)).chunk(text)
        second = TextChunker(ChunkConfig(target_length=250)).chunk(text)
        assert first == second

    def test_preserves_order(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        chunks = TextChunker(ChunkConfig(target_length=300, overlap_ratio=0.0)).chunk(_long_text())
        joined = " ".join(chunks)
        positions = [joined.index(f"Section {i}.") for i in range(12)]
        assert positions == sorted(positions)

    def test_every_paragraph_is_covered(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        chunks = TextChunker(ChunkConfig(target_length=300)).chunk(_long_text())
        for i in range(12):
            assert any(f"Section {i}." in c for c in chunks)

    def test_consecutive_chunks_overlap(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(target_length=300, overlap_ratio=0.15))
        chunks = chunker.chunk(_long_text())
        for previous, current in zip(chunks, chunks[1:]):
            overlap = chunker._get_overlap(previous)
            assert overlap
            assert current.startswith(overlap)
            assert previous.endswith(overlap)

    def test_zero_overlap(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(target_length=300, overlap_ratio=0.0))
        chunks = chunker.chunk(_long_text())
        assert chunks[1].startswith("Section")

    def test_chunks_stay_near_target(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        config = ChunkConfig(target_length=300, overlap_ratio=0.1)
        chunks = TextChunker(config).chunk(_long_text())
        limit = config.target_length + config.overlap_length + 1
        assert all(len(c) <= limit for c in chunks)

    def test_oversized_paragraph_split_on_sentences(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        paragraph = " ".join(f"Clause {i} applies to the Tenant." for i in range(40))
        chunks = TextChunker(ChunkConfig(target_length=200, overlap_ratio=0.0)).chunk(paragraph)
        assert len(chunks) > 1
        assert all(len(c) <= 200 for c in chunks)
        assert all(c.rstrip().endswith(".") for c in chunks)

    def test_oversized_word_sliced(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        text = "x" * 450
        chunks = TextChunker(ChunkConfig(target_length=200, overlap_ratio=0.0)).chunk(text)
        assert "".join(chunks) == text
        assert [len(c) for c in chunks] == [200, 200, 50]

    def test_sample_document(self):
        from execution.legal_assistant.chunker import TextChunker, ChunkConfig
        chunks = TextChunker(ChunkConfig(target_length=400)).chunk(SAMPLE_DOCUMENT)
        assert len(chunks) >= 2
        assert chunks[0].startswith("RESIDENTIAL LEASE AGREEMENT")
        assert any("TERMINATION" in c for c in chunks)
