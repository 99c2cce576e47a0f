"""
Unit tests for workstore.embeddings.chunking
"""

from __future__ import annotations

import pytest


def _covered(chunks) -> list[int]:
    covered = set()
    for c in chunks:
        covered.update(range(c.start_offset, c.end_offset))
    return sorted(covered)


class TestChunkText:

    def test_short_text_is_single_chunk(self):
        from workstore.embeddings.chunking import ChunkingConfig, chunk_text
        chunks = chunk_text("short text", ChunkingConfig(100, 10))
        assert len(chunks) == 1
        assert chunks[0].total_chunks == 1
        assert (chunks[0].start_offset, chunks[0].end_offset) == (0, 10)
        assert chunks[0].text == "short text"

    def test_text_at_limit_is_not_split(self):
        from workstore.embeddings.chunking import ChunkingConfig, chunk_text, needs_chunking
        text = "x" * 100
        cfg = ChunkingConfig(100, 10)
        assert not needs_chunking(text, cfg)
        assert len(chunk_text(text, cfg)) == 1

    def test_empty_text(self):
        from workstore.embeddings.chunking import chunk_text
        chunks = chunk_text("")
        assert len(chunks) == 1
        assert chunks[0].end_offset == 0

    @pytest.mark.parametrize("length", [101, 180, 181, 500, 1234])
    def test_chunks_cover_whole_text(self, length):
        from workstore.embeddings.chunking import ChunkingConfig, chunk_text
        text = "".join(chr(97 + i % 26) for i in range(length))
        chunks = chunk_text(text, ChunkingConfig(100, 20))

        assert chunks[0].start_offset == 0
        assert chunks[-1].end_offset == length
        assert _covered(chunks) == list(range(length))
        for c in chunks:
            assert c.text == text[c.start_offset:c.end_offset]
            assert c.end_offset - c.start_offset <= 100
            assert c.total_chunks == len(chunks)

    def test_consecutive_chunks_overlap_by_config(self):
        from workstore.embeddings.chunking import ChunkingConfig, chunk_text
        chunks = chunk_text("a" * 450, ChunkingConfig(100, 25))
        for prev, nxt in zip(chunks, chunks[1:]):
            assert prev.end_offset - nxt.start_offset == 25
            assert nxt.index == prev.index + 1

    def test_deterministic(self):
        from workstore.embeddings.chunking import ChunkingConfig, chunk_text
        text = "lorem ipsum " * 100
        cfg = ChunkingConfig(120, 30)
        assert chunk_text(text, cfg) == chunk_text(text, cfg)

    @pytest.mark.parametrize("size,overlap", [(0, 0), (100, 100), (100, -1)])
    def test_invalid_config_rejected(self, size, overlap):
        from workstore.embeddings.chunking import ChunkingConfig, chunk_text
        from workstore.errors import ValidationError
        with pytest.raises(ValidationError):
            chunk_text("anything", ChunkingConfig(size, overlap))
