"""
Text chunking for embedding long entities.

Splits text into fixed-size character windows that overlap by a fixed
amount.  Windows always cover the full input: chunk 0 starts at offset 0,
the last chunk ends at ``len(text)``, and every chunk starts exactly
``overlap`` characters before its predecessor ends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_SIZE = 800
DEFAULT_OVERLAP = 100


@dataclass(frozen=True)
class ChunkingConfig:
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE
    overlap: int = DEFAULT_OVERLAP

    def validate(self) -> None:
        if self.max_chunk_size <= 0:
            raise ValidationError("max_chunk_size must be > 0")
        if self.overlap < 0 or self.overlap >= self.max_chunk_size:
            raise ValidationError(
                "overlap must be >= 0 and smaller than max_chunk_size",
                max_chunk_size=self.max_chunk_size,
                overlap=self.overlap,
            )


@dataclass(frozen=True)
class TextChunk:
    """One window of the source text; offsets are ``[start, end)``."""

    text: str
    index: int
    total_chunks: int
    start_offset: int
    end_offset: int


def chunk_text(text: str, config: ChunkingConfig | None = None) -> list[TextChunk]:
    """Split *text* into overlapping windows.

    Text no longer than ``max_chunk_size`` (including the empty string)
    comes back as a single chunk spanning the whole input.
    """
    config = config or ChunkingConfig()
    config.validate()

    length = len(text)
    if length <= config.max_chunk_size:
        return [TextChunk(text, 0, 1, 0, length)]

    step = config.max_chunk_size - config.overlap
    spans: list[tuple[int, int]] = []
    start = 0
    while True:
        end = min(start + config.max_chunk_size, length)
        spans.append((start, end))
        if end == length:
            break
        start += step

    total = len(spans)
    chunks = [
        TextChunk(text[s:e], i, total, s, e) for i, (s, e) in enumerate(spans)
    ]
    logger.debug(
        "Chunked %d chars into %d chunks (max=%d, overlap=%d)",
        length, total, config.max_chunk_size, config.overlap,
    )
    return chunks


def needs_chunking(text: str, config: ChunkingConfig | None = None) -> bool:
    config = config or ChunkingConfig()
    return len(text) > config.max_chunk_size
