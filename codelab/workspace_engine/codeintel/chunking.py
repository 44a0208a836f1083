"""Line-aligned text chunking for embeddings."""

from __future__ import annotations

import re

_LINE = re.compile(r"[^\n]*\n|[^\n]+")


def chunk_text(content: str, chunk_size: int = 1000) -> list[str]:
    """Split *content* into chunks of at most *chunk_size* characters.

    Boundaries always fall right after a newline, so each chunk is a run of
    whole lines and the chunks concatenate back to *content* exactly.  A
    single line longer than *chunk_size* becomes its own (oversized) chunk
    rather than being cut.
    """
    if chunk_size <= 0:
        msg = "chunk_size must be positive"
        raise ValueError(msg)

    chunks: list[str] = []
    current: list[str] = []
    size = 0
    for line in _LINE.findall(content):
        if current and size + len(line) > chunk_size:
            chunks.append("".join(current))
            current, size = [], 0
        current.append(line)
        size += len(line)
    if current:
        chunks.append("".join(current))
    return chunks
